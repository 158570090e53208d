import logging
import sys
from abc import ABC, abstractmethod
from enum import Enum

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

logger = logging.getLogger(__name__)


class AlertLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


# Slack添付のサイドバー色
LEVEL_COLORS = {
    AlertLevel.INFO: "#2eb886",
    AlertLevel.ERROR: "#d40e0d",
}


class Notifier(ABC):
    """打刻結果を利用者に見せるアラートの出力先"""

    @abstractmethod
    def alert(self, title: str, message: str, level: AlertLevel = AlertLevel.INFO) -> bool:
        ...


class ConsoleNotifier(Notifier):
    """端末へのアラート表示。Slack未設定時の既定"""

    def alert(self, title: str, message: str, level: AlertLevel = AlertLevel.INFO) -> bool:
        stream = sys.stderr if level == AlertLevel.ERROR else sys.stdout
        print(f"[{title}] {message}", file=stream)
        return True


class SlackNotifier(Notifier):
    """Slackチャンネルへのアラート投稿"""

    def __init__(self, client: WebClient, channel: str):
        self._client = client
        self._channel = channel

    @classmethod
    def from_token(cls, token: str, channel: str) -> "SlackNotifier":
        return cls(WebClient(token=token), channel)

    def alert(self, title: str, message: str, level: AlertLevel = AlertLevel.INFO) -> bool:
        try:
            self._client.chat_postMessage(
                channel=self._channel,
                text=f"{title}: {message}",
                attachments=[
                    {"color": LEVEL_COLORS[level], "title": title, "text": message}
                ],
            )
        except SlackApiError as e:
            logger.warning("Slack通知に失敗しました: %s", e.response.get("error"))
            return False
        except OSError as e:
            logger.warning("Slackに接続できませんでした: %s", e)
            return False
        return True
