import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import requests

from attendance_agent.services.models import OfficeLocation, TriggerSource

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


class GatewayError(Exception):
    """バックエンド呼び出しの失敗（リトライ上限到達後）"""

    def __init__(self, kind: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind  # "network" / "http" / "invalid_response"
        self.message = message
        self.status = status


@dataclass
class SubmitResult:
    success: bool
    message: Optional[str]


class AttendanceGateway:
    """勤怠バックエンドAPIクライアント（状態を持たない）"""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15,
        retry_count: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 8.0,
        session: requests.Session = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._retry_count = max(1, retry_count)
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, backend_config: dict) -> "AttendanceGateway":
        return cls(
            base_url=backend_config["url"],
            timeout_seconds=backend_config["timeout_seconds"],
            retry_count=backend_config["retry_count"],
            backoff_base_seconds=backend_config["backoff_base_seconds"],
            backoff_max_seconds=backend_config["backoff_max_seconds"],
        )

    def _backoff(self, attempt: int) -> float:
        return min(self._backoff_base * (2 ** attempt), self._backoff_max)

    @property
    def max_call_seconds(self) -> float:
        """1回の呼び出しがリトライ込みで要する最大時間（秒）"""
        waits = sum(self._backoff(n) for n in range(self._retry_count - 1))
        return self._retry_count * self._timeout + waits

    def _post(self, path: str, body: dict) -> dict:
        """POST送信（接続系エラー・タイムアウト・5xxは指数バックオフでリトライ）"""
        url = f"{self._base_url}{path}"
        last_error = None

        for attempt in range(self._retry_count):
            if attempt > 0:
                delay = self._backoff(attempt - 1)
                logger.info("%s を %.1f秒後に再試行します (%d/%d)", path, delay, attempt + 1, self._retry_count)
                self._sleep(delay)
            try:
                response = self._session.post(url, json=body, timeout=self._timeout)
            except TRANSIENT_ERRORS as e:
                last_error = GatewayError("network", str(e))
                continue
            except requests.RequestException as e:
                # URL不正・リダイレクト過多など、再試行しても結果が変わらないもの
                raise GatewayError("network", str(e))

            if response.status_code >= 500:
                last_error = GatewayError("http", response.text, response.status_code)
                continue
            if not response.ok:
                raise GatewayError("http", response.text, response.status_code)

            try:
                data = response.json()
            except ValueError:
                raise GatewayError("invalid_response", f"JSONではない応答: {path}", response.status_code)
            if not isinstance(data, dict):
                raise GatewayError("invalid_response", f"想定外の応答形式: {path}", response.status_code)
            return data

        logger.warning("%s の呼び出しに失敗しました: %s", path, last_error)
        raise last_error

    def check_work_status(self, token: str) -> bool:
        """本日出勤すべきか。data=Falseのときのみ休暇・祝日とみなす"""
        data = self._post("/core/checkWorkStatus", {"token": token})
        logger.debug("勤務状況: %s", data)
        return data.get("data") is not False

    def submit_attendance(
        self, token: str, latitude: float, longitude: float, source: TriggerSource
    ) -> SubmitResult:
        """打刻送信。失敗は例外ではなくSubmitResultで返す"""
        logger.info("打刻を送信します (%s)", source.value)
        try:
            data = self._post(
                "/core/markAutoAttendance",
                {
                    "token": token,
                    "latitude": str(latitude),
                    "longitude": str(longitude),
                    "source": source.value,
                },
            )
        except GatewayError as e:
            return SubmitResult(success=False, message=e.message)
        return SubmitResult(success=True, message=data.get("message"))

    def fetch_office_locations(self, token: str) -> list[OfficeLocation]:
        data = self._post("/core/getOfficeLocations", {"token": token})
        offices = data.get("offices") or []
        try:
            return [OfficeLocation.from_dict(o) for o in offices]
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError("invalid_response", f"拠点データが不正です: {e}")

    def save_location(
        self, token: str, latitude: float, longitude: float, captured_at: datetime
    ) -> bool:
        """勤務中の位置記録を送信"""
        try:
            self._post(
                "/core/saveLocation",
                {
                    "token": token,
                    "latitude": latitude,
                    "longitude": longitude,
                    "timestamp": captured_at.isoformat(),
                },
            )
        except GatewayError as e:
            logger.warning("位置記録の送信に失敗しました: %s", e.message)
            return False
        return True

    def register_push_token(self, token: str, push_token: str) -> bool:
        """プッシュ通知トークンをバックエンドに登録"""
        try:
            self._post("/core/modifyToken", {"token": token, "expo_token": push_token})
        except GatewayError as e:
            logger.warning("プッシュトークン登録に失敗しました: %s", e.message)
            return False
        return True

    def update_device_id(self, token: str) -> Optional[str]:
        try:
            data = self._post("/core/updateDeviceId", {"token": token})
        except GatewayError as e:
            logger.warning("デバイスID更新に失敗しました: %s", e.message)
            return None
        return data.get("device_id")
