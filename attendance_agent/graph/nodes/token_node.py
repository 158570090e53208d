import logging

from attendance_agent.graph.state import AttemptState
from attendance_agent.services.models import FailureReason, Outcome
from attendance_agent.services.storage import TOKEN_KEY, KeyValueStore

logger = logging.getLogger(__name__)


def token_node(state: AttemptState, kv: KeyValueStore = None) -> dict:
    """保存済みの認証トークンを読み込むノード"""
    token = kv.get(TOKEN_KEY)
    if not token:
        logger.warning("認証トークンが見つかりません")
        return {
            "outcome": Outcome.FAILED,
            "failure_reason": FailureReason.NO_TOKEN,
            "message": "認証トークンがありません",
        }
    return {"token": token}
