import logging

from attendance_agent.graph.nodes.lock_node import heartbeat
from attendance_agent.graph.state import AttemptState
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.gateway import AttendanceGateway
from attendance_agent.services.models import FailureReason, Outcome

logger = logging.getLogger(__name__)


def submit_node(
    state: AttemptState, gateway: AttendanceGateway = None, lock: DedupLock = None
) -> dict:
    """バックエンドへ打刻を送信するノード"""
    # 測位に時間がかかった場合も、送信直前にロックが自分のものか確認する
    lost = heartbeat(state, lock)
    if lost:
        return lost

    result = gateway.submit_attendance(
        state["token"], state["latitude"], state["longitude"], state["source"]
    )
    if not result.success:
        logger.warning("打刻送信に失敗しました: %s", result.message)
        return {
            "outcome": Outcome.FAILED,
            "failure_reason": FailureReason.SUBMIT_FAILED,
            "message": result.message,
        }
    return {"message": result.message}
