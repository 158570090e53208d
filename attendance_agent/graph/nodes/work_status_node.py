# graph/nodes/work_status_node.py
import logging

from attendance_agent.graph.nodes.lock_node import heartbeat
from attendance_agent.graph.state import AttemptState
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.gateway import AttendanceGateway, GatewayError
from attendance_agent.services.models import FailureReason, Outcome

logger = logging.getLogger(__name__)


def work_status_node(
    state: AttemptState, gateway: AttendanceGateway = None, lock: DedupLock = None
) -> dict:
    """今日が打刻対象日か（休暇・祝日でないか）をバックエンドで確認するノード"""
    lost = heartbeat(state, lock)
    if lost:
        return lost

    try:
        should_work = gateway.check_work_status(state["token"])
    except GatewayError as e:
        return {
            "outcome": Outcome.FAILED,
            "failure_reason": FailureReason.NETWORK_FAILURE,
            "message": e.message,
        }

    if not should_work:
        logger.info("休暇または祝日のため打刻しません")
        return {"outcome": Outcome.SKIPPED_LEAVE}
    return {}
