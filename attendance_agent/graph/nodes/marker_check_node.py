# graph/nodes/marker_check_node.py
import logging

from attendance_agent.graph.state import AttemptState
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.models import Outcome

logger = logging.getLogger(__name__)


def marker_check_node(state: AttemptState, lock: DedupLock = None) -> dict:
    """本日打刻済みかを確認するノード（読み取りのみのためロック不要）"""
    if lock.is_marked_today():
        logger.info("本日は打刻済みです (%s)", state["source"].value)
        return {"outcome": Outcome.SKIPPED_ALREADY_MARKED}
    return {}
