# graph/nodes/mark_completed_node.py
from attendance_agent.graph.state import AttemptState
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.models import Outcome


def mark_completed_node(state: AttemptState, lock: DedupLock = None) -> dict:
    """送信成功後に本日の打刻完了を記録するノード"""
    lock.mark_today()
    return {"outcome": Outcome.SUCCESS}
