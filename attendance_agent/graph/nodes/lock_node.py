# graph/nodes/lock_node.py
import logging
from typing import Optional

from attendance_agent.graph.state import AttemptState
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.models import Outcome

logger = logging.getLogger(__name__)


def acquire_lock_node(state: AttemptState, lock: DedupLock = None) -> dict:
    """重複打刻防止ロックを取得するノード"""
    if not lock.try_acquire(state["attempt_id"]):
        return {"outcome": Outcome.SKIPPED_LOCKED}
    # 確認からロック取得までの間に他の試行が打刻を完了している場合がある
    if lock.is_marked_today():
        lock.release(state["attempt_id"])
        logger.info("ロック取得までに他の試行が打刻を完了しました")
        return {"outcome": Outcome.SKIPPED_ALREADY_MARKED}
    return {"lock_held": True}


def heartbeat(state: AttemptState, lock: DedupLock) -> Optional[dict]:
    """バックエンド呼び出し前にロックを延長する。奪われていれば中断用の更新を返す"""
    if lock.refresh(state["attempt_id"]):
        return None
    logger.warning("ロックの有効期限が切れたため試行を中断します (%s)", state["source"].value)
    return {
        "outcome": Outcome.SKIPPED_LOCKED,
        "lock_held": False,
        "message": "lock_expired",
    }


def release_lock_node(state: AttemptState, lock: DedupLock = None) -> dict:
    """ロックを解放するノード。ロック取得後のすべての終了経路がここを通る"""
    if state["lock_held"]:
        lock.release(state["attempt_id"])
    return {"lock_held": False}
