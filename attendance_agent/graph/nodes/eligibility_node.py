import logging

from attendance_agent.graph.state import AttemptState
from attendance_agent.services.location_provider import is_valid_coordinate
from attendance_agent.services.models import FailureReason, Outcome

logger = logging.getLogger(__name__)


def eligibility_node(state: AttemptState) -> dict:
    """送信前に測位結果が使えるかを確認するノード"""
    latitude, longitude = state["latitude"], state["longitude"]
    if latitude is None or longitude is None or not is_valid_coordinate(latitude, longitude):
        return {
            "outcome": Outcome.FAILED,
            "failure_reason": FailureReason.LOCATION_UNAVAILABLE,
            "message": "invalid_fix",
        }

    # 精度が低くても打刻は行う（診断・通知用のフラグのみ）
    if state["low_confidence"]:
        logger.warning(
            "低精度の位置情報で打刻します (±%sm, %s)", state["accuracy"], state["source"].value
        )
    return {}
