from attendance_agent.graph.nodes.lock_node import heartbeat
from attendance_agent.graph.state import AttemptState
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.location_provider import LocationFailure, LocationProvider
from attendance_agent.services.models import FailureReason, Outcome, TriggerSource


def location_node(
    state: AttemptState, locator: LocationProvider = None, lock: DedupLock = None
) -> dict:
    """現在位置を取得するノード

    ジオフェンス起点はバックグラウンド権限を必須とし、手動起点のみ
    未許可の権限をその場でリクエストする。
    """
    lost = heartbeat(state, lock)
    if lost:
        return lost

    source = state["source"]
    fix = locator.get_current_location(
        require_background=source == TriggerSource.GEOFENCE,
        request_permissions=source == TriggerSource.MANUAL,
    )

    if fix is LocationFailure.PERMISSION_DENIED:
        return {
            "outcome": Outcome.SKIPPED_PERMISSION,
            "message": "位置情報の権限がありません。設定アプリから許可してください",
        }
    if isinstance(fix, LocationFailure):
        return {
            "outcome": Outcome.FAILED,
            "failure_reason": FailureReason.LOCATION_UNAVAILABLE,
            "message": fix.value,
        }

    return {
        "latitude": fix.latitude,
        "longitude": fix.longitude,
        "accuracy": fix.accuracy,
        "low_confidence": fix.low_confidence,
    }
