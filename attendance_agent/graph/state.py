from typing import TypedDict, Optional

from attendance_agent.services.models import FailureReason, Outcome, TriggerSource


class AttemptState(TypedDict):
    attempt_id: str                         # ロック所有者ID（試行ごとに一意）
    source: TriggerSource                   # polling / geofence / manual
    lock_held: bool                         # ロック取得済み
    token: Optional[str]                    # 認証トークン
    latitude: Optional[float]               # 測位結果
    longitude: Optional[float]
    accuracy: Optional[float]               # 測位精度 (m)
    low_confidence: bool                    # 精度100m超
    outcome: Optional[Outcome]              # 確定した結果（Noneなら継続）
    failure_reason: Optional[FailureReason]
    message: Optional[str]                  # 詳細メッセージ


def initial_state(attempt_id: str, source: TriggerSource) -> AttemptState:
    return {
        "attempt_id": attempt_id,
        "source": source,
        "lock_held": False,
        "token": None,
        "latitude": None,
        "longitude": None,
        "accuracy": None,
        "low_confidence": False,
        "outcome": None,
        "failure_reason": None,
        "message": None,
    }
