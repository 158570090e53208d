from dataclasses import dataclass
from enum import Enum
from typing import Optional

GEOFENCE_RADIUS = 50  # メートル


class TriggerSource(str, Enum):
    POLLING = "polling"
    GEOFENCE = "geofence"
    MANUAL = "manual"


class Outcome(str, Enum):
    SUCCESS = "success"
    SKIPPED_ALREADY_MARKED = "skipped_already_marked"
    SKIPPED_LEAVE = "skipped_leave"
    SKIPPED_LOCKED = "skipped_locked"
    SKIPPED_PERMISSION = "skipped_permission"
    FAILED = "failed"


class FailureReason(str, Enum):
    NO_TOKEN = "no_token"
    LOCATION_UNAVAILABLE = "location_unavailable"
    NETWORK_FAILURE = "network_failure"
    SUBMIT_FAILED = "submit_failed"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class AttemptResult:
    outcome: Outcome
    source: TriggerSource
    reason: Optional[FailureReason] = None
    message: Optional[str] = None
    low_confidence: bool = False

    @property
    def is_success_equivalent(self) -> bool:
        """当日分の打刻が完了している状態か"""
        return self.outcome in (Outcome.SUCCESS, Outcome.SKIPPED_ALREADY_MARKED)


@dataclass(frozen=True)
class OfficeLocation:
    id: str
    latitude: float
    longitude: float
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "OfficeLocation":
        return cls(
            id=str(data["id"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            name=data.get("name") or "",
        )


@dataclass(frozen=True)
class GeofenceRegion:
    identifier: str
    latitude: float
    longitude: float
    radius: float = GEOFENCE_RADIUS
    notify_on_enter: bool = True
    notify_on_exit: bool = False

    @classmethod
    def from_office(cls, office: OfficeLocation, radius: float = GEOFENCE_RADIUS) -> "GeofenceRegion":
        """オフィス拠点1件からジオフェンス領域を1件生成"""
        return cls(
            identifier=office.id,
            latitude=office.latitude,
            longitude=office.longitude,
            radius=radius,
        )

    def to_cache(self) -> dict:
        return {"id": self.identifier, "lat": self.latitude, "lng": self.longitude}
