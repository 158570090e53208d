import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from attendance_agent.services.location_interface import LocationHost, PermissionStatus

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_METERS = 100


class LocationFailure(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    SERVICES_DISABLED = "services_disabled"
    INVALID_FIX = "invalid_fix"


@dataclass
class LocationFix:
    latitude: float
    longitude: float
    accuracy: Optional[float]
    low_confidence: bool = False


@dataclass
class PermissionState:
    foreground_granted: bool
    background_granted: bool


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


class LocationProvider:
    """端末位置をベストエフォートで取得する。失敗は例外ではなくLocationFailureで返す。

    GPSの測位は端末によって15〜30秒かかることがあるため、クライアント側では
    タイムアウトを設けない。上限はバックグラウンド実行ホストの持ち時間のみ。
    """

    def __init__(self, host: LocationHost, low_confidence_meters: float = LOW_CONFIDENCE_METERS):
        self._host = host
        self._low_confidence_meters = low_confidence_meters

    def permission_state(self) -> PermissionState:
        """現在の権限状態（キャッシュしない）"""
        return PermissionState(
            foreground_granted=self._host.foreground_permission() == PermissionStatus.GRANTED,
            background_granted=self._host.background_permission() == PermissionStatus.GRANTED,
        )

    def ensure_permissions(self, background: bool = False) -> PermissionState:
        """未許可の権限をリクエストする。バックグラウンドは要求時のみ"""
        foreground = self._host.foreground_permission()
        if foreground != PermissionStatus.GRANTED:
            foreground = self._host.request_foreground_permission()
        if foreground != PermissionStatus.GRANTED:
            logger.warning("フォアグラウンド位置情報権限が拒否されました")
            return PermissionState(foreground_granted=False, background_granted=False)

        background_granted = self._host.background_permission() == PermissionStatus.GRANTED
        if background and not background_granted:
            background_granted = (
                self._host.request_background_permission() == PermissionStatus.GRANTED
            )
            if not background_granted:
                logger.warning("バックグラウンド位置情報権限が拒否されました")

        return PermissionState(foreground_granted=True, background_granted=background_granted)

    def get_current_location(
        self,
        require_background: bool = False,
        request_permissions: bool = False,
    ) -> Union[LocationFix, LocationFailure]:
        """現在位置を取得する"""
        if request_permissions:
            permissions = self.ensure_permissions(background=require_background)
        else:
            permissions = self.permission_state()

        if not permissions.foreground_granted:
            logger.warning("位置情報権限がありません")
            return LocationFailure.PERMISSION_DENIED
        if require_background and not permissions.background_granted:
            logger.warning("バックグラウンド位置情報権限がありません")
            return LocationFailure.PERMISSION_DENIED

        if not self._host.services_enabled():
            logger.warning("位置情報サービスが無効です")
            return LocationFailure.SERVICES_DISABLED

        try:
            position = self._host.current_position()
        except Exception as e:
            logger.warning("位置情報の取得に失敗しました: %s", e)
            return LocationFailure.INVALID_FIX

        if not is_valid_coordinate(position.latitude, position.longitude):
            logger.warning("不正な測位結果: %s", position)
            return LocationFailure.INVALID_FIX

        low_confidence = (
            position.accuracy is not None and position.accuracy > self._low_confidence_meters
        )
        if low_confidence:
            logger.info("測位精度が低い位置情報です (±%.0fm)", position.accuracy)

        logger.info("位置情報を取得しました: lat=%s lng=%s", position.latitude, position.longitude)
        return LocationFix(
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy=position.accuracy,
            low_confidence=low_confidence,
        )
