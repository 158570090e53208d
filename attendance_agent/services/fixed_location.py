from attendance_agent.services.location_interface import (
    LocationHost,
    PermissionStatus,
    Position,
)


def _status(granted: bool) -> PermissionStatus:
    return PermissionStatus.GRANTED if granted else PermissionStatus.DENIED


class FixedLocationHost(LocationHost):
    """設定された座標を返す位置情報ホスト。GPSのないデスクトップ環境・検証用。"""

    def __init__(
        self,
        latitude: float = None,
        longitude: float = None,
        accuracy: float = 10.0,
        foreground: bool = True,
        background: bool = True,
        services_enabled: bool = True,
    ):
        self._latitude = latitude
        self._longitude = longitude
        self._accuracy = accuracy
        self._foreground = foreground
        self._background = background
        self._services_enabled = services_enabled

    @classmethod
    def from_config(cls, fixed_config: dict) -> "FixedLocationHost":
        return cls(**fixed_config)

    def foreground_permission(self) -> PermissionStatus:
        return _status(self._foreground)

    def background_permission(self) -> PermissionStatus:
        return _status(self._background)

    def request_foreground_permission(self) -> PermissionStatus:
        # 対話的な許可ダイアログは存在しないため、設定値をそのまま返す
        return self.foreground_permission()

    def request_background_permission(self) -> PermissionStatus:
        return self.background_permission()

    def services_enabled(self) -> bool:
        return self._services_enabled

    def current_position(self) -> Position:
        if self._latitude is None or self._longitude is None:
            raise RuntimeError("固定座標が設定されていません")
        return Position(
            latitude=float(self._latitude),
            longitude=float(self._longitude),
            accuracy=self._accuracy,
        )

    def move_to(self, latitude: float, longitude: float, accuracy: float = None):
        """座標を変更する（ジオフェンスのサンプリング検証用）"""
        self._latitude = latitude
        self._longitude = longitude
        if accuracy is not None:
            self._accuracy = accuracy
