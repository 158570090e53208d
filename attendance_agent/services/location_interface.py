from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


@dataclass
class Position:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None  # メートル


class LocationHost(ABC):
    """端末の位置情報機能の抽象インターフェース（プラットフォームごとにアダプタを用意）"""

    @abstractmethod
    def foreground_permission(self) -> PermissionStatus:
        """フォアグラウンド位置情報権限の現在の状態"""
        ...

    @abstractmethod
    def background_permission(self) -> PermissionStatus:
        """バックグラウンド位置情報権限の現在の状態"""
        ...

    @abstractmethod
    def request_foreground_permission(self) -> PermissionStatus:
        ...

    @abstractmethod
    def request_background_permission(self) -> PermissionStatus:
        ...

    @abstractmethod
    def services_enabled(self) -> bool:
        """端末の位置情報サービスが有効か"""
        ...

    @abstractmethod
    def current_position(self) -> Position:
        """現在位置を取得（取得できない場合は例外）"""
        ...
