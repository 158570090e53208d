# schedulers/geofence_host.py
import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from math import atan2, cos, radians, sin, sqrt
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from attendance_agent.services.location_interface import LocationHost
from attendance_agent.services.models import GeofenceRegion

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000.0


class GeofenceEvent(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


RegionHandler = Callable[[str, GeofenceEvent], None]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """2点間の距離（メートル）"""
    phi1, phi2 = radians(lat1), radians(lat2)
    d_phi = radians(lat2 - lat1)
    d_lambda = radians(lon2 - lon1)
    a = sin(d_phi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * atan2(sqrt(a), sqrt(1 - a))


class GeofenceHost(ABC):
    """OSの領域監視機能の抽象インターフェース"""

    @abstractmethod
    def start(self, task_id: str, regions: list[GeofenceRegion], handler: RegionHandler) -> None:
        """領域セットを登録する（既存の登録は置き換える）"""
        ...

    @abstractmethod
    def stop(self, task_id: str) -> None:
        ...

    @abstractmethod
    def is_registered(self, task_id: str) -> bool:
        ...

    def shutdown(self) -> None:
        pass


class SamplingGeofenceHost(GeofenceHost):
    """位置情報を定期サンプリングして領域の出入りを検出するジオフェンスホスト

    OSの領域監視を持たない環境向け。境界をまたいだときだけイベントを発火する。
    """

    def __init__(self, location_host: LocationHost, sample_interval_seconds: int = 60):
        self._location_host = location_host
        self._interval = sample_interval_seconds
        self._scheduler = BackgroundScheduler()
        self._lock = threading.Lock()
        self._regions: dict[str, list[GeofenceRegion]] = {}
        self._handlers: dict[str, RegionHandler] = {}
        # (task_id, region_id) -> 領域内か。未観測はキーなし
        self._inside: dict[tuple[str, str], bool] = {}

    def start(self, task_id: str, regions: list[GeofenceRegion], handler: RegionHandler) -> None:
        with self._lock:
            self._regions[task_id] = list(regions)
            self._handlers[task_id] = handler
            self._inside = {k: v for k, v in self._inside.items() if k[0] != task_id}

        self._scheduler.add_job(
            self._sample,
            trigger=IntervalTrigger(seconds=self._interval),
            args=[task_id],
            id=task_id,
            replace_existing=True,
            max_instances=1,
        )
        if not self._scheduler.running:
            self._scheduler.start()

    def stop(self, task_id: str) -> None:
        if self._scheduler.get_job(task_id) is not None:
            self._scheduler.remove_job(task_id)
        with self._lock:
            self._regions.pop(task_id, None)
            self._handlers.pop(task_id, None)
            self._inside = {k: v for k, v in self._inside.items() if k[0] != task_id}

    def is_registered(self, task_id: str) -> bool:
        return self._scheduler.get_job(task_id) is not None

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def _sample(self, task_id: str):
        """1回分のサンプリング。境界をまたいだ領域についてハンドラを呼ぶ"""
        try:
            position = self._location_host.current_position()
        except Exception as e:
            logger.warning("ジオフェンス用の位置取得に失敗しました: %s", e)
            return

        events = []
        with self._lock:
            handler = self._handlers.get(task_id)
            for region in self._regions.get(task_id, []):
                distance = haversine_m(
                    position.latitude, position.longitude, region.latitude, region.longitude
                )
                inside = distance <= region.radius
                key = (task_id, region.identifier)
                was_inside = self._inside.get(key)
                self._inside[key] = inside

                if inside and not was_inside and region.notify_on_enter:
                    events.append((region.identifier, GeofenceEvent.ENTER))
                elif was_inside and not inside and region.notify_on_exit:
                    events.append((region.identifier, GeofenceEvent.EXIT))

        if handler is None:
            return
        for region_id, event in events:
            try:
                handler(region_id, event)
            except Exception:
                logger.exception("ジオフェンスイベント処理でエラー: %s", region_id)
