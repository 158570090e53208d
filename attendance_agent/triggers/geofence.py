import json
import logging
from typing import Optional

from attendance_agent.schedulers.geofence_host import GeofenceEvent, GeofenceHost
from attendance_agent.services.coordinator import AttendanceCoordinator
from attendance_agent.services.gateway import GatewayError
from attendance_agent.services.models import GEOFENCE_RADIUS, GeofenceRegion, TriggerSource
from attendance_agent.services.storage import GEOFENCE_REGIONS_KEY, TOKEN_KEY, KeyValueStore
from attendance_agent.services.working_hours import is_within_working_hours

logger = logging.getLogger(__name__)

GEOFENCE_TASK_NAME = "attendance-geofence"


class GeofenceTrigger:
    """オフィス領域への進入イベントから打刻を試行するトリガー"""

    def __init__(
        self,
        coordinator: AttendanceCoordinator,
        host: GeofenceHost,
        store: KeyValueStore,
        radius_meters: float = GEOFENCE_RADIUS,
        working_hours: dict = None,
    ):
        self._coordinator = coordinator
        self._host = host
        self._store = store
        self._radius = radius_meters
        self._working_hours = working_hours

    def initialize(self) -> bool:
        """拠点一覧を取得し、全拠点の領域をまとめて登録し直す"""
        logger.info("ジオフェンスを初期化します")
        try:
            permissions = self._coordinator.locator.ensure_permissions(background=True)
            if not permissions.foreground_granted:
                logger.warning("位置情報権限がないためジオフェンスを開始できません")
                return False
            if not permissions.background_granted:
                # 後から許可される可能性があるため登録は続行する
                logger.warning("バックグラウンド位置情報権限がありません。ジオフェンスが動作しない可能性があります")

            token = self._store.get(TOKEN_KEY)
            if not token:
                logger.warning("認証トークンがないためジオフェンスを開始できません")
                return False

            offices = self._coordinator.gateway.fetch_office_locations(token)
            if not offices:
                logger.warning("オフィス拠点が見つからないためジオフェンスは無効です")
                return False

            regions = [GeofenceRegion.from_office(o, radius=self._radius) for o in offices]
            self._store.set(
                GEOFENCE_REGIONS_KEY, json.dumps([r.to_cache() for r in regions])
            )

            if self._host.is_registered(GEOFENCE_TASK_NAME):
                self._host.stop(GEOFENCE_TASK_NAME)
                logger.info("既存のジオフェンス領域を更新します")

            self._host.start(GEOFENCE_TASK_NAME, regions, self.on_region_event)
        except GatewayError as e:
            logger.warning("オフィス拠点の取得に失敗しました: %s", e.message)
            return False
        except Exception:
            logger.exception("ジオフェンスの初期化に失敗しました")
            return False

        logger.info("ジオフェンスを開始しました: %d拠点 (半径%sm)", len(regions), self._radius)
        return True

    def stop(self) -> bool:
        try:
            if self._host.is_registered(GEOFENCE_TASK_NAME):
                self._host.stop(GEOFENCE_TASK_NAME)
                logger.info("ジオフェンスを停止しました")
            else:
                logger.info("ジオフェンスは動作していません")
        except Exception:
            logger.exception("ジオフェンスの停止に失敗しました")
            return False
        return True

    def close(self) -> None:
        self._host.shutdown()

    def refresh(self) -> bool:
        """拠点変更時の再登録"""
        logger.info("ジオフェンス領域を再取得します")
        self.stop()
        return self.initialize()

    def get_regions(self) -> Optional[list[dict]]:
        raw = self._store.get(GEOFENCE_REGIONS_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("キャッシュされた領域データが壊れています")
            return None

    def is_running(self) -> bool:
        try:
            return self._host.is_registered(GEOFENCE_TASK_NAME) and self.get_regions() is not None
        except Exception:
            logger.exception("ジオフェンスの状態確認に失敗しました")
            return False

    def get_status(self) -> dict:
        regions = self.get_regions()
        return {
            "is_running": self.is_running(),
            "region_count": len(regions) if regions else 0,
            "regions": regions,
        }

    def on_region_event(self, region_id: str, event: GeofenceEvent) -> None:
        """領域イベント。進入かつ受付時間内のときだけ打刻を試行する"""
        if event != GeofenceEvent.ENTER:
            return

        logger.info("オフィス領域に進入しました: %s", region_id)
        if not is_within_working_hours(settings=self._working_hours):
            logger.info("受付時間外のためジオフェンス打刻をスキップします")
            return

        result = self._coordinator.attempt(TriggerSource.GEOFENCE)
        logger.info("ジオフェンス打刻の結果: %s", result.outcome.value)
