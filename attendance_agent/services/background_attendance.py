import json
import logging
from datetime import datetime
from typing import Callable, Optional

from attendance_agent.services.gateway import AttendanceGateway
from attendance_agent.services.navigation import NavigationTarget, NotificationRouter
from attendance_agent.services.storage import (
    BACKGROUND_REGISTERED_KEY,
    DEVICE_ID_KEY,
    PUSH_TOKEN_KEY,
    TOKEN_KEY,
    KeyValueStore,
)
from attendance_agent.triggers.geofence import GeofenceTrigger
from attendance_agent.triggers.location_tracking import CaptureOutcome, LocationTracker
from attendance_agent.triggers.manual import ManualTrigger
from attendance_agent.triggers.polling import PollingTrigger

logger = logging.getLogger(__name__)


class BackgroundAttendance:
    """画面側に公開する自動打刻の操作窓口（定期起動＋ジオフェンス＋手動）

    登録状態はストアにも保存するため、別プロセスから get_status を呼んでも
    常駐プロセスの登録を確認できる。常駐プロセスが異常終了した場合は
    stop を経由しないため、登録済みのまま残る。
    """

    def __init__(
        self,
        polling: PollingTrigger,
        manual: ManualTrigger,
        geofence: Optional[GeofenceTrigger] = None,
        store: KeyValueStore = None,
        gateway: AttendanceGateway = None,
        tracker: Optional[LocationTracker] = None,
    ):
        self._polling = polling
        self._manual = manual
        self._geofence = geofence
        self._store = store
        self._gateway = gateway
        self._tracker = tracker

    @property
    def manual(self) -> ManualTrigger:
        return self._manual

    def start_background_attendance(self) -> bool:
        """定期起動とジオフェンスを開始する。どちらかが開始できればTrue

        位置記録は打刻とは独立しているため、成否を戻り値に含めない。
        """
        logger.info("自動打刻サービスを開始します")
        polling_ok = self._polling.start()
        geofence_ok = self._geofence.initialize() if self._geofence else False
        logger.info("定期起動: %s / ジオフェンス: %s", polling_ok, geofence_ok)
        if self._tracker is not None and not self._tracker.start():
            logger.warning("位置記録サービスを開始できませんでした")

        started = polling_ok or geofence_ok
        self._save_registered(started)
        return started

    def stop_background_attendance(self) -> bool:
        logger.info("自動打刻サービスを停止します")
        polling_ok = self._polling.stop()
        geofence_ok = self._geofence.stop() if self._geofence else True
        if self._tracker is not None:
            self._tracker.stop()
        self._save_registered(False)
        return polling_ok and geofence_ok

    def refresh(self) -> bool:
        """設定や拠点が変わったときの再初期化"""
        self.stop_background_attendance()
        return self.start_background_attendance()

    def close(self) -> None:
        """プロセス終了時にスケジューラ・実行スレッド・ストアを片付ける"""
        self._polling.close()
        if self._geofence is not None:
            self._geofence.close()
        if self._tracker is not None:
            self._tracker.close()
        if self._store is not None:
            self._store.close()

    def manual_attendance_check(self) -> bool:
        result = self._manual.trigger(show_alert=True)
        return result.is_success_equivalent

    def handle_notification(
        self, payload: Optional[dict], navigate: Callable[[NavigationTarget], None] = None
    ) -> Optional[NavigationTarget]:
        """プッシュ通知の遷移先を処理する。打刻用の遷移先なら手動打刻を実行する"""
        return NotificationRouter(self._manual, navigate=navigate).handle(payload)

    def capture_location_now(self) -> Optional[CaptureOutcome]:
        if self._tracker is None:
            logger.info("位置記録サービスは無効です")
            return None
        return self._tracker.capture_location_now()

    def _save_registered(self, registered: bool) -> None:
        if self._store is None:
            return
        self._store.set(
            BACKGROUND_REGISTERED_KEY,
            json.dumps({"registered": registered, "updated_at": datetime.now().isoformat()}),
        )

    def _load_registered(self) -> bool:
        if self._store is None:
            return False
        raw = self._store.get(BACKGROUND_REGISTERED_KEY)
        if not raw:
            return False
        try:
            return json.loads(raw).get("registered") is True
        except (ValueError, AttributeError):
            logger.warning("登録状態の保存データが壊れています: %s", raw)
            return False

    def get_status(self) -> dict:
        polling_running = self._polling.is_running()
        geofence_status = (
            self._geofence.get_status()
            if self._geofence
            else {"is_running": False, "region_count": 0, "regions": None}
        )
        tracking_status = (
            self._tracker.get_last_tracked_info()
            if self._tracker
            else {"timestamp": None, "is_running": False}
        )
        running = polling_running or geofence_status["is_running"]
        return {
            "registered": running or self._load_registered(),
            "region_count": geofence_status["region_count"],
            "polling": {"is_running": polling_running},
            "geofencing": geofence_status,
            "location_tracking": tracking_status,
        }

    def register_device(self, push_token: str) -> bool:
        """プッシュ通知トークンとデバイスIDをバックエンドに登録する"""
        token = self._store.get(TOKEN_KEY)
        if not token or not push_token:
            logger.warning("トークンが不足しているためデバイス登録を行いません")
            return False

        if not self._gateway.register_push_token(token, push_token):
            return False
        self._store.set(PUSH_TOKEN_KEY, push_token)

        device_id = self._gateway.update_device_id(token)
        if device_id:
            self._store.set(DEVICE_ID_KEY, device_id)
        return True
