import logging
from datetime import datetime
from enum import Enum

from attendance_agent.schedulers.scheduler import Scheduler, SchedulerStatus
from attendance_agent.services.gateway import AttendanceGateway, GatewayError
from attendance_agent.services.location_provider import LocationFailure, LocationProvider
from attendance_agent.services.storage import (
    LAST_LOCATION_TRACKED_KEY,
    TOKEN_KEY,
    KeyValueStore,
)
from attendance_agent.services.working_hours import is_within_working_hours

logger = logging.getLogger(__name__)

LOCATION_TRACKING_TASK = "random-location-check"

# 勤務中の位置記録の時間帯（月〜金 10:00〜17:59）
TRACKING_HOURS = {"weekdays": [0, 1, 2, 3, 4], "start_hour": 10, "end_hour": 18}


def _now() -> datetime:
    """テスト時にモック可能な現在時刻取得"""
    return datetime.now()


class CaptureOutcome(str, Enum):
    CAPTURED = "captured"
    SKIPPED_OUTSIDE_HOURS = "skipped_outside_hours"
    SKIPPED_LEAVE = "skipped_leave"
    NO_TOKEN = "no_token"
    FAILED = "failed"


class LocationTracker:
    """勤務時間中に定期的に現在位置をバックエンドへ記録する

    打刻とは独立しており、ロックや「本日打刻済み」マーカーには触れない。
    """

    def __init__(
        self,
        gateway: AttendanceGateway,
        locator: LocationProvider,
        store: KeyValueStore,
        scheduler: Scheduler,
        working_hours: dict = None,
    ):
        self._gateway = gateway
        self._locator = locator
        self._store = store
        self._scheduler = scheduler
        self._working_hours = working_hours or TRACKING_HOURS

    def start(self) -> bool:
        """位置情報権限（バックグラウンド含む）を確認して定期タスクを登録する"""
        logger.info("位置記録サービスを開始します")
        permissions = self._locator.ensure_permissions(background=True)
        if not permissions.foreground_granted:
            logger.warning("位置情報権限がないため位置記録を開始できません")
            return False
        if not permissions.background_granted:
            logger.warning("バックグラウンド位置情報権限がないため位置記録を開始できません")
            return False

        status = self._scheduler.status()
        if status != SchedulerStatus.AVAILABLE:
            logger.warning("バックグラウンド実行が利用できません (%s)。位置記録は無効です", status.value)
            return False

        if self._scheduler.is_registered(LOCATION_TRACKING_TASK):
            logger.info("位置記録タスクは登録済みです")
            return True

        try:
            self._scheduler.register(LOCATION_TRACKING_TASK, self.on_wake)
        except Exception:
            logger.exception("位置記録タスクの登録に失敗しました")
            return False
        return True

    def stop(self) -> bool:
        try:
            if self._scheduler.is_registered(LOCATION_TRACKING_TASK):
                self._scheduler.unregister(LOCATION_TRACKING_TASK)
                logger.info("位置記録サービスを停止しました")
        except Exception:
            logger.exception("位置記録タスクの解除に失敗しました")
            return False
        return True

    def is_running(self) -> bool:
        try:
            return (
                self._scheduler.status() == SchedulerStatus.AVAILABLE
                and self._scheduler.is_registered(LOCATION_TRACKING_TASK)
            )
        except Exception:
            logger.exception("位置記録タスクの状態確認に失敗しました")
            return False

    def on_wake(self) -> CaptureOutcome:
        """定期起動。勤務時間外は何もしない"""
        if not is_within_working_hours(now=_now(), settings=self._working_hours):
            logger.info("勤務時間外のため位置記録をスキップします")
            return CaptureOutcome.SKIPPED_OUTSIDE_HOURS
        return self._capture(require_background=True)

    def capture_location_now(self) -> CaptureOutcome:
        """時間帯に関係なく今すぐ位置を記録する"""
        return self._capture(require_background=False)

    def _capture(self, require_background: bool) -> CaptureOutcome:
        token = self._store.get(TOKEN_KEY)
        if not token:
            logger.warning("認証トークンがないため位置記録を行いません")
            return CaptureOutcome.NO_TOKEN

        try:
            should_work = self._gateway.check_work_status(token)
        except GatewayError as e:
            logger.warning("勤務状況の確認に失敗しました: %s", e.message)
            return CaptureOutcome.FAILED
        if not should_work:
            logger.info("休暇または祝日のため位置記録をスキップします")
            return CaptureOutcome.SKIPPED_LEAVE

        fix = self._locator.get_current_location(require_background=require_background)
        if isinstance(fix, LocationFailure):
            logger.warning("位置記録用の測位に失敗しました: %s", fix.value)
            return CaptureOutcome.FAILED

        captured_at = _now()
        if not self._gateway.save_location(token, fix.latitude, fix.longitude, captured_at):
            return CaptureOutcome.FAILED

        self._store.set(LAST_LOCATION_TRACKED_KEY, captured_at.isoformat())
        logger.info("位置を記録しました: lat=%s lng=%s", fix.latitude, fix.longitude)
        return CaptureOutcome.CAPTURED

    def get_last_tracked_info(self) -> dict:
        return {
            "timestamp": self._store.get(LAST_LOCATION_TRACKED_KEY),
            "is_running": self.is_running(),
        }

    def close(self) -> None:
        self._scheduler.shutdown()
