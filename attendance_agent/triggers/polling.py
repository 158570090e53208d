import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError

from attendance_agent.schedulers.scheduler import Scheduler, SchedulerStatus
from attendance_agent.services.coordinator import AttendanceCoordinator
from attendance_agent.services.models import AttemptResult, TriggerSource
from attendance_agent.services.working_hours import is_within_working_hours

logger = logging.getLogger(__name__)

BACKGROUND_FETCH_TASK = "attendance-background-fetch"


class PollingTrigger:
    """OSの定期起動から打刻を試行するトリガー

    リトライは行わない。次回の定期起動がリトライの代わりになる。
    """

    def __init__(
        self,
        coordinator: AttendanceCoordinator,
        scheduler: Scheduler,
        budget_seconds: float = 30,
        working_hours_only: bool = False,
        working_hours: dict = None,
    ):
        self._coordinator = coordinator
        self._scheduler = scheduler
        self._budget = budget_seconds
        self._working_hours_only = working_hours_only
        self._working_hours = working_hours
        # 試行はキャンセルしないため、持ち時間を超えた試行はこのスレッドで完走させる
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="polling-attempt")

    def start(self) -> bool:
        """定期タスクを登録する。バックグラウンド実行が使えない場合はFalse"""
        status = self._scheduler.status()
        if status != SchedulerStatus.AVAILABLE:
            logger.warning("バックグラウンド実行が利用できません (%s)。定期打刻は無効です", status.value)
            return False

        if self._scheduler.is_registered(BACKGROUND_FETCH_TASK):
            logger.info("定期タスクは登録済みです")
            return True

        try:
            self._scheduler.register(BACKGROUND_FETCH_TASK, self.on_wake)
        except Exception:
            logger.exception("定期タスクの登録に失敗しました")
            return False
        return True

    def stop(self) -> bool:
        try:
            if self._scheduler.is_registered(BACKGROUND_FETCH_TASK):
                self._scheduler.unregister(BACKGROUND_FETCH_TASK)
            else:
                logger.info("定期タスクは登録されていません")
        except Exception:
            logger.exception("定期タスクの解除に失敗しました")
            return False
        return True

    def is_running(self) -> bool:
        try:
            return self._scheduler.is_registered(BACKGROUND_FETCH_TASK)
        except Exception:
            logger.exception("定期タスクの状態確認に失敗しました")
            return False

    def on_wake(self) -> None:
        """OSからの定期起動。持ち時間内に必ず戻る"""
        logger.info("定期起動を受信しました")
        if self._working_hours_only and not is_within_working_hours(settings=self._working_hours):
            logger.info("受付時間外のため定期打刻をスキップします")
            return

        future = self._executor.submit(self._coordinator.attempt, TriggerSource.POLLING)
        try:
            result: AttemptResult = future.result(timeout=self._budget)
        except FutureTimeoutError:
            logger.warning("実行時間の上限(%s秒)に達しました。試行は継続中です", self._budget)
            return
        except Exception:
            logger.exception("定期打刻でエラーが発生しました")
            return

        logger.info("定期打刻の結果: %s", result.outcome.value)

    def close(self) -> None:
        """プロセス終了時に実行スレッドとスケジューラを片付ける"""
        self._executor.shutdown(wait=False)
        self._scheduler.shutdown()
