# schedulers/scheduler.py
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SchedulerStatus(str, Enum):
    AVAILABLE = "available"
    DENIED = "denied"          # ユーザーがバックグラウンド実行を拒否
    RESTRICTED = "restricted"  # OSによる制限


class Scheduler(ABC):
    """OSが定期的に起動するバックグラウンドタスクの抽象インターフェース"""

    @abstractmethod
    def register(self, task_id: str, handler: Callable[[], None]) -> None:
        ...

    @abstractmethod
    def unregister(self, task_id: str) -> None:
        ...

    @abstractmethod
    def is_registered(self, task_id: str) -> bool:
        ...

    def status(self) -> SchedulerStatus:
        return SchedulerStatus.AVAILABLE

    def shutdown(self) -> None:
        """プロセス終了時の後片付け"""
        pass


class APSchedulerScheduler(Scheduler):
    """APSchedulerによる定期実行管理"""

    def __init__(self, interval_minutes: int):
        self._interval = interval_minutes
        self._scheduler = BackgroundScheduler()

    def register(self, task_id: str, handler: Callable[[], None]) -> None:
        self._scheduler.add_job(
            handler,
            trigger=IntervalTrigger(minutes=self._interval),
            id=task_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("定期タスクを登録しました: %s (%d分間隔)", task_id, self._interval)

    def unregister(self, task_id: str) -> None:
        if self._scheduler.get_job(task_id) is not None:
            self._scheduler.remove_job(task_id)
            logger.info("定期タスクを解除しました: %s", task_id)

    def is_registered(self, task_id: str) -> bool:
        return self._scheduler.get_job(task_id) is not None

    def shutdown(self) -> None:
        """スケジューラ停止"""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
