import logging

from attendance_agent.services.alerts import notify_result
from attendance_agent.services.coordinator import AttendanceCoordinator
from attendance_agent.services.models import AttemptResult, TriggerSource

logger = logging.getLogger(__name__)


class ManualTrigger:
    """利用者操作・通知から直接打刻を試行するトリガー"""

    def __init__(self, coordinator: AttendanceCoordinator, notifier=None):
        self._coordinator = coordinator
        self._notifier = notifier

    def trigger(self, show_alert: bool = True) -> AttemptResult:
        result = self._coordinator.attempt(TriggerSource.MANUAL)
        if show_alert and self._notifier is not None:
            try:
                notify_result(result, notifier=self._notifier)
            except Exception:
                logger.exception("打刻結果の通知に失敗しました")
        return result
