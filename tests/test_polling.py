import threading
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from attendance_agent.schedulers.scheduler import SchedulerStatus
from attendance_agent.services.models import AttemptResult, Outcome, TriggerSource
from attendance_agent.triggers.polling import BACKGROUND_FETCH_TASK, PollingTrigger


def _make_scheduler(status=SchedulerStatus.AVAILABLE, registered=False):
    scheduler = MagicMock()
    scheduler.status.return_value = status
    scheduler.is_registered.return_value = registered
    return scheduler


def test_start_registers_task():
    """定期タスクを登録すること"""
    scheduler = _make_scheduler()
    trigger = PollingTrigger(MagicMock(), scheduler)

    assert trigger.start() is True
    scheduler.register.assert_called_once_with(BACKGROUND_FETCH_TASK, trigger.on_wake)


def test_start_already_registered():
    scheduler = _make_scheduler(registered=True)
    trigger = PollingTrigger(MagicMock(), scheduler)

    assert trigger.start() is True
    scheduler.register.assert_not_called()


def test_start_denied():
    """バックグラウンド実行が拒否されている場合はFalse"""
    scheduler = _make_scheduler(status=SchedulerStatus.DENIED)
    trigger = PollingTrigger(MagicMock(), scheduler)

    assert trigger.start() is False
    scheduler.register.assert_not_called()


def test_start_register_error():
    scheduler = _make_scheduler()
    scheduler.register.side_effect = RuntimeError("failed")
    trigger = PollingTrigger(MagicMock(), scheduler)

    assert trigger.start() is False


def test_stop():
    scheduler = _make_scheduler(registered=True)
    trigger = PollingTrigger(MagicMock(), scheduler)

    assert trigger.stop() is True
    scheduler.unregister.assert_called_once_with(BACKGROUND_FETCH_TASK)


def test_stop_not_registered():
    scheduler = _make_scheduler(registered=False)
    trigger = PollingTrigger(MagicMock(), scheduler)

    assert trigger.stop() is True
    scheduler.unregister.assert_not_called()


def test_on_wake_attempts_polling():
    """定期起動で打刻を試行すること"""
    coordinator = MagicMock()
    coordinator.attempt.return_value = AttemptResult(Outcome.SUCCESS, TriggerSource.POLLING)
    trigger = PollingTrigger(coordinator, _make_scheduler())

    trigger.on_wake()

    coordinator.attempt.assert_called_once_with(TriggerSource.POLLING)
    trigger.close()


def test_on_wake_returns_within_budget():
    """持ち時間を超えた試行を待たずに戻ること"""
    release = threading.Event()
    coordinator = MagicMock()

    def slow_attempt(source):
        release.wait(5)
        return AttemptResult(Outcome.SUCCESS, source)

    coordinator.attempt.side_effect = slow_attempt
    trigger = PollingTrigger(coordinator, _make_scheduler(), budget_seconds=0.1)

    trigger.on_wake()

    coordinator.attempt.assert_called_once_with(TriggerSource.POLLING)
    release.set()
    trigger.close()


def test_on_wake_swallows_errors():
    coordinator = MagicMock()
    coordinator.attempt.side_effect = RuntimeError("boom")
    trigger = PollingTrigger(coordinator, _make_scheduler())

    trigger.on_wake()
    trigger.close()


def test_on_wake_outside_working_hours():
    """受付時間のみ設定の場合、時間外は試行しないこと"""
    coordinator = MagicMock()
    trigger = PollingTrigger(coordinator, _make_scheduler(), working_hours_only=True)

    # 2024-05-06(月) 20:00
    with patch(
        "attendance_agent.services.working_hours._now",
        return_value=datetime(2024, 5, 6, 20, 0),
    ):
        trigger.on_wake()

    coordinator.attempt.assert_not_called()
    trigger.close()


def test_on_wake_ignores_hours_by_default():
    coordinator = MagicMock()
    coordinator.attempt.return_value = AttemptResult(Outcome.SKIPPED_LEAVE, TriggerSource.POLLING)
    trigger = PollingTrigger(coordinator, _make_scheduler())

    with patch(
        "attendance_agent.services.working_hours._now",
        return_value=datetime(2024, 5, 5, 20, 0),
    ):
        trigger.on_wake()

    coordinator.attempt.assert_called_once()
    trigger.close()


def test_close_shuts_down_scheduler():
    """終了時に実行スレッドとスケジューラを片付けること"""
    scheduler = _make_scheduler()
    trigger = PollingTrigger(MagicMock(), scheduler)

    trigger.close()

    scheduler.shutdown.assert_called_once()
    with pytest.raises(RuntimeError):
        trigger._executor.submit(lambda: None)
