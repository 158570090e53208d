import json
import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests

from attendance_agent.services.coordinator import AttendanceCoordinator
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.gateway import AttendanceGateway, GatewayError, SubmitResult
from attendance_agent.services.location_provider import LocationFailure, LocationFix
from attendance_agent.services.models import FailureReason, Outcome, TriggerSource
from attendance_agent.services.storage import (
    ATTENDANCE_LOCK_KEY,
    LAST_ATTENDANCE_KEY,
    TOKEN_KEY,
    MemoryStore,
    SQLiteStore,
)

# 2024-05-06 は月曜日
BASE_TIME = datetime(2024, 5, 6, 9, 0, 0)


@pytest.fixture
def clock():
    current = {"now": BASE_TIME}
    with patch("attendance_agent.services.dedup_lock._now", side_effect=lambda: current["now"]):
        yield current


def _make_coordinator(store=None, work=True, fix=None, submit=None):
    store = store if store is not None else MemoryStore({TOKEN_KEY: "abc"})
    gateway = MagicMock()
    gateway.check_work_status.return_value = work
    gateway.submit_attendance.return_value = submit or SubmitResult(success=True, message="ok")
    locator = MagicMock()
    locator.get_current_location.return_value = fix or LocationFix(
        latitude=28.6139, longitude=77.2090, accuracy=12.0
    )
    return AttendanceCoordinator(store=store, gateway=gateway, locator=locator), store, gateway, locator


def _lock_value(acquired_at, owner="other"):
    return json.dumps({"acquired_at": acquired_at.isoformat(), "owner": owner})


def test_manual_success_then_polling_already_marked(clock):
    """1回目で打刻し、2回目は打刻済みとしてバックエンドを呼ばないこと"""
    coordinator, store, gateway, locator = _make_coordinator()

    result = coordinator.attempt(TriggerSource.MANUAL)

    assert result.outcome == Outcome.SUCCESS
    assert result.source == TriggerSource.MANUAL
    gateway.check_work_status.assert_called_once_with("abc")
    locator.get_current_location.assert_called_once_with(
        require_background=False, request_permissions=True
    )
    gateway.submit_attendance.assert_called_once_with(
        "abc", 28.6139, 77.2090, TriggerSource.MANUAL
    )
    assert store.get(LAST_ATTENDANCE_KEY) == "2024-05-06"
    assert store.get(ATTENDANCE_LOCK_KEY) is None

    clock["now"] = BASE_TIME + timedelta(hours=2)
    second = coordinator.attempt(TriggerSource.POLLING)

    assert second.outcome == Outcome.SKIPPED_ALREADY_MARKED
    assert second.is_success_equivalent is True
    assert gateway.check_work_status.call_count == 1
    assert gateway.submit_attendance.call_count == 1


def test_marked_yesterday_attempts_again(clock):
    store = MemoryStore({TOKEN_KEY: "abc", LAST_ATTENDANCE_KEY: "2024-05-05"})
    coordinator, _, gateway, _ = _make_coordinator(store=store)

    assert coordinator.attempt(TriggerSource.POLLING).outcome == Outcome.SUCCESS
    gateway.submit_attendance.assert_called_once()


def test_leave_day_skips_location_and_submit(clock):
    """休暇日は位置取得・送信を行わず、マーカーも書かないこと"""
    coordinator, store, gateway, locator = _make_coordinator(work=False)

    result = coordinator.attempt(TriggerSource.POLLING)

    assert result.outcome == Outcome.SKIPPED_LEAVE
    locator.get_current_location.assert_not_called()
    gateway.submit_attendance.assert_not_called()
    assert store.get(LAST_ATTENDANCE_KEY) is None
    assert store.get(ATTENDANCE_LOCK_KEY) is None


def test_no_token(clock):
    coordinator, store, gateway, _ = _make_coordinator(store=MemoryStore())

    result = coordinator.attempt(TriggerSource.MANUAL)

    assert result.outcome == Outcome.FAILED
    assert result.reason == FailureReason.NO_TOKEN
    gateway.check_work_status.assert_not_called()
    assert store.get(ATTENDANCE_LOCK_KEY) is None


def test_work_status_network_failure(clock):
    coordinator, store, gateway, locator = _make_coordinator()
    gateway.check_work_status.side_effect = GatewayError("network", "timeout")

    result = coordinator.attempt(TriggerSource.POLLING)

    assert result.outcome == Outcome.FAILED
    assert result.reason == FailureReason.NETWORK_FAILURE
    locator.get_current_location.assert_not_called()
    assert store.get(ATTENDANCE_LOCK_KEY) is None


def test_permission_denied(clock):
    coordinator, store, gateway, _ = _make_coordinator(fix=LocationFailure.PERMISSION_DENIED)

    result = coordinator.attempt(TriggerSource.GEOFENCE)

    assert result.outcome == Outcome.SKIPPED_PERMISSION
    gateway.submit_attendance.assert_not_called()
    assert store.get(ATTENDANCE_LOCK_KEY) is None


def test_location_request_flags(clock):
    """ジオフェンス起点はバックグラウンド権限必須"""
    coordinator, _, _, locator = _make_coordinator()

    coordinator.attempt(TriggerSource.GEOFENCE)
    locator.get_current_location.assert_called_with(
        require_background=True, request_permissions=False
    )


def test_submit_failure_is_retryable(clock):
    """送信失敗後はマーカーもロックも残らず、次の試行で打刻できること"""
    coordinator, store, gateway, _ = _make_coordinator(
        submit=SubmitResult(success=False, message="server error")
    )

    first = coordinator.attempt(TriggerSource.POLLING)
    assert first.outcome == Outcome.FAILED
    assert first.reason == FailureReason.SUBMIT_FAILED
    assert store.get(LAST_ATTENDANCE_KEY) is None
    assert store.get(ATTENDANCE_LOCK_KEY) is None

    gateway.submit_attendance.return_value = SubmitResult(success=True, message="ok")
    clock["now"] = BASE_TIME + timedelta(minutes=15)
    second = coordinator.attempt(TriggerSource.POLLING)

    assert second.outcome == Outcome.SUCCESS
    assert store.get(LAST_ATTENDANCE_KEY) == "2024-05-06"


def test_fresh_lock_held_by_other_trigger(clock):
    """2秒前に取得された他トリガーのロックがあればSKIPPED_LOCKED"""
    store = MemoryStore({TOKEN_KEY: "abc"})
    store.set(ATTENDANCE_LOCK_KEY, _lock_value(BASE_TIME))
    coordinator, _, gateway, locator = _make_coordinator(store=store)

    clock["now"] = BASE_TIME + timedelta(seconds=2)
    result = coordinator.attempt(TriggerSource.GEOFENCE)

    assert result.outcome == Outcome.SKIPPED_LOCKED
    gateway.check_work_status.assert_not_called()
    locator.get_current_location.assert_not_called()
    # 他トリガーのロックは解放しない
    assert json.loads(store.get(ATTENDANCE_LOCK_KEY))["owner"] == "other"


def test_stale_lock_is_taken_over(clock):
    """60秒以上前のロックは期限切れとして上書きし打刻すること"""
    store = MemoryStore({TOKEN_KEY: "abc"})
    store.set(ATTENDANCE_LOCK_KEY, _lock_value(BASE_TIME))
    coordinator, _, gateway, _ = _make_coordinator(store=store)

    clock["now"] = BASE_TIME + timedelta(seconds=60)
    result = coordinator.attempt(TriggerSource.POLLING)

    assert result.outcome == Outcome.SUCCESS
    assert store.get(ATTENDANCE_LOCK_KEY) is None


def test_unexpected_error_releases_lock(clock):
    """予期しない例外でもロックを解放し、FAILEDを返すこと"""
    coordinator, store, gateway, _ = _make_coordinator()
    gateway.check_work_status.side_effect = RuntimeError("boom")

    result = coordinator.attempt(TriggerSource.MANUAL)

    assert result.outcome == Outcome.FAILED
    assert result.reason == FailureReason.UNEXPECTED_ERROR
    assert store.get(ATTENDANCE_LOCK_KEY) is None
    assert store.get(LAST_ATTENDANCE_KEY) is None


def test_low_confidence_flag_propagated(clock):
    coordinator, _, _, _ = _make_coordinator(
        fix=LocationFix(latitude=28.6, longitude=77.2, accuracy=350.0, low_confidence=True)
    )

    result = coordinator.attempt(TriggerSource.MANUAL)

    assert result.outcome == Outcome.SUCCESS
    assert result.low_confidence is True


def _advance(clock, seconds, value=None):
    def side_effect(*args, **kwargs):
        clock["now"] += timedelta(seconds=seconds)
        return value

    return side_effect


def test_slow_attempt_keeps_lock_beyond_ttl(clock):
    """リトライと測位で合計100秒かかっても、途中で他の試行にロックを奪われないこと"""
    coordinator, store, gateway, locator = _make_coordinator()
    fix = LocationFix(latitude=28.6139, longitude=77.2090, accuracy=12.0)
    gateway.check_work_status.side_effect = _advance(clock, 50, True)
    intruder = {}

    def slow_fix(**kwargs):
        clock["now"] += timedelta(seconds=50)
        intruder["acquired"] = DedupLock(store).try_acquire("other-trigger")
        return fix

    locator.get_current_location.side_effect = slow_fix

    result = coordinator.attempt(TriggerSource.POLLING)

    assert intruder["acquired"] is False
    assert result.outcome == Outcome.SUCCESS
    gateway.submit_attendance.assert_called_once()
    assert store.get(ATTENDANCE_LOCK_KEY) is None


def test_lock_taken_over_during_location_aborts_submit(clock):
    """測位中にTTLが切れて他の試行がロックを取った場合は送信しないこと"""
    coordinator, store, gateway, locator = _make_coordinator()
    fix = LocationFix(latitude=28.6139, longitude=77.2090, accuracy=12.0)

    def stalled_fix(**kwargs):
        clock["now"] += timedelta(seconds=70)
        assert DedupLock(store).try_acquire("other-trigger") is True
        return fix

    locator.get_current_location.side_effect = stalled_fix

    result = coordinator.attempt(TriggerSource.GEOFENCE)

    assert result.outcome == Outcome.SKIPPED_LOCKED
    gateway.submit_attendance.assert_not_called()
    assert store.get(LAST_ATTENDANCE_KEY) is None
    # 新しい保持者のロックは解放しない
    assert json.loads(store.get(ATTENDANCE_LOCK_KEY))["owner"] == "other-trigger"


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_concurrent_triggers_submit_once(backend, tmp_path):
    """別スレッドの2つのトリガーが同時に試行しても送信は1回だけであること"""
    if backend == "memory":
        shared = MemoryStore({TOKEN_KEY: "abc"})
        stores = [shared, shared]
    else:
        path = str(tmp_path / "state.db")
        stores = [SQLiteStore(path), SQLiteStore(path)]
        stores[0].set(TOKEN_KEY, "abc")

    coordinators = []
    for store in stores:
        coordinator, _, gateway, locator = _make_coordinator(store=store)
        fix = locator.get_current_location.return_value

        def slow_fix(fix=fix, **kwargs):
            time.sleep(0.2)
            return fix

        locator.get_current_location.side_effect = slow_fix
        coordinators.append((coordinator, gateway))

    barrier = threading.Barrier(len(coordinators))
    results = [None] * len(coordinators)

    def run(index, coordinator, source):
        barrier.wait()
        results[index] = coordinator.attempt(source)

    threads = [
        threading.Thread(target=run, args=(i, c, source))
        for i, ((c, _), source) in enumerate(
            zip(coordinators, [TriggerSource.POLLING, TriggerSource.GEOFENCE])
        )
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sum(g.submit_attendance.call_count for _, g in coordinators) == 1
    outcomes = sorted(r.outcome.value for r in results)
    assert Outcome.SUCCESS.value in outcomes
    other = [o for o in outcomes if o != Outcome.SUCCESS.value]
    assert other[0] in (Outcome.SKIPPED_LOCKED.value, Outcome.SKIPPED_ALREADY_MARKED.value)
    assert stores[0].get(ATTENDANCE_LOCK_KEY) is None
    assert stores[1].get(LAST_ATTENDANCE_KEY) is not None

    if backend == "sqlite":
        for store in stores:
            store.close()


def test_trigger_during_slow_submit_is_locked_out(clock):
    """リトライで長引いた送信の最中に別トリガーが起動しても、送信は1回だけであること"""
    coordinator, store, gateway, _ = _make_coordinator()
    other, _, other_gateway, _ = _make_coordinator(store=store)
    gateway.check_work_status.side_effect = _advance(clock, 45, True)
    results = {}

    def slow_submit(*args):
        clock["now"] += timedelta(seconds=45)
        results["other"] = other.attempt(TriggerSource.GEOFENCE)
        return SubmitResult(success=True, message="ok")

    gateway.submit_attendance.side_effect = slow_submit

    result = coordinator.attempt(TriggerSource.POLLING)

    assert result.outcome == Outcome.SUCCESS
    assert results["other"].outcome == Outcome.SKIPPED_LOCKED
    other_gateway.submit_attendance.assert_not_called()
    assert store.get(LAST_ATTENDANCE_KEY) == "2024-05-06"


@pytest.mark.parametrize("error", [
    requests.exceptions.ChunkedEncodingError("cut"),
    requests.exceptions.MissingSchema("no scheme"),
])
def test_request_errors_become_network_failure(clock, error):
    """requests の例外は予期しないエラーではなくNETWORK_FAILUREとして扱うこと"""
    session = MagicMock()
    session.post.side_effect = error
    gateway = AttendanceGateway(base_url="", session=session, sleep=MagicMock())
    store = MemoryStore({TOKEN_KEY: "abc"})
    coordinator = AttendanceCoordinator(store=store, gateway=gateway, locator=MagicMock())

    result = coordinator.attempt(TriggerSource.POLLING)

    assert result.outcome == Outcome.FAILED
    assert result.reason == FailureReason.NETWORK_FAILURE
    assert store.get(ATTENDANCE_LOCK_KEY) is None
