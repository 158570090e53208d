import logging
import uuid

from attendance_agent.graph.graph import build_graph
from attendance_agent.graph.state import initial_state
from attendance_agent.services.dedup_lock import DedupLock
from attendance_agent.services.gateway import AttendanceGateway
from attendance_agent.services.location_provider import LocationProvider
from attendance_agent.services.models import (
    AttemptResult,
    FailureReason,
    Outcome,
    TriggerSource,
)
from attendance_agent.services.storage import KeyValueStore

logger = logging.getLogger(__name__)


class AttendanceCoordinator:
    """全トリガー共通の打刻試行。1日1回・同時実行なしを保証する

    attempt() は例外を投げない。失敗はすべてAttemptResultとして返し、
    ロックはどの終了経路でも解放される。
    """

    def __init__(
        self,
        store: KeyValueStore,
        gateway: AttendanceGateway,
        locator: LocationProvider,
        lock: DedupLock = None,
    ):
        self._store = store
        self._gateway = gateway
        self._locator = locator
        self._lock = lock or DedupLock(store)
        self._graph = build_graph(
            lock=self._lock, kv=self._store, gateway=self._gateway, locator=self._locator
        )

    @property
    def lock(self) -> DedupLock:
        return self._lock

    @property
    def gateway(self) -> AttendanceGateway:
        return self._gateway

    @property
    def locator(self) -> LocationProvider:
        return self._locator

    def attempt(self, source: TriggerSource) -> AttemptResult:
        """打刻を1回試行する"""
        attempt_id = uuid.uuid4().hex
        logger.info("打刻フローを開始します (%s)", source.value)

        try:
            final = self._graph.invoke(initial_state(attempt_id, source))
        except Exception as e:
            logger.exception("打刻フローで予期しないエラーが発生しました (%s)", source.value)
            try:
                self._lock.release(attempt_id)
            except Exception:
                logger.exception("ロック解放に失敗しました。TTL経過後に自動解放されます")
            return AttemptResult(
                outcome=Outcome.FAILED,
                source=source,
                reason=FailureReason.UNEXPECTED_ERROR,
                message=str(e),
            )

        result = AttemptResult(
            outcome=final["outcome"] or Outcome.FAILED,
            source=source,
            reason=final.get("failure_reason"),
            message=final.get("message"),
            low_confidence=final.get("low_confidence", False),
        )
        logger.info(
            "打刻フロー終了 (%s): %s%s",
            source.value,
            result.outcome.value,
            f" [{result.reason.value}]" if result.reason else "",
        )
        return result
