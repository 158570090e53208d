import json
import logging
from datetime import date, datetime
from typing import Optional

from attendance_agent.services.storage import (
    ATTENDANCE_LOCK_KEY,
    LAST_ATTENDANCE_KEY,
    KeyValueStore,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60


def _now() -> datetime:
    """テスト時にモック可能な現在時刻取得"""
    return datetime.now()


def _parse_marker(value: str) -> Optional[date]:
    """日付(YYYY-MM-DD)と旧形式のISO日時の両方を受け付ける"""
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.date()


class DedupLock:
    """永続ストア上のTTL付き排他ロックと「本日打刻済み」マーカー

    トリガーはそれぞれ別の実行コンテキストで動くため、メモリ上のmutexではなく
    ストアの値でロックを表現する。保持者が落ちてもTTL経過で自然に解放される。
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self._store = store
        self._ttl = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def _is_fresh(self, raw: str, now: datetime) -> bool:
        try:
            acquired_at = datetime.fromisoformat(json.loads(raw)["acquired_at"])
        except (ValueError, KeyError, TypeError):
            return False
        age = (now - acquired_at).total_seconds()
        return 0 <= age < self._ttl

    def _value(self, owner: str, now: datetime) -> str:
        return json.dumps({"acquired_at": now.isoformat(), "owner": owner})

    def try_acquire(self, owner: str) -> bool:
        """ロック取得を試みる。有効なロックが存在すればFalse"""
        # 現在時刻はロック値の読み取り後に取得する
        current = self._store.get(ATTENDANCE_LOCK_KEY)
        now = _now()
        if current is not None and self._is_fresh(current, now):
            logger.info("打刻処理が既に実行中のためロックを取得できません")
            return False
        if current is not None:
            logger.warning("期限切れのロックを上書きします: %s", current)

        acquired = self._store.compare_and_swap(
            ATTENDANCE_LOCK_KEY, current, self._value(owner, now)
        )
        if not acquired:
            logger.info("ロック取得競合: 他のトリガーが先に取得しました")
        return acquired

    def refresh(self, owner: str) -> bool:
        """保持中のロックの取得時刻を更新する。既に他の試行に奪われていればFalse"""
        current = self._store.get(ATTENDANCE_LOCK_KEY)
        if current is None or self._owner(current) != owner:
            logger.warning("ロックを保持していません (所有者: %s)", owner)
            return False
        refreshed = self._store.compare_and_swap(
            ATTENDANCE_LOCK_KEY, current, self._value(owner, _now())
        )
        if not refreshed:
            logger.warning("ロック更新中に他の試行がロックを取得しました")
        return refreshed

    @staticmethod
    def _owner(raw: str) -> Optional[str]:
        try:
            return json.loads(raw).get("owner")
        except (ValueError, AttributeError):
            return None

    def release(self, owner: str) -> None:
        """自分が保持しているロックのみ解放する"""
        current = self._store.get(ATTENDANCE_LOCK_KEY)
        if current is None:
            return
        holder = self._owner(current)
        if holder is not None and holder != owner:
            logger.warning("他の試行が保持するロックは解放しません: %s", holder)
            return
        self._store.compare_and_swap(ATTENDANCE_LOCK_KEY, current, None)

    def is_marked_today(self) -> bool:
        """本日分の打刻が完了済みか（年月日の一致で判定）"""
        value = self._store.get(LAST_ATTENDANCE_KEY)
        if not value:
            return False
        marked = _parse_marker(value)
        return marked is not None and marked == _now().date()

    def mark_today(self) -> None:
        today = _now().date().isoformat()
        self._store.set(LAST_ATTENDANCE_KEY, today)
        logger.info("本日の打刻完了を記録しました: %s", today)

    def marked_date(self) -> Optional[str]:
        return self._store.get(LAST_ATTENDANCE_KEY)
