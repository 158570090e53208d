import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

TOKEN_KEY = "token_2"
LAST_ATTENDANCE_KEY = "last_attendance_marked"
ATTENDANCE_LOCK_KEY = "attendance_marking_lock"
GEOFENCE_REGIONS_KEY = "geofence_regions"
DEVICE_ID_KEY = "device_id"
PUSH_TOKEN_KEY = "expo_push_token"
LAST_LOCATION_TRACKED_KEY = "last_location_tracked"
BACKGROUND_REGISTERED_KEY = "background_attendance_registered"


class KeyValueStore(ABC):
    """端末ローカルの永続キーバリューストア"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def compare_and_swap(self, key: str, expected: Optional[str], new: Optional[str]) -> bool:
        """現在値がexpectedの場合のみnewに置き換える（newがNoneなら削除）"""
        ...

    def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    """プロセス内ストア。単一プロセスのホストとテスト用。"""

    def __init__(self, initial: dict = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def compare_and_swap(self, key: str, expected: Optional[str], new: Optional[str]) -> bool:
        with self._lock:
            if self._data.get(key) != expected:
                return False
            if new is None:
                self._data.pop(key, None)
            else:
                self._data[key] = new
            return True


class SQLiteStore(KeyValueStore):
    """SQLiteファイルによるストア。別プロセスのトリガー間でも共有される。"""

    def __init__(self, path: str):
        self._path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        # autocommit; トランザクションは明示的にBEGINする
        self._conn = sqlite3.connect(
            path, timeout=10, isolation_level=None, check_same_thread=False
        )
        self._mutex = threading.Lock()
        with self._mutex:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )

    def get(self, key: str) -> Optional[str]:
        with self._mutex:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._mutex:
            self._conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def delete(self, key: str) -> None:
        with self._mutex:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def compare_and_swap(self, key: str, expected: Optional[str], new: Optional[str]) -> bool:
        with self._mutex:
            # BEGIN IMMEDIATEで書き込みロックを先に取り、読み取りと書き込みを不可分にする
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
                current = row[0] if row else None
                if current != expected:
                    self._conn.execute("ROLLBACK")
                    return False
                if new is None:
                    self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                else:
                    self._conn.execute(
                        "INSERT INTO kv (key, value) VALUES (?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (key, new),
                    )
                self._conn.execute("COMMIT")
                return True
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        with self._mutex:
            self._conn.close()


def create_store(storage_config: dict) -> KeyValueStore:
    """設定に基づいてストアを生成"""
    if storage_config.get("backend") == "memory":
        return MemoryStore()
    return SQLiteStore(storage_config["path"])
