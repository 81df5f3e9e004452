"""
KV backends with lock-conditional set and delete.

A record carries the id of the lock holder that last wrote it. A set succeeds
when the key is absent, unlocked, or locked by the requesting id; a delete
succeeds only when the key is locked by the requesting id.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from .db import get_db, immediate_transaction, init_db
from .schema import KVRecord


class KVBackend(ABC):
    """Interface of the external key-value capability."""

    @abstractmethod
    def get(self, key: str) -> Optional[KVRecord]:
        pass

    @abstractmethod
    def compare_and_set(self, key: str, value: str, lock_id: str) -> bool:
        pass

    @abstractmethod
    def compare_and_delete(self, key: str, lock_id: str) -> bool:
        pass

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        pass

    def count(self) -> int:
        return len(self.list_keys())


class InMemoryKVBackend(KVBackend):
    """Dict-backed backend for tests and single-process use."""

    def __init__(self):
        self._records: Dict[str, KVRecord] = {}
        # Backend-internal atomicity only; callers never lock around keys.
        self._mutex = threading.Lock()

    def get(self, key: str) -> Optional[KVRecord]:
        return self._records.get(key)

    def compare_and_set(self, key: str, value: str, lock_id: str) -> bool:
        with self._mutex:
            existing = self._records.get(key)
            if existing is not None and existing.lock_id not in (None, lock_id):
                return False
            self._records[key] = KVRecord(key=key, value=value, lock_id=lock_id, updated_at=datetime.now())
            return True

    def compare_and_delete(self, key: str, lock_id: str) -> bool:
        with self._mutex:
            existing = self._records.get(key)
            if existing is None or existing.lock_id != lock_id:
                return False
            del self._records[key]
            return True

    def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._records if k.startswith(prefix))


class SQLiteKVBackend(KVBackend):
    """SQLite-backed backend. Each conditional operation is one IMMEDIATE transaction."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def get(self, key: str) -> Optional[KVRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT key, value, lock_id, updated_at FROM kv WHERE key = ?",
                (key,)
            )
            row = cursor.fetchone()

        if row is None:
            return None
        key_val, value, lock_id, updated_at = row
        return KVRecord(
            key=key_val,
            value=value,
            lock_id=lock_id,
            updated_at=datetime.fromisoformat(updated_at) if isinstance(updated_at, str) else updated_at
        )

    def compare_and_set(self, key: str, value: str, lock_id: str) -> bool:
        with get_db(self.db_path) as conn:
            with immediate_transaction(conn) as cursor:
                cursor.execute("SELECT lock_id FROM kv WHERE key = ?", (key,))
                row = cursor.fetchone()
                if row is not None and row[0] not in (None, lock_id):
                    return False

                cursor.execute(
                    '''
                    INSERT INTO kv (key, value, lock_id, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        lock_id = excluded.lock_id,
                        updated_at = CURRENT_TIMESTAMP
                    ''',
                    (key, value, lock_id)
                )
                return True

    def compare_and_delete(self, key: str, lock_id: str) -> bool:
        with get_db(self.db_path) as conn:
            with immediate_transaction(conn) as cursor:
                cursor.execute("DELETE FROM kv WHERE key = ? AND lock_id = ?", (key, lock_id))
                return cursor.rowcount == 1

    def list_keys(self, prefix: str = "") -> List[str]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            # Escape LIKE wildcards; names may contain underscores
            escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            cursor.execute(
                "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (escaped + "%",)
            )
            return [row[0] for row in cursor.fetchall()]

    def count(self) -> int:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM kv")
            return cursor.fetchone()[0]
