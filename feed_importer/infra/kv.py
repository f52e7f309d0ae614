"""Small key-value store for checkpoints, flags, caches and locks."""

from __future__ import annotations

import json
import time
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Protocol

from .storage import SQLiteManager


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool: ...

    def delete_if(self, key: str, value: Any) -> bool: ...


class SQLiteKeyValueStore:
    """JSON values with optional expiry, kept in the ``kv_store`` table."""

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.clock = clock
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        if row is None or self._expired(row["expires_at"]):
            return default
        return json.loads(row["value"])

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, expires_at) VALUES (?, ?, ?)",
                (key, self._encode(value), self._expiry(ttl)),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self._conn.commit()

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Insert ``key`` only if it is absent or expired; return whether it was stored."""

        now = self.clock()
        with self._lock:
            try:
                self._conn.execute(
                    "DELETE FROM kv_store WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                    (key, now),
                )
                cursor = self._conn.execute(
                    "INSERT OR IGNORE INTO kv_store (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, self._encode(value), self._expiry(ttl)),
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return cursor.rowcount == 1

    def delete_if(self, key: str, value: Any) -> bool:
        """Delete ``key`` only while it still holds ``value``."""

        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM kv_store WHERE key = ? AND value = ?",
                (key, self._encode(value)),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def _expiry(self, ttl: float | None) -> float | None:
        if ttl is None:
            return None
        return self.clock() + ttl

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and expires_at <= self.clock()

    @staticmethod
    def _encode(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)


__all__ = ["KeyValueStore", "SQLiteKeyValueStore"]
