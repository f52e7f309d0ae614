"""SQLite connection management for the record store and key-value state."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict

_SCHEMA = """
CREATE TABLE IF NOT EXISTS store_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    identifier TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    company TEXT NOT NULL DEFAULT '',
    location TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    payload TEXT NOT NULL DEFAULT '{}',
    content_hash TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'active',
    status_reason TEXT,
    created_at TEXT NOT NULL,
    modified_at TEXT NOT NULL,
    last_seen_run TEXT
);
CREATE INDEX IF NOT EXISTS idx_store_records_identifier ON store_records (identifier);
CREATE INDEX IF NOT EXISTS idx_store_records_status ON store_records (status, modified_at);
CREATE TABLE IF NOT EXISTS store_aliases (
    alias TEXT PRIMARY KEY,
    record_id INTEGER NOT NULL REFERENCES store_records (id),
    content_hash TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL
);
"""


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self, timeout: float = 5.0) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()
        self.timeout = timeout

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False, timeout=self.timeout)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(_SCHEMA)
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        for suffix in ("", "-wal", "-shm"):
            Path(f"{path}{suffix}").unlink(missing_ok=True)

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["SQLiteManager"]
