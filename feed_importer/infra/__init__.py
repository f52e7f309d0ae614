"""Infra layer utilities (SQLite storage, key-value state, locks)."""

from .kv import KeyValueStore, SQLiteKeyValueStore
from .locks import OperationLock
from .records import RecordFields, RecordStore, StoreRecord
from .storage import SQLiteManager

__all__ = [
    "KeyValueStore",
    "OperationLock",
    "RecordFields",
    "RecordStore",
    "SQLiteKeyValueStore",
    "SQLiteManager",
    "StoreRecord",
]
