"""Persisted import-run state and the cancellation flag."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable

from ..infra.kv import KeyValueStore
from .retry import METADATA_WRITE, RetryExecutor

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_PAUSED = "paused"
STATUS_CANCELLED = "cancelled"
STATUS_COMPLETE = "complete"

COUNTER_FIELDS = ("created", "updated", "skipped", "duplicates_drafted", "fuzzy_matched", "failed")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def log_line(message: str, now: datetime | None = None) -> str:
    stamp = (now or _utcnow()).astimezone(timezone.utc).strftime("%d-%b-%Y %H:%M:%S")
    return f"[{stamp} UTC] {message}"


@dataclass(slots=True)
class ImportCheckpoint:
    """State of one pass over the corpus."""

    run_id: str
    status: str = STATUS_IDLE
    cursor: int = 0
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates_drafted: int = 0
    fuzzy_matched: int = 0
    failed: int = 0
    batch_size: int = 10
    time_elapsed: float = 0.0
    last_batch_time: float = 0.0
    time_per_item: float = 0.0
    avg_time_per_item: float = 0.0
    last_peak_memory: int = 0
    last_memory_ratio: float = 0.0
    complete: bool = False
    corpus_version: str = ""
    start_time: str = ""
    last_update: str = ""
    logs: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return min(self.cursor, self.total)

    def add_logs(self, lines: list[str], limit: int) -> None:
        self.logs.extend(lines)
        if limit > 0 and len(self.logs) > limit:
            del self.logs[: len(self.logs) - limit]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ImportCheckpoint":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})

    def as_status(self) -> dict[str, Any]:
        """Status payload polled by dashboards and triggers; key names are fixed."""

        return {
            "total": self.total,
            "processed": self.processed,
            "created": self.created,
            "published": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "duplicates_drafted": self.duplicates_drafted,
            "complete": self.complete,
            "time_elapsed": round(self.time_elapsed, 3),
            "batch_size": self.batch_size,
            "logs": list(self.logs),
            "status": self.status,
            "run_id": self.run_id,
            "fuzzy_matched": self.fuzzy_matched,
            "failed": self.failed,
            "avg_time_per_item": round(self.avg_time_per_item, 4),
            "last_batch_time": round(self.last_batch_time, 3),
            "last_update": self.last_update,
        }


class CheckpointStore:
    """Load and save the checkpoint of one named run through the key-value store."""

    def __init__(
        self,
        kv: KeyValueStore,
        run_name: str = "job_import",
        retry: RetryExecutor | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.kv = kv
        self.run_name = run_name
        self.retry = retry or RetryExecutor()
        self.now = now
        self.key = f"import_checkpoint:{run_name}"
        self.cancel_key = f"import_cancel:{run_name}"

    def load(self) -> ImportCheckpoint | None:
        payload = self.kv.get(self.key)
        if not payload:
            return None
        return ImportCheckpoint.from_dict(payload)

    def start_run(self, total: int, batch_size: int, corpus_version: str) -> ImportCheckpoint:
        stamp = self.now().isoformat()
        return ImportCheckpoint(
            run_id=uuid.uuid4().hex,
            status=STATUS_RUNNING,
            total=total,
            batch_size=batch_size,
            corpus_version=corpus_version,
            start_time=stamp,
            last_update=stamp,
        )

    def save(self, checkpoint: ImportCheckpoint) -> ImportCheckpoint:
        """Persist ``checkpoint``; the cursor never moves backwards within a run."""

        persisted = self.load()
        if persisted is not None and persisted.run_id == checkpoint.run_id:
            checkpoint.cursor = max(persisted.cursor, checkpoint.cursor)
        checkpoint.cursor = min(checkpoint.cursor, checkpoint.total)
        checkpoint.last_update = self.now().isoformat()
        self.retry.run(METADATA_WRITE, self.kv.set, self.key, checkpoint.to_dict())
        return checkpoint

    def reset(self) -> None:
        self.retry.run(METADATA_WRITE, self.kv.delete, self.key)
        self.clear_cancel()

    # ------------------------------------------------------------------
    # Cancellation flag
    # ------------------------------------------------------------------
    def request_cancel(self) -> None:
        self.retry.run(METADATA_WRITE, self.kv.set, self.cancel_key, True)

    def clear_cancel(self) -> None:
        self.retry.run(METADATA_WRITE, self.kv.delete, self.cancel_key)

    def is_cancelled(self) -> bool:
        return bool(self.kv.get(self.cancel_key, False))


__all__ = [
    "COUNTER_FIELDS",
    "CheckpointStore",
    "ImportCheckpoint",
    "STATUS_CANCELLED",
    "STATUS_COMPLETE",
    "STATUS_IDLE",
    "STATUS_PAUSED",
    "STATUS_RUNNING",
    "log_line",
]
