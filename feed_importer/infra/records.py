"""Record store: persisted job records keyed by feed identifier."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterable, Sequence

from ..errors import RecordStoreError, StoreContractError
from .storage import SQLiteManager

STATUS_ACTIVE = "active"
STATUS_DEMOTED = "demoted"
STATUS_STALE = "stale"

_SQLITE_MAX_VARIABLES = 900


@dataclass(slots=True)
class RecordFields:
    """Writable columns of a store record."""

    title: str = ""
    company: str = ""
    location: str = ""
    content: str = ""
    payload: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        for name in ("title", "company", "location", "content"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise StoreContractError(
                    f"RecordFields.{name} must be str, got {type(value).__name__}"
                )
        if not isinstance(self.payload, dict):
            raise StoreContractError(
                f"RecordFields.payload must be dict, got {type(self.payload).__name__}"
            )


@dataclass(slots=True)
class StoreRecord:
    id: int
    identifier: str
    title: str
    company: str
    location: str
    content: str
    payload: dict[str, Any]
    content_hash: str
    status: str
    status_reason: str | None
    created_at: str
    modified_at: str
    last_seen_run: str | None
    matched_alias: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def fields(self) -> RecordFields:
        return RecordFields(
            title=self.title,
            company=self.company,
            location=self.location,
            content=self.content,
            payload=dict(self.payload),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _chunks(values: Sequence[Any], size: int = _SQLITE_MAX_VARIABLES) -> Iterable[Sequence[Any]]:
    for index in range(0, len(values), size):
        yield values[index : index + size]


def _require_str(name: str, value: Any) -> None:
    if not isinstance(value, str) or not value:
        raise StoreContractError(f"{name} must be a non-empty str, got {value!r}")


def _require_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise StoreContractError(f"{name} must be int, got {type(value).__name__}")


class RecordStore:
    """CRUD helpers over ``store_records``; every write validates its arguments first."""

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.now = now
        self._lock = Lock()
        self._conn = self.manager.connect(db_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, record_id: int) -> StoreRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM store_records WHERE id = ?", (record_id,)
            ).fetchone()
        return self._to_record(row) if row else None

    def find_by_identifier(self, identifier: str) -> list[StoreRecord]:
        return self.lookup([identifier]).get(identifier, [])

    def lookup(self, identifiers: Iterable[str]) -> dict[str, list[StoreRecord]]:
        """Resolve many identifiers at once, including aliases recorded by fuzzy merges.

        Alias hits carry the hash last imported under the alias so that hash-based
        skipping works per identifier.
        """

        wanted = sorted({identifier for identifier in identifiers if identifier})
        found: dict[str, list[StoreRecord]] = {}
        if not wanted:
            return found
        with self._lock:
            for chunk in _chunks(wanted):
                marks = ",".join("?" for _ in chunk)
                rows = self._conn.execute(
                    f"SELECT * FROM store_records WHERE identifier IN ({marks}) ORDER BY id",
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    found.setdefault(row["identifier"], []).append(self._to_record(row))
                alias_rows = self._conn.execute(
                    f"""
                    SELECT a.alias AS alias, a.content_hash AS alias_hash, r.*
                    FROM store_aliases a JOIN store_records r ON r.id = a.record_id
                    WHERE a.alias IN ({marks})
                    """,
                    tuple(chunk),
                ).fetchall()
                for row in alias_rows:
                    if row["alias"] in found:
                        continue
                    record = replace(
                        self._to_record(row),
                        content_hash=row["alias_hash"],
                        matched_alias=row["alias"],
                    )
                    found.setdefault(row["alias"], []).append(record)
        return found

    def fuzzy_pool(
        self,
        companies: Iterable[str],
        limit: int = 50,
        since_days: int = 30,
    ) -> list[StoreRecord]:
        """Recently modified active records from the given companies, newest first.

        ``limit`` applies to each company separately.
        """

        names = sorted({company.strip().lower() for company in companies})
        if not names or limit <= 0:
            return []
        cutoff = (self.now() - timedelta(days=since_days)).isoformat()
        marks = ",".join("?" for _ in names)
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT * FROM (
                    SELECT *, ROW_NUMBER() OVER (
                        PARTITION BY lower(trim(company)) ORDER BY modified_at DESC, id DESC
                    ) AS company_rank
                    FROM store_records
                    WHERE status = ? AND modified_at >= ? AND lower(trim(company)) IN ({marks})
                )
                WHERE company_rank <= ?
                ORDER BY modified_at DESC, id DESC
                """,
                (STATUS_ACTIVE, cutoff, *names, limit),
            ).fetchall()
        return [self._to_record(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT status, COUNT(*) AS total FROM store_records GROUP BY status"
            ).fetchall()
        return {row["status"]: row["total"] for row in rows}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(
        self,
        identifier: str,
        fields: RecordFields,
        content_hash: str,
        run_id: str,
    ) -> StoreRecord:
        _require_str("identifier", identifier)
        _require_str("run_id", run_id)
        if not isinstance(fields, RecordFields):
            raise StoreContractError("fields must be RecordFields")
        fields.validate()
        stamp = self.now().isoformat()
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO store_records (
                    identifier, title, company, location, content, payload,
                    content_hash, status, created_at, modified_at, last_seen_run
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    identifier,
                    fields.title,
                    fields.company,
                    fields.location,
                    fields.content,
                    json.dumps(fields.payload, ensure_ascii=False, sort_keys=True),
                    content_hash,
                    STATUS_ACTIVE,
                    stamp,
                    stamp,
                    run_id,
                ),
            )
            self._conn.commit()
            record_id = cursor.lastrowid
        record = self.get(record_id)
        if record is None:
            raise RecordStoreError(f"Record #{record_id} ({identifier}) is missing right after insert")
        return record

    def update(
        self,
        record_id: int,
        fields: RecordFields,
        content_hash: str,
        run_id: str,
        alias: str | None = None,
    ) -> None:
        """Overwrite the writable columns; ``alias`` records the hash under another identifier."""

        _require_int("record_id", record_id)
        _require_str("run_id", run_id)
        if not isinstance(fields, RecordFields):
            raise StoreContractError("fields must be RecordFields")
        fields.validate()
        if alias is not None:
            _require_str("alias", alias)
        stamp = self.now().isoformat()
        with self._lock:
            try:
                self._conn.execute(
                    """
                    UPDATE store_records
                    SET title = ?, company = ?, location = ?, content = ?, payload = ?,
                        modified_at = ?, last_seen_run = ?,
                        status = CASE WHEN status = 'stale' THEN 'active' ELSE status END
                    WHERE id = ?
                    """,
                    (
                        fields.title,
                        fields.company,
                        fields.location,
                        fields.content,
                        json.dumps(fields.payload, ensure_ascii=False, sort_keys=True),
                        stamp,
                        run_id,
                        record_id,
                    ),
                )
                if alias is None:
                    self._conn.execute(
                        "UPDATE store_records SET content_hash = ? WHERE id = ?",
                        (content_hash, record_id),
                    )
                else:
                    self._conn.execute(
                        "INSERT OR REPLACE INTO store_aliases (alias, record_id, content_hash) VALUES (?, ?, ?)",
                        (alias, record_id, content_hash),
                    )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def demote(self, record_id: int, reason: str) -> None:
        _require_int("record_id", record_id)
        _require_str("reason", reason)
        stamp = self.now().isoformat()
        with self._lock:
            self._conn.execute(
                """
                UPDATE store_records
                SET status = ?, status_reason = ?, modified_at = ?,
                    title = title || ?
                WHERE id = ? AND status != ?
                """,
                (STATUS_DEMOTED, reason, stamp, f" [Duplicate - {reason}]", record_id, STATUS_DEMOTED),
            )
            self._conn.commit()

    def touch(self, record_ids: Iterable[int], run_id: str) -> int:
        """Mark records as seen in ``run_id``; stale records become active again."""

        _require_str("run_id", run_id)
        ids = sorted(set(record_ids))
        for record_id in ids:
            _require_int("record_id", record_id)
        touched = 0
        with self._lock:
            for chunk in _chunks(ids):
                marks = ",".join("?" for _ in chunk)
                cursor = self._conn.execute(
                    f"""
                    UPDATE store_records
                    SET last_seen_run = ?,
                        status = CASE WHEN status = 'stale' THEN 'active' ELSE status END
                    WHERE id IN ({marks})
                    """,
                    (run_id, *chunk),
                )
                touched += cursor.rowcount
            self._conn.commit()
        return touched

    def mark_stale(self, run_id: str) -> int:
        """Mark every active record not seen in ``run_id`` as stale; return how many."""

        _require_str("run_id", run_id)
        stamp = self.now().isoformat()
        with self._lock:
            cursor = self._conn.execute(
                """
                UPDATE store_records
                SET status = ?, status_reason = ?, modified_at = ?
                WHERE status = ? AND (last_seen_run IS NULL OR last_seen_run != ?)
                """,
                (STATUS_STALE, "Not present in latest import", stamp, STATUS_ACTIVE, run_id),
            )
            self._conn.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    @staticmethod
    def _to_record(row) -> StoreRecord:
        return StoreRecord(
            id=row["id"],
            identifier=row["identifier"],
            title=row["title"],
            company=row["company"],
            location=row["location"],
            content=row["content"],
            payload=json.loads(row["payload"] or "{}"),
            content_hash=row["content_hash"],
            status=row["status"],
            status_reason=row["status_reason"],
            created_at=row["created_at"],
            modified_at=row["modified_at"],
            last_seen_run=row["last_seen_run"],
        )


__all__ = [
    "RecordFields",
    "RecordStore",
    "STATUS_ACTIVE",
    "STATUS_DEMOTED",
    "STATUS_STALE",
    "StoreRecord",
]
