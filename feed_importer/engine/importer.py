"""Resumable, checkpointed batch import of the combined corpus into the record store.

One call to :meth:`BatchImportEngine.run_batch` is one invocation: it reads a
single window of the corpus, writes what it can within its budget and
persists the cursor. Callers keep invoking it until the result reports
``complete`` or ``cancelled``.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from ..config import DeduplicationConfig, ImportSettings
from ..errors import CircuitOpenError, CorpusUnavailableError
from ..infra.records import RecordFields, RecordStore, StoreRecord
from .checkpoint import (
    COUNTER_FIELDS,
    STATUS_CANCELLED,
    STATUS_COMPLETE,
    STATUS_PAUSED,
    STATUS_RUNNING,
    CheckpointStore,
    ImportCheckpoint,
    log_line,
)
from .corpus import Corpus
from .dedup import DeduplicationEngine
from .pacing import (
    Budget,
    adjust_batch_size,
    align_start,
    fit_batch_size,
    rss_bytes,
    smooth_time_per_item,
)
from .records import NormalizedRecord
from .retry import STORE_READ, STORE_WRITE, RetryExecutor

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


@dataclass(slots=True)
class BatchResult:
    """Outcome of one invocation; counters cover this batch only."""

    success: bool
    status: str
    processed: int
    total: int
    complete: bool
    created: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates_drafted: int = 0
    fuzzy_matched: int = 0
    failed: int = 0
    time_elapsed: float = 0.0
    batch_time: float = 0.0
    batch_size: int = 0
    batch_processed: int = 0
    start: int = 0
    message: str = ""
    logs: list[str] = field(default_factory=list)

    @property
    def published(self) -> int:
        return self.created

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["published"] = self.created
        return payload


@dataclass(slots=True)
class _Staged:
    position: int
    record: NormalizedRecord | None
    problem: str = ""


@dataclass(slots=True)
class _BatchState:
    run_id: str
    counters: dict[str, int] = field(default_factory=lambda: dict.fromkeys(COUNTER_FIELDS, 0))
    logs: list[str] = field(default_factory=list)
    resolved: dict[str, StoreRecord] = field(default_factory=dict)
    pool: list[StoreRecord] = field(default_factory=list)
    peak_memory: int = 0


class BatchImportEngine:
    """Import one corpus window per invocation, resuming from the persisted cursor."""

    def __init__(
        self,
        corpus: Corpus,
        store: RecordStore,
        checkpoints: CheckpointStore,
        retry: RetryExecutor,
        settings: ImportSettings | None = None,
        dedup_config: DeduplicationConfig | None = None,
        dedup: DeduplicationEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        memory_probe: Callable[[], int] = rss_bytes,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.corpus = corpus
        self.store = store
        self.checkpoints = checkpoints
        self.retry = retry
        self.settings = settings or ImportSettings()
        self.dedup_config = dedup_config or DeduplicationConfig()
        self.dedup = dedup or DeduplicationEngine(
            threshold=self.dedup_config.threshold,
            max_candidates=self.dedup_config.max_candidates,
            enable_fuzzy=self.dedup_config.enable_fuzzy,
        )
        self.clock = clock
        self.now = now
        self.memory_probe = memory_probe
        self.logger = logger or structlog.get_logger("feed_importer.importer")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def status(self) -> dict[str, Any]:
        checkpoint = self.checkpoints.load()
        if checkpoint is None:
            return {
                "total": 0,
                "processed": 0,
                "created": 0,
                "published": 0,
                "updated": 0,
                "skipped": 0,
                "duplicates_drafted": 0,
                "complete": False,
                "time_elapsed": 0.0,
                "batch_size": self.settings.batch_size,
                "logs": [],
                "status": "idle",
            }
        return checkpoint.as_status()

    def run_batch(self, start: int | None = None) -> BatchResult:
        """Run one invocation.

        Corpus open failures propagate; any other unexpected failure comes back
        as ``success=False`` with the cursor left where it was.
        """

        budget = Budget(
            self.settings.time_budget_seconds,
            self.settings.memory_limit_bytes,
            self.settings.memory_pause_ratio,
            clock=self.clock,
            memory_probe=self.memory_probe,
        )
        total = self.corpus.count()
        if total == 0:
            return BatchResult(
                success=True,
                status=STATUS_COMPLETE,
                processed=0,
                total=0,
                complete=True,
                batch_size=self.settings.batch_size,
                message="Corpus is empty",
            )

        cursor = 0
        try:
            checkpoint = self._load_or_start(total)
            cursor = checkpoint.processed
            if checkpoint.complete:
                return self._result(checkpoint, _BatchState(checkpoint.run_id), True, "Import already complete")
            if self.checkpoints.is_cancelled():
                return self._cancel(checkpoint)

            batch_size = checkpoint.batch_size
            requested = checkpoint.cursor if start is None else max(checkpoint.cursor, start)
            begin = align_start(requested, batch_size)
            if begin >= total:
                checkpoint.complete = True
                checkpoint.status = STATUS_COMPLETE
                self.checkpoints.save(checkpoint)
                return self._result(checkpoint, _BatchState(checkpoint.run_id), True, "Import complete")
            end = min(begin + batch_size, total)
            return self._run_window(checkpoint, begin, end, budget)
        except CorpusUnavailableError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("batch_failed", error=str(exc))
            return BatchResult(
                success=False,
                status=STATUS_PAUSED,
                processed=cursor,
                total=total,
                complete=False,
                batch_size=self.settings.batch_size,
                message=f"Batch failed: {exc}",
                logs=[log_line(f"Batch failed: {exc}", self.now())],
            )

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------
    def _load_or_start(self, total: int) -> ImportCheckpoint:
        version = self.corpus.version()
        checkpoint = self.checkpoints.load()
        if checkpoint is not None and checkpoint.corpus_version == version:
            checkpoint.total = total
            return checkpoint
        if checkpoint is not None:
            self.logger.info("corpus_changed_new_run", previous_run=checkpoint.run_id)
        checkpoint = self.checkpoints.start_run(total, self.settings.batch_size, version)
        checkpoint.add_logs([log_line(f"Import started: {total} items", self.now())], self.settings.log_limit)
        self.logger.info("import_started", run_id=checkpoint.run_id, total=total)
        return checkpoint

    def _cancel(self, checkpoint: ImportCheckpoint) -> BatchResult:
        state = _BatchState(checkpoint.run_id)
        state.logs.append(log_line(f"Import cancelled at {checkpoint.cursor}/{checkpoint.total}", self.now()))
        checkpoint.status = STATUS_CANCELLED
        checkpoint.add_logs(state.logs, self.settings.log_limit)
        self.checkpoints.save(checkpoint)
        self.logger.info("import_cancelled", run_id=checkpoint.run_id, cursor=checkpoint.cursor)
        return self._result(checkpoint, state, True, "Import cancelled")

    def _run_window(self, checkpoint: ImportCheckpoint, begin: int, end: int, budget: Budget) -> BatchResult:
        """Import rows ``begin..end``, passing over those this run already handled.

        An aligned window can start below the persisted cursor after a mid-batch
        pause; rows under the cursor were counted and marked seen by the
        invocation that read them, so they are neither re-imported nor re-counted.
        """

        state = _BatchState(checkpoint.run_id)
        first = max(begin, checkpoint.cursor)
        staged = self._stage(first, end, state)
        self._resolve_existing(staged, state)

        processed = 0
        paused_reason = ""
        store_down = ""
        for item in staged:
            if processed > 0:
                check = budget.check()
                if check.paused:
                    paused_reason = check.reason
                    break
            if item.record is None:
                state.counters["skipped"] += 1
                state.logs.append(log_line(item.problem, self.now()))
            else:
                try:
                    outcome = self._import_one(item.record, state)
                    state.counters[outcome] += 1
                except CircuitOpenError as exc:
                    store_down = str(exc)
                    state.logs.append(log_line(f"Stopping batch: {exc}", self.now()))
                    break
                except Exception as exc:  # noqa: BLE001
                    state.counters["failed"] += 1
                    state.logs.append(
                        log_line(f"Record {item.record.identifier} failed: {exc}", self.now())
                    )
                    self.logger.warning("record_failed", identifier=item.record.identifier, error=str(exc))
            processed += 1
            state.peak_memory = max(state.peak_memory, self.memory_probe())

        batch_time = budget.elapsed()
        for name, value in state.counters.items():
            setattr(checkpoint, name, getattr(checkpoint, name) + value)
        checkpoint.cursor = max(checkpoint.cursor, first + processed)
        self._apply_metrics(checkpoint, processed, batch_time, state.peak_memory)
        checkpoint.time_elapsed += batch_time
        checkpoint.complete = checkpoint.cursor >= checkpoint.total
        if checkpoint.complete:
            checkpoint.status = STATUS_COMPLETE
            state.logs.append(log_line(f"Import complete: {checkpoint.total} items", self.now()))
        elif paused_reason:
            checkpoint.status = STATUS_PAUSED
            state.logs.append(log_line(f"Paused at {checkpoint.cursor}: {paused_reason}", self.now()))
        else:
            checkpoint.status = STATUS_RUNNING
        state.logs.append(
            log_line(
                f"Batch {first}-{first + processed} done in {batch_time:.2f}s "
                f"(created {state.counters['created']}, updated {state.counters['updated']}, "
                f"skipped {state.counters['skipped']})",
                self.now(),
            )
        )
        checkpoint.add_logs(state.logs, self.settings.log_limit)
        self.checkpoints.save(checkpoint)
        self.logger.info(
            "batch_completed",
            run_id=state.run_id,
            start=first,
            processed=processed,
            cursor=checkpoint.cursor,
            total=checkpoint.total,
            status=checkpoint.status,
            **state.counters,
        )
        message = f"Processed {processed} items"
        if store_down:
            return self._result(checkpoint, state, False, f"Batch failed: {store_down}", first, processed, batch_time)
        return self._result(checkpoint, state, True, message, first, processed, batch_time)

    # ------------------------------------------------------------------
    # Batch steps
    # ------------------------------------------------------------------
    def _stage(self, begin: int, end: int, state: _BatchState) -> list[_Staged]:
        staged: list[_Staged] = []
        for position, payload in self.corpus.read_window(begin, end):
            if payload is None:
                staged.append(_Staged(position, None, f"Malformed record at line {position + 1} skipped"))
                continue
            try:
                record = NormalizedRecord.from_dict(payload)
            except (TypeError, ValueError) as exc:
                staged.append(_Staged(position, None, f"Invalid record at line {position + 1} skipped: {exc}"))
                continue
            if not record.identifier:
                staged.append(_Staged(position, None, f"Record at line {position + 1} has no identifier, skipped"))
                continue
            staged.append(_Staged(position, record))
        return staged

    def _resolve_existing(self, staged: list[_Staged], state: _BatchState) -> None:
        """One bulk lookup for the window, exact-collision demotion, then the fuzzy pool."""

        identifiers = [item.record.identifier for item in staged if item.record is not None]
        found = self.retry.run(STORE_READ, self.store.lookup, identifiers)
        for identifier, records in found.items():
            candidates = [record for record in records if record.status != "demoted"]
            if not candidates:
                continue
            if len(candidates) > 1:
                resolution = self.dedup.resolve_exact(candidates)
                for loser, reason in resolution.demoted:
                    self.retry.run(STORE_WRITE, self.store.demote, loser.id, reason)
                    state.counters["duplicates_drafted"] += 1
                    state.logs.append(
                        log_line(f"Drafted duplicate #{loser.id} of {identifier}: {reason}", self.now())
                    )
                state.resolved[identifier] = resolution.keep
            else:
                state.resolved[identifier] = candidates[0]

        if not self.dedup.enable_fuzzy:
            return
        companies = {
            item.record.company
            for item in staged
            if item.record is not None and item.record.identifier not in state.resolved
        }
        if companies:
            state.pool = self.retry.run(
                STORE_READ,
                self.store.fuzzy_pool,
                companies,
                self.dedup_config.pool_size,
                self.dedup_config.pool_days,
            )

    def _import_one(self, record: NormalizedRecord, state: _BatchState) -> str:
        content_hash = record.content_hash()
        existing = state.resolved.get(record.identifier)
        if existing is not None:
            if existing.content_hash == content_hash:
                self.retry.run(STORE_WRITE, self.store.touch, [existing.id], state.run_id)
                return OUTCOME_SKIPPED
            if existing.matched_alias:
                record_fields = self._fuzzy_fields(existing, record)
            else:
                record_fields = self._fields(record)
            self.retry.run(
                STORE_WRITE,
                self.store.update,
                existing.id,
                record_fields,
                content_hash,
                state.run_id,
                existing.matched_alias,
            )
            state.resolved[record.identifier] = replace(existing, content_hash=content_hash)
            return OUTCOME_UPDATED

        match = self.dedup.best_match(record, state.pool)
        if match is not None:
            target = next(candidate for candidate in state.pool if candidate.id == match.store_id)
            self.retry.run(
                STORE_WRITE,
                self.store.update,
                target.id,
                self._fuzzy_fields(target, record),
                content_hash,
                state.run_id,
                record.identifier,
            )
            state.resolved[record.identifier] = replace(
                target, content_hash=content_hash, matched_alias=record.identifier
            )
            state.counters["fuzzy_matched"] += 1
            state.logs.append(
                log_line(
                    f"{record.identifier} matched #{target.id} ({match.similarity:.2f}: "
                    f"{', '.join(match.reasons) or match.strategy}), updated instead of created",
                    self.now(),
                )
            )
            return OUTCOME_UPDATED

        created = self.retry.run(
            STORE_WRITE,
            self.store.create,
            record.identifier,
            self._fields(record),
            content_hash,
            state.run_id,
        )
        state.resolved[record.identifier] = created
        state.pool.append(created)
        return OUTCOME_CREATED

    @staticmethod
    def _fields(record: NormalizedRecord) -> RecordFields:
        return RecordFields(
            title=record.title,
            company=record.company,
            location=record.location,
            content=record.description,
            payload=record.to_dict(),
        )

    def _fuzzy_fields(self, target: StoreRecord, record: NormalizedRecord) -> RecordFields:
        """Fields written when ``record`` was matched to someone else's store record."""

        incoming = self._fields(record)
        if self.dedup_config.fuzzy_policy == "overwrite":
            incoming.payload["identifier"] = target.identifier
            return incoming
        merged = target.fields()
        for key, value in incoming.payload.items():
            if key != "identifier" and _is_blank(merged.payload.get(key)):
                merged.payload[key] = value
        for name in ("title", "company", "location", "content"):
            if not getattr(merged, name):
                setattr(merged, name, getattr(incoming, name))
        return merged

    def _apply_metrics(self, checkpoint: ImportCheckpoint, processed: int, batch_time: float, peak: int) -> None:
        previous = checkpoint.time_per_item
        time_per_item = batch_time / processed if processed else 0.0
        checkpoint.last_batch_time = batch_time
        checkpoint.time_per_item = time_per_item
        if processed:
            checkpoint.avg_time_per_item = smooth_time_per_item(checkpoint.avg_time_per_item, time_per_item)
        checkpoint.last_peak_memory = peak
        checkpoint.last_memory_ratio = peak / self.settings.memory_limit_bytes
        if not self.settings.adaptive:
            checkpoint.batch_size = self.settings.batch_size
            return
        proposed = adjust_batch_size(
            checkpoint.batch_size,
            checkpoint.last_memory_ratio,
            checkpoint.avg_time_per_item,
            time_per_item,
            previous,
            self.settings.min_batch_size,
            self.settings.max_batch_size,
        )
        checkpoint.batch_size = fit_batch_size(checkpoint.cursor, proposed, self.settings.min_batch_size)

    def _result(
        self,
        checkpoint: ImportCheckpoint,
        state: _BatchState,
        success: bool,
        message: str,
        start: int = 0,
        batch_processed: int = 0,
        batch_time: float = 0.0,
    ) -> BatchResult:
        return BatchResult(
            success=success,
            status=checkpoint.status,
            processed=checkpoint.processed,
            total=checkpoint.total,
            complete=checkpoint.complete,
            time_elapsed=checkpoint.time_elapsed,
            batch_time=batch_time,
            batch_size=checkpoint.batch_size,
            batch_processed=batch_processed,
            start=start,
            message=message,
            logs=list(state.logs),
            **state.counters,
        )


__all__ = ["BatchImportEngine", "BatchResult"]
