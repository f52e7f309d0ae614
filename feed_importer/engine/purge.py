"""Finalization: mark records missing from a completed run as stale."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from ..config import LockSettings
from ..infra.locks import OperationLock
from ..infra.kv import KeyValueStore
from ..infra.records import RecordStore
from .checkpoint import CheckpointStore
from .retry import STORE_WRITE, RetryExecutor


@dataclass(slots=True)
class PurgeResult:
    success: bool
    run_id: str | None
    stale: int = 0
    message: str = ""


class Purger:
    """Runs once per completed corpus pass, serialised by an :class:`OperationLock`."""

    def __init__(
        self,
        kv: KeyValueStore,
        store: RecordStore,
        checkpoints: CheckpointStore,
        retry: RetryExecutor,
        lock_settings: LockSettings | None = None,
        lock: OperationLock | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.checkpoints = checkpoints
        self.retry = retry
        self.lock_settings = lock_settings or LockSettings()
        self.logger = logger or structlog.get_logger("feed_importer.purge")
        self.lock = lock or OperationLock(
            kv,
            f"purge:{checkpoints.run_name}",
            ttl_seconds=self.lock_settings.ttl_seconds,
            logger=self.logger,
        )

    def finalize(self) -> PurgeResult:
        """Mark unseen records stale and clear the run state.

        Raises :class:`~feed_importer.errors.LockTimeoutError` when another
        finalizer holds the lock for longer than the acquire timeout.
        """

        checkpoint = self.checkpoints.load()
        if checkpoint is None or not checkpoint.complete:
            return PurgeResult(
                success=False,
                run_id=checkpoint.run_id if checkpoint else None,
                message="Import is not complete; nothing to finalize",
            )

        with self.lock.held(
            timeout=self.lock_settings.acquire_timeout_seconds,
            poll_interval=self.lock_settings.poll_interval_seconds,
        ):
            # another finalizer may have finished while we waited
            current = self.checkpoints.load()
            if current is None or current.run_id != checkpoint.run_id:
                return PurgeResult(success=True, run_id=checkpoint.run_id, message="Already finalized")
            stale = self.retry.run(STORE_WRITE, self.store.mark_stale, checkpoint.run_id)
            self.checkpoints.reset()

        self.logger.info("purge_completed", run_id=checkpoint.run_id, stale=stale)
        return PurgeResult(
            success=True,
            run_id=checkpoint.run_id,
            stale=stale,
            message=f"Marked {stale} records stale",
        )


__all__ = ["PurgeResult", "Purger"]
