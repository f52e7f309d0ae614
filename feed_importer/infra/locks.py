"""Expiring mutual-exclusion tokens backed by the key-value store."""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator

import structlog

from ..errors import LockTimeoutError
from .kv import KeyValueStore


class OperationLock:
    """At most one holder per key; a crashed holder's token expires after ``ttl_seconds``."""

    def __init__(
        self,
        kv: KeyValueStore,
        key: str,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.kv = kv
        self.key = f"lock:{key}"
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or structlog.get_logger("feed_importer.lock")
        self._token: str | None = None

    @property
    def acquired(self) -> bool:
        return self._token is not None

    def try_acquire(self) -> bool:
        token = uuid.uuid4().hex
        if self.kv.add(self.key, token, ttl=self.ttl_seconds):
            self._token = token
            return True
        return False

    def acquire(self, timeout: float = 30.0, poll_interval: float = 0.5) -> None:
        deadline = self.clock() + timeout
        while not self.try_acquire():
            if self.clock() >= deadline:
                self.logger.error("lock_timeout", key=self.key, timeout=timeout)
                raise LockTimeoutError(f"Could not acquire {self.key} within {timeout}s")
            self.sleep(poll_interval)
        self.logger.info("lock_acquired", key=self.key)

    def release(self) -> None:
        if self._token is None:
            return
        released = self.kv.delete_if(self.key, self._token)
        if not released:
            self.logger.warning("lock_lost_before_release", key=self.key)
        self._token = None

    @contextmanager
    def held(self, timeout: float = 30.0, poll_interval: float = 0.5) -> Iterator["OperationLock"]:
        self.acquire(timeout=timeout, poll_interval=poll_interval)
        try:
            yield self
        finally:
            self.release()


__all__ = ["OperationLock"]
