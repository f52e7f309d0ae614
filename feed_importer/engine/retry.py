"""Retry with exponential backoff and per-operation circuit breakers.

Every write that touches the record store or the checkpoint goes through
:class:`RetryExecutor`. Breaker state lives in a :class:`CircuitBreakerRegistry`
instance owned by whoever builds the executor, so separate pipelines (and
separate tests) never share failure counts.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

import structlog

from ..errors import CircuitOpenError, StoreContractError

T = TypeVar("T")

MIN_DELAY_MS = 10
JITTER_RATIO = 0.25

TRANSIENT_MARKERS = (
    "deadlock",
    "lock wait timeout",
    "database is locked",
    "connection lost",
    "server has gone away",
    "too many connections",
    "temporary failure",
    "network",
    "timeout",
    "timed out",
    "temporary",
    "transient",
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 100
    max_delay_ms: int = 5000
    operation_key: str = "default"
    retryable_exceptions: tuple[type[BaseException], ...] = ()


# Store writes back off harder than small metadata writes.
STORE_WRITE = RetryPolicy(max_retries=2, base_delay_ms=200, operation_key="store_write")
STORE_READ = RetryPolicy(max_retries=3, base_delay_ms=100, operation_key="store_read")
METADATA_WRITE = RetryPolicy(max_retries=4, base_delay_ms=50, operation_key="metadata_write")


def compute_delay(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    rng: random.Random | None = None,
) -> int:
    """Backoff for the given 1-based attempt in milliseconds, jittered by ±25%."""

    rng = rng or random
    delay = base_delay_ms * (2 ** max(attempt - 1, 0))
    delay += delay * JITTER_RATIO * (rng.random() * 2 - 1)
    delay = min(delay, max_delay_ms)
    return max(int(delay), MIN_DELAY_MS)


def is_transient(exc: BaseException, retryable: tuple[type[BaseException], ...] = ()) -> bool:
    if retryable and isinstance(exc, retryable):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


@dataclass(slots=True)
class _BreakerState:
    failures: int = 0
    window_started: float | None = None
    opened_at: float | None = None


class CircuitBreakerRegistry:
    """Failure counters keyed by operation name."""

    def __init__(
        self,
        threshold: int = 5,
        timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.threshold = threshold
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.logger = logger or structlog.get_logger("feed_importer.retry")
        self._states: dict[str, _BreakerState] = {}

    def is_open(self, key: str) -> bool:
        state = self._states.get(key)
        if state is None or state.opened_at is None:
            return False
        if self.clock() - state.opened_at >= self.timeout_seconds:
            # cooldown elapsed: next call is allowed through with a fresh count
            self._states.pop(key, None)
            self.logger.info("circuit_closed", operation=key)
            return False
        return True

    def remaining(self, key: str) -> float:
        state = self._states.get(key)
        if state is None or state.opened_at is None:
            return 0.0
        return max(0.0, self.timeout_seconds - (self.clock() - state.opened_at))

    def record_failure(self, key: str) -> None:
        now = self.clock()
        state = self._states.setdefault(key, _BreakerState())
        if state.window_started is None or now - state.window_started > self.timeout_seconds:
            state.failures = 0
            state.window_started = now
        state.failures += 1
        if state.failures >= self.threshold and state.opened_at is None:
            state.opened_at = now
            self.logger.warning("circuit_opened", operation=key, failures=state.failures)

    def reset(self, key: str) -> None:
        self._states.pop(key, None)

    def status(self) -> dict[str, dict[str, Any]]:
        report: dict[str, dict[str, Any]] = {}
        for key in list(self._states):
            state = self._states[key]
            report[key] = {
                "failures": state.failures,
                "open": self.is_open(key),
                "remaining_seconds": round(self.remaining(key), 1),
            }
        return report


class RetryExecutor:
    """Run callables under a :class:`RetryPolicy`."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.breakers = breakers or CircuitBreakerRegistry()
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.logger = logger or structlog.get_logger("feed_importer.retry")

    def run(self, policy: RetryPolicy, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        key = policy.operation_key
        if self.breakers.is_open(key):
            raise CircuitOpenError(key, self.breakers.remaining(key))

        attempt = 0
        while True:
            attempt += 1
            try:
                result = func(*args, **kwargs)
            except StoreContractError:
                raise
            except Exception as exc:  # noqa: BLE001
                if not is_transient(exc, policy.retryable_exceptions) or attempt > policy.max_retries:
                    self.breakers.record_failure(key)
                    self.logger.warning(
                        "operation_failed",
                        operation=key,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise
                delay_ms = compute_delay(attempt, policy.base_delay_ms, policy.max_delay_ms, self.rng)
                self.logger.info(
                    "operation_retry",
                    operation=key,
                    attempt=attempt,
                    delay_ms=delay_ms,
                    error=str(exc),
                )
                self.sleep(delay_ms / 1000)
                continue
            self.breakers.reset(key)
            return result


__all__ = [
    "CircuitBreakerRegistry",
    "METADATA_WRITE",
    "RetryExecutor",
    "RetryPolicy",
    "STORE_READ",
    "STORE_WRITE",
    "compute_delay",
    "is_transient",
]
