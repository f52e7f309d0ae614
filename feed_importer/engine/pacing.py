"""Per-invocation budget and adaptive batch sizing."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import psutil

MEMORY_SHRINK_RATIO = 0.85
MEMORY_GROW_RATIO = 0.5
FAST_ITEM_SECONDS = 1.0
SHRINK_FACTOR = 0.7
GROW_FACTOR = 1.5
SLOWER_RATIO = 1.2
FASTER_RATIO = 0.8
EMA_KEEP = 0.7


def rss_bytes() -> int:
    return psutil.Process().memory_info().rss


class BudgetState(str, Enum):
    CONTINUE = "continue"
    PAUSED = "paused"


@dataclass(frozen=True, slots=True)
class BudgetCheck:
    state: BudgetState
    reason: str = ""

    @property
    def paused(self) -> bool:
        return self.state is BudgetState.PAUSED


class Budget:
    """Soft deadline plus memory ceiling for one invocation."""

    def __init__(
        self,
        time_limit_seconds: float,
        memory_limit_bytes: int,
        pause_ratio: float = 0.9,
        clock: Callable[[], float] = time.monotonic,
        memory_probe: Callable[[], int] = rss_bytes,
    ) -> None:
        self.time_limit_seconds = time_limit_seconds
        self.memory_limit_bytes = memory_limit_bytes
        self.pause_ratio = pause_ratio
        self.clock = clock
        self.memory_probe = memory_probe
        self.started = clock()
        self.deadline = self.started + time_limit_seconds

    def elapsed(self) -> float:
        return self.clock() - self.started

    def memory_ratio(self, used: int | None = None) -> float:
        used = self.memory_probe() if used is None else used
        return used / self.memory_limit_bytes if self.memory_limit_bytes else 0.0

    def check(self) -> BudgetCheck:
        if self.clock() >= self.deadline:
            return BudgetCheck(BudgetState.PAUSED, f"time budget of {self.time_limit_seconds:g}s used")
        ratio = self.memory_ratio()
        if ratio >= self.pause_ratio:
            return BudgetCheck(BudgetState.PAUSED, f"memory at {ratio:.0%} of limit")
        return BudgetCheck(BudgetState.CONTINUE)


def align_start(start: int, batch_size: int) -> int:
    return (max(start, 0) // batch_size) * batch_size


def fit_batch_size(cursor: int, size: int, min_size: int = 1) -> int:
    """Largest size in ``[max(min_size, size // 2), size]`` that divides ``cursor``.

    Keeps the next window aligned on the cursor. Without such a size the
    proposal stands and the next window is cut short at its aligned end.
    """

    if cursor <= 0 or size <= 1:
        return size
    for candidate in range(size, max(min_size, size // 2, 1) - 1, -1):
        if cursor % candidate == 0:
            return candidate
    return size


def smooth_time_per_item(average: float, latest: float) -> float:
    if average <= 0:
        return latest
    return average * EMA_KEEP + latest * (1 - EMA_KEEP)


def adjust_batch_size(
    current: int,
    memory_ratio: float,
    avg_time_per_item: float,
    time_per_item: float,
    previous_time_per_item: float,
    min_size: int = 1,
    max_size: int = 50,
) -> int:
    """Size for the next batch given the pressure observed in the last one."""

    size = float(current)
    if memory_ratio > MEMORY_SHRINK_RATIO:
        size = max(min_size, math.floor(size * SHRINK_FACTOR))
    elif memory_ratio < MEMORY_GROW_RATIO and avg_time_per_item < FAST_ITEM_SECONDS:
        size = min(max_size, math.ceil(size * GROW_FACTOR))

    if previous_time_per_item > 0 and time_per_item > 0:
        ratio = time_per_item / previous_time_per_item
        if ratio > SLOWER_RATIO or ratio < FASTER_RATIO:
            size = size / ratio

    return int(max(min_size, min(max_size, round(size))))


__all__ = [
    "Budget",
    "BudgetCheck",
    "BudgetState",
    "adjust_batch_size",
    "align_start",
    "fit_batch_size",
    "rss_bytes",
    "smooth_time_per_item",
]
