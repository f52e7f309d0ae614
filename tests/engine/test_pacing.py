from __future__ import annotations

import pytest

from conftest import FakeClock
from feed_importer.engine.pacing import (
    Budget,
    BudgetState,
    adjust_batch_size,
    align_start,
    fit_batch_size,
    smooth_time_per_item,
)


@pytest.mark.parametrize(
    ("start", "batch_size", "expected"),
    [(0, 10, 0), (9, 10, 0), (10, 10, 10), (25, 10, 20), (-3, 10, 0), (7, 1, 7)],
)
def test_align_start(start: int, batch_size: int, expected: int) -> None:
    assert align_start(start, batch_size) == expected


def test_smooth_time_per_item() -> None:
    assert smooth_time_per_item(0.0, 0.4) == 0.4
    assert smooth_time_per_item(1.0, 2.0) == pytest.approx(1.3)


def test_budget_pauses_on_deadline(fake_clock: FakeClock) -> None:
    budget = Budget(20, 1000, clock=fake_clock, memory_probe=lambda: 100)

    assert budget.check().state is BudgetState.CONTINUE
    fake_clock.advance(20)
    check = budget.check()
    assert check.paused
    assert "time budget" in check.reason
    assert budget.elapsed() == 20


def test_budget_pauses_on_memory(fake_clock: FakeClock) -> None:
    usage = {"value": 100}
    budget = Budget(20, 1000, pause_ratio=0.9, clock=fake_clock, memory_probe=lambda: usage["value"])

    assert not budget.check().paused
    usage["value"] = 950
    check = budget.check()
    assert check.paused
    assert "memory" in check.reason
    assert budget.memory_ratio() == pytest.approx(0.95)


def test_adjust_shrinks_under_memory_pressure() -> None:
    assert adjust_batch_size(10, 0.9, 0.1, 0.0, 0.0) == 7
    assert adjust_batch_size(1, 0.95, 0.1, 0.0, 0.0) == 1


def test_adjust_grows_when_fast_and_light() -> None:
    assert adjust_batch_size(10, 0.2, 0.1, 0.0, 0.0) == 15
    assert adjust_batch_size(40, 0.2, 0.1, 0.0, 0.0, max_size=50) == 50


def test_adjust_holds_in_the_middle_band() -> None:
    assert adjust_batch_size(10, 0.6, 0.1, 0.1, 0.1) == 10
    assert adjust_batch_size(10, 0.2, 2.0, 0.1, 0.1) == 10


def test_adjust_reacts_to_time_per_item_changes() -> None:
    # twice as slow as the previous batch: halve
    assert adjust_batch_size(10, 0.6, 2.0, 0.2, 0.1) == 5
    # twice as fast: double
    assert adjust_batch_size(10, 0.6, 2.0, 0.05, 0.1) == 20
    # within ±20 %: unchanged
    assert adjust_batch_size(10, 0.6, 2.0, 0.11, 0.1) == 10


def test_adjust_respects_bounds() -> None:
    assert adjust_batch_size(2, 0.6, 2.0, 1.0, 0.1, min_size=1, max_size=50) == 1
    assert adjust_batch_size(30, 0.6, 2.0, 0.01, 0.1, min_size=1, max_size=50) == 50


@pytest.mark.parametrize(
    ("cursor", "size", "expected"),
    [(0, 15, 15), (10, 15, 10), (20, 15, 10), (30, 7, 6), (13, 10, 10), (40, 1, 1)],
)
def test_fit_batch_size_keeps_windows_on_the_cursor(cursor: int, size: int, expected: int) -> None:
    assert fit_batch_size(cursor, size) == expected
