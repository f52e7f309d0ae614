"""Shared fixtures: an isolated importer home, a SQLite store and corpus helpers."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from feed_importer.config import ConfigLocator, ConfigRepository, GlobalConfig
from feed_importer.engine.checkpoint import CheckpointStore
from feed_importer.engine.retry import CircuitBreakerRegistry, RetryExecutor
from feed_importer.infra import RecordStore, SQLiteKeyValueStore, SQLiteManager


class FakeClock:
    """Manually advanced clock usable as both ``time.monotonic`` and ``time.sleep``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def importer_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("FEED_IMPORTER_HOME", str(home))
    return home


@pytest.fixture()
def temp_config_repository(importer_home: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator())


@pytest.fixture()
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / "importer.db"


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def frozen_now() -> Callable[[], datetime]:
    stamp = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    return lambda: stamp


@pytest.fixture()
def kv(storage: SQLiteManager, db_path: Path) -> SQLiteKeyValueStore:
    return SQLiteKeyValueStore(storage, db_path)


@pytest.fixture()
def record_store(storage: SQLiteManager, db_path: Path) -> RecordStore:
    return RecordStore(storage, db_path)


@pytest.fixture()
def retry_executor(fake_clock: FakeClock) -> RetryExecutor:
    breakers = CircuitBreakerRegistry(threshold=5, timeout_seconds=300, clock=fake_clock)
    return RetryExecutor(breakers, sleep=fake_clock.sleep)


@pytest.fixture()
def checkpoint_store(kv: SQLiteKeyValueStore, retry_executor: RetryExecutor) -> CheckpointStore:
    return CheckpointStore(kv, "test_run", retry_executor)


def make_item(index: int, **overrides: Any) -> dict[str, Any]:
    """A staged corpus row as produced by the normalizer."""

    token = hashlib.sha1(str(index).encode("utf-8")).hexdigest()
    item = {
        "identifier": f"job-{index:04d}",
        "title": f"Vacancy {token[:12]}",
        "enhanced_title": f"Vacancy {token[:12]} in Gent",
        "description": f"<p>{token}</p>",
        "company": f"Company {token[12:24]}",
        "location": "Gent",
        "city": "Gent",
        "province": "Oost-Vlaanderen",
        "locale": "nl",
        "feed": "sample",
    }
    item.update(overrides)
    return item


@pytest.fixture()
def write_corpus(tmp_path: Path) -> Callable[..., Path]:
    """Write rows (dicts or raw strings) as a JSON-lines corpus file."""

    def _write(rows: Iterable[Any], name: str = "corpus.jsonl") -> Path:
        path = tmp_path / "corpus" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            for row in rows:
                line = row if isinstance(row, str) else json.dumps(row, ensure_ascii=False)
                handle.write(line + "\n")
        return path

    return _write


@pytest.fixture()
def global_config_factory() -> Callable[..., GlobalConfig]:
    def _factory(**overrides: Any) -> GlobalConfig:
        payload: dict[str, Any] = {
            "feeds": [{"key": "sample", "url": "https://feeds.example.com/sample.xml"}],
            "fetch": {"min_bytes": 10},
        }
        payload.update(overrides)
        return GlobalConfig.model_validate(payload)

    return _factory


__all__ = ["FakeClock", "make_item"]
