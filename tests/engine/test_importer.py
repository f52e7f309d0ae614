from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeClock, make_item
from feed_importer.config import DeduplicationConfig, ImportSettings, LockSettings
from feed_importer.engine.checkpoint import CheckpointStore
from feed_importer.engine.corpus import Corpus
from feed_importer.engine.importer import BatchImportEngine
from feed_importer.engine.purge import Purger
from feed_importer.engine.retry import CircuitBreakerRegistry, RetryExecutor
from feed_importer.errors import CorpusUnavailableError
from feed_importer.infra import RecordFields, RecordStore, SQLiteKeyValueStore


@pytest.fixture()
def build_engine(
    kv: SQLiteKeyValueStore,
    record_store: RecordStore,
    checkpoint_store: CheckpointStore,
    retry_executor: RetryExecutor,
    fake_clock: FakeClock,
):
    def _build(path: Path, retry: RetryExecutor | None = None, memory_probe=lambda: 1024, **settings):
        options = {"batch_size": 10, "adaptive": False}
        options.update(settings)
        return BatchImportEngine(
            corpus=Corpus(path, kv),
            store=record_store,
            checkpoints=checkpoint_store,
            retry=retry or retry_executor,
            settings=ImportSettings(**options),
            dedup_config=DeduplicationConfig(),
            clock=fake_clock,
            memory_probe=memory_probe,
        )

    return _build


def run_to_completion(engine: BatchImportEngine, limit: int = 50):
    results = [engine.run_batch()]
    while not results[-1].complete and len(results) < limit:
        results.append(engine.run_batch())
    return results


def test_status_is_idle_before_first_batch(build_engine, write_corpus) -> None:
    engine = build_engine(write_corpus([make_item(0)]))
    status = engine.status()
    assert status["status"] == "idle"
    assert status["processed"] == 0
    assert status["complete"] is False


def test_empty_corpus_completes_without_checkpoint(build_engine, write_corpus, checkpoint_store) -> None:
    result = build_engine(write_corpus([])).run_batch()

    assert result.success and result.complete
    assert result.total == 0
    assert checkpoint_store.load() is None


def test_missing_corpus_propagates(build_engine, tmp_path: Path) -> None:
    with pytest.raises(CorpusUnavailableError):
        build_engine(tmp_path / "absent.jsonl").run_batch()


def test_batches_resume_from_checkpoint(build_engine, write_corpus, record_store, checkpoint_store) -> None:
    engine = build_engine(write_corpus([make_item(n) for n in range(25)]))

    first = engine.run_batch()
    assert (first.processed, first.total, first.complete) == (10, 25, False)
    assert first.created == 10
    assert first.status == "running"

    # a fresh engine instance resumes from the persisted cursor
    second = build_engine(engine.corpus.path).run_batch()
    assert (second.start, second.processed, second.created) == (10, 20, 10)

    third = engine.run_batch()
    assert (third.processed, third.complete, third.created) == (25, True, 5)
    assert third.status == "complete"

    checkpoint = checkpoint_store.load()
    assert checkpoint.created == 25
    assert record_store.count_by_status() == {"active": 25}

    again = engine.run_batch()
    assert again.complete and again.processed == 25
    assert again.message == "Import already complete"
    assert again.created == 0


def test_reimport_of_unchanged_corpus_skips_everything(build_engine, write_corpus, record_store, checkpoint_store) -> None:
    engine = build_engine(write_corpus([make_item(n) for n in range(12)]))
    run_to_completion(engine)
    checkpoint_store.reset()

    results = run_to_completion(engine)

    assert sum(result.skipped for result in results) == 12
    assert sum(result.created + result.updated for result in results) == 0
    assert record_store.count_by_status() == {"active": 12}
    run_id = checkpoint_store.load().run_id
    found = record_store.lookup([f"job-{n:04d}" for n in range(12)])
    assert all(records[0].last_seen_run == run_id for records in found.values())


def test_changed_corpus_starts_new_run_and_updates(build_engine, write_corpus, record_store, checkpoint_store) -> None:
    items = [make_item(n) for n in range(5)]
    engine = build_engine(write_corpus(items))
    run_to_completion(engine)
    first_run = checkpoint_store.load().run_id

    items[2] = make_item(2, title="Renamed vacancy")
    write_corpus(items)
    result = engine.run_batch()

    assert checkpoint_store.load().run_id != first_run
    assert (result.updated, result.skipped, result.created) == (1, 4, 0)
    assert record_store.find_by_identifier("job-0002")[0].title == "Renamed vacancy"


def test_requested_start_is_aligned_and_never_rewinds(build_engine, write_corpus) -> None:
    engine = build_engine(write_corpus([make_item(n) for n in range(40)]))

    result = engine.run_batch(start=15)
    assert (result.start, result.processed) == (10, 20)

    rewind = engine.run_batch(start=0)
    assert (rewind.start, rewind.processed) == (20, 30)


def test_cancel_stops_until_resumed(build_engine, write_corpus, checkpoint_store) -> None:
    engine = build_engine(write_corpus([make_item(n) for n in range(30)]))
    engine.run_batch()

    checkpoint_store.request_cancel()
    cancelled = engine.run_batch()
    assert cancelled.status == "cancelled"
    assert cancelled.success
    assert cancelled.processed == 10
    assert engine.status()["status"] == "cancelled"

    checkpoint_store.clear_cancel()
    resumed = engine.run_batch()
    assert resumed.processed == 20


def test_malformed_rows_are_skipped_and_logged(build_engine, write_corpus, record_store) -> None:
    path = write_corpus(
        [
            make_item(0),
            "{broken json",
            json.dumps({"title": "no identifier"}),
            json.dumps({"identifier": "bad-shape", "languages": "not-a-list"}),
            make_item(4),
        ]
    )
    result = build_engine(path).run_batch()

    assert result.complete
    assert (result.created, result.skipped) == (2, 3)
    assert any("Malformed record at line 2" in line for line in result.logs)
    assert any("no identifier" in line for line in result.logs)
    assert record_store.count_by_status() == {"active": 2}


def test_exact_identifier_collision_demotes_loser(build_engine, write_corpus, record_store) -> None:
    fields = RecordFields(title="Position 0", company="Company 0", location="Gent", content="old")
    first = record_store.create("job-0000", fields, "hash-a", "seed")
    second = record_store.create("job-0000", fields, "hash-b", "seed")

    result = build_engine(write_corpus([make_item(0)])).run_batch()

    assert result.duplicates_drafted == 1
    assert result.updated == 1
    records = {record.id: record for record in record_store.find_by_identifier("job-0000")}
    demoted = [record for record in records.values() if record.status == "demoted"]
    assert len(demoted) == 1
    assert demoted[0].title.startswith("Position 0 [Duplicate - ")
    assert {first.id, second.id} == set(records)


def test_fuzzy_duplicate_updates_existing_record(build_engine, write_corpus, record_store, checkpoint_store) -> None:
    existing = record_store.create(
        "old-1",
        RecordFields(
            title="Senior Accountant",
            company="Acme BV",
            location="Gent",
            content="Senior accountant for our Gent office",
        ),
        "seed-hash",
        "seed",
    )
    incoming = make_item(
        1,
        identifier="new-1",
        title="Senior Acountant",
        company="Acme BV",
        location="Gent",
        description="Senior accountant for our Gent office",
        salary="€3500 - €5000",
    )
    engine = build_engine(write_corpus([incoming]))

    result = engine.run_batch()

    assert (result.created, result.updated, result.fuzzy_matched) == (0, 1, 1)
    assert record_store.count_by_status() == {"active": 1}
    stored = record_store.get(existing.id)
    assert stored.identifier == "old-1"
    assert stored.title == "Senior Accountant"
    assert stored.payload["salary"] == "€3500 - €5000"
    assert record_store.find_by_identifier("new-1")[0].matched_alias == "new-1"

    checkpoint_store.reset()
    again = engine.run_batch()
    assert (again.skipped, again.updated, again.fuzzy_matched) == (1, 0, 0)


def test_overwrite_policy_keeps_store_identifier(kv, record_store, checkpoint_store, retry_executor, fake_clock, write_corpus) -> None:
    existing = record_store.create(
        "old-1",
        RecordFields(title="Senior Accountant", company="Acme BV", location="Gent", content="Same text"),
        "seed-hash",
        "seed",
    )
    path = write_corpus(
        [make_item(1, identifier="new-1", title="Senior Accountant", company="Acme BV", location="Gent", description="Same text")]
    )
    engine = BatchImportEngine(
        corpus=Corpus(path, kv),
        store=record_store,
        checkpoints=checkpoint_store,
        retry=retry_executor,
        settings=ImportSettings(adaptive=False),
        dedup_config=DeduplicationConfig(fuzzy_policy="overwrite"),
        clock=fake_clock,
        memory_probe=lambda: 1024,
    )

    assert engine.run_batch().fuzzy_matched == 1
    stored = record_store.get(existing.id)
    assert stored.identifier == "old-1"
    assert stored.payload["identifier"] == "old-1"
    assert stored.payload["feed"] == "sample"


def test_budget_pause_still_makes_progress(build_engine, write_corpus, record_store) -> None:
    def memory_probe() -> int:
        written = sum(record_store.count_by_status().values())
        return 2 * 1024 * 1024 if written >= 3 else 0

    engine = build_engine(
        write_corpus([make_item(n) for n in range(10)]),
        memory_probe=memory_probe,
        memory_limit_mb=1,
    )

    first = engine.run_batch()
    assert first.status == "paused"
    assert first.success and not first.complete
    assert first.processed == 3

    second = engine.run_batch()
    assert (second.start, second.processed) == (3, 4)
    assert (second.created, second.skipped) == (1, 0)


def test_record_failure_is_counted_and_skipped(build_engine, write_corpus, record_store, monkeypatch) -> None:
    original = record_store.create

    def create(identifier, fields, content_hash, run_id):
        if identifier == "job-0001":
            raise ValueError("rejected by store")
        return original(identifier, fields, content_hash, run_id)

    monkeypatch.setattr(record_store, "create", create)
    result = build_engine(write_corpus([make_item(n) for n in range(3)])).run_batch()

    assert result.success and result.complete
    assert (result.created, result.failed) == (2, 1)
    assert any("job-0001 failed" in line for line in result.logs)


def test_open_circuit_stops_the_batch(build_engine, write_corpus, record_store, fake_clock, monkeypatch) -> None:
    def create(*args, **kwargs):
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr(record_store, "create", create)
    retry = RetryExecutor(CircuitBreakerRegistry(threshold=1, clock=fake_clock), sleep=fake_clock.sleep)
    result = build_engine(write_corpus([make_item(n) for n in range(5)]), retry=retry).run_batch()

    assert not result.success
    assert result.message.startswith("Batch failed: Circuit breaker open")
    assert result.processed == 1
    assert result.failed == 1


def test_unchanged_records_stay_unseen_when_touch_hits_open_circuit(
    build_engine, write_corpus, record_store, checkpoint_store, retry_executor, fake_clock, kv, monkeypatch
) -> None:
    purger = Purger(kv, record_store, checkpoint_store, retry_executor, LockSettings(acquire_timeout_seconds=0))
    items = [make_item(n) for n in range(10)]
    engine = build_engine(write_corpus(items))
    run_to_completion(engine)
    assert purger.finalize().success

    for n in range(5):
        items[n] = make_item(n, title=f"Renamed vacancy {n}")
    write_corpus(items)

    def update(*args, **kwargs):
        raise ValueError("rejected by store")

    monkeypatch.setattr(record_store, "update", update)
    result = engine.run_batch()

    # five failed updates open the store_write circuit before the first touch
    assert not result.success
    assert not result.complete
    assert (result.processed, result.failed, result.skipped) == (5, 5, 0)
    assert checkpoint_store.load().cursor == 5
    assert purger.finalize().success is False

    monkeypatch.undo()
    fake_clock.advance(301)
    resumed = engine.run_batch()

    assert resumed.success and resumed.complete
    assert (resumed.start, resumed.skipped) == (5, 5)
    purger.finalize()
    for n in range(5, 10):
        assert record_store.find_by_identifier(f"job-{n:04d}")[0].status == "active"


def test_unexpected_failure_leaves_cursor_in_place(build_engine, write_corpus, record_store, monkeypatch) -> None:
    engine = build_engine(write_corpus([make_item(n) for n in range(20)]))
    engine.run_batch()

    def lookup(identifiers):
        raise ValueError("lookup exploded")

    monkeypatch.setattr(record_store, "lookup", lookup)
    result = engine.run_batch()

    assert not result.success
    assert result.processed == 10
    assert "lookup exploded" in result.message


def test_adaptive_sizing_reaches_completion(build_engine, write_corpus, record_store, checkpoint_store) -> None:
    engine = build_engine(
        write_corpus([make_item(n) for n in range(60)]),
        adaptive=True,
        batch_size=10,
        max_batch_size=25,
    )

    results = run_to_completion(engine)

    assert results[-1].complete
    assert [result.start for result in results] == [0] + [result.processed for result in results[:-1]]
    assert sum(result.created for result in results) == 60
    assert sum(result.skipped + result.updated for result in results) == 0
    assert checkpoint_store.load().created == 60
    assert all(1 <= result.batch_size <= 25 for result in results)
    assert [result.processed for result in results] == sorted(result.processed for result in results)
    assert record_store.count_by_status() == {"active": 60}


def test_adaptive_resume_does_not_recount_imported_rows(
    kv, record_store, checkpoint_store, retry_executor, fake_clock, write_corpus
) -> None:
    path = write_corpus([make_item(n) for n in range(25)])

    def build() -> BatchImportEngine:
        return BatchImportEngine(
            corpus=Corpus(path, kv),
            store=record_store,
            checkpoints=checkpoint_store,
            retry=retry_executor,
            settings=ImportSettings(batch_size=10),
            clock=fake_clock,
            memory_probe=lambda: 1024,
        )

    first = build().run_batch()
    assert (first.start, first.processed, first.created) == (0, 10, 10)

    second = build().run_batch()
    assert second.start == 10
    assert (second.processed, second.created, second.skipped) == (20, 10, 0)

    run_to_completion(build())
    checkpoint = checkpoint_store.load()
    assert checkpoint.complete
    assert (checkpoint.created, checkpoint.skipped) == (25, 0)
    assert checkpoint.created + checkpoint.updated + checkpoint.skipped + checkpoint.failed == checkpoint.processed
