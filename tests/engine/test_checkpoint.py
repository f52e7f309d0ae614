from __future__ import annotations

from datetime import datetime, timezone

from feed_importer.engine.checkpoint import CheckpointStore, ImportCheckpoint, log_line
from feed_importer.infra import SQLiteKeyValueStore

STATUS_KEYS = {
    "total",
    "processed",
    "created",
    "published",
    "updated",
    "skipped",
    "duplicates_drafted",
    "complete",
    "time_elapsed",
    "batch_size",
    "logs",
}


def test_log_line_format() -> None:
    stamp = datetime(2026, 3, 5, 14, 7, 9, tzinfo=timezone.utc)
    assert log_line("Batch done", stamp) == "[05-Mar-2026 14:07:09 UTC] Batch done"


def test_add_logs_keeps_the_most_recent() -> None:
    checkpoint = ImportCheckpoint(run_id="r")
    checkpoint.add_logs([f"line {n}" for n in range(5)], limit=3)
    checkpoint.add_logs(["line 5"], limit=3)
    assert checkpoint.logs == ["line 3", "line 4", "line 5"]


def test_status_payload_uses_fixed_keys() -> None:
    checkpoint = ImportCheckpoint(run_id="r", cursor=30, total=25, created=4)
    status = checkpoint.as_status()

    assert STATUS_KEYS <= set(status)
    assert status["processed"] == 25
    assert status["published"] == 4


def test_round_trip_ignores_unknown_keys() -> None:
    checkpoint = ImportCheckpoint(run_id="r", cursor=10, total=20, logs=["a"])
    payload = checkpoint.to_dict() | {"legacy_field": 1}
    assert ImportCheckpoint.from_dict(payload) == checkpoint


def test_store_persists_and_loads(checkpoint_store: CheckpointStore) -> None:
    assert checkpoint_store.load() is None
    checkpoint = checkpoint_store.start_run(total=20, batch_size=10, corpus_version="v1")
    checkpoint.cursor = 10
    checkpoint_store.save(checkpoint)

    loaded = checkpoint_store.load()
    assert loaded is not None
    assert loaded.run_id == checkpoint.run_id
    assert loaded.cursor == 10
    assert loaded.corpus_version == "v1"


def test_cursor_never_moves_backwards_within_a_run(checkpoint_store: CheckpointStore) -> None:
    checkpoint = checkpoint_store.start_run(total=50, batch_size=10, corpus_version="v1")
    checkpoint.cursor = 30
    checkpoint_store.save(checkpoint)

    stale_copy = ImportCheckpoint.from_dict(checkpoint.to_dict())
    stale_copy.cursor = 10
    checkpoint_store.save(stale_copy)

    assert checkpoint_store.load().cursor == 30


def test_new_run_may_restart_from_zero(checkpoint_store: CheckpointStore) -> None:
    first = checkpoint_store.start_run(total=50, batch_size=10, corpus_version="v1")
    first.cursor = 40
    checkpoint_store.save(first)

    second = checkpoint_store.start_run(total=50, batch_size=10, corpus_version="v2")
    checkpoint_store.save(second)

    assert second.run_id != first.run_id
    assert checkpoint_store.load().cursor == 0


def test_cursor_is_clamped_to_total(checkpoint_store: CheckpointStore) -> None:
    checkpoint = checkpoint_store.start_run(total=5, batch_size=10, corpus_version="v1")
    checkpoint.cursor = 10
    checkpoint_store.save(checkpoint)
    assert checkpoint_store.load().cursor == 5


def test_cancel_flag_and_reset(checkpoint_store: CheckpointStore, kv: SQLiteKeyValueStore) -> None:
    checkpoint_store.save(checkpoint_store.start_run(total=5, batch_size=5, corpus_version="v1"))
    assert not checkpoint_store.is_cancelled()

    checkpoint_store.request_cancel()
    assert checkpoint_store.is_cancelled()

    checkpoint_store.reset()
    assert not checkpoint_store.is_cancelled()
    assert checkpoint_store.load() is None
    assert kv.get("import_checkpoint:test_run") is None
