"""Orchestrator wiring fetch, normalize, combine, batch import and purge."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

import httpx

from .config import ConfigRepository, FeedConfig, GlobalConfig
from .engine import (
    BatchImportEngine,
    BatchResult,
    CheckpointStore,
    CircuitBreakerRegistry,
    Corpus,
    CorpusCombiner,
    FeedFetcher,
    PurgeResult,
    Purger,
    RetryExecutor,
    StreamingNormalizer,
)
from .engine.pacing import rss_bytes
from .errors import FetchError
from .infra import RecordStore, SQLiteKeyValueStore, SQLiteManager
from .logging_conf import configure_logging, feed_logger, import_context


@dataclass(slots=True)
class FeedSummary:
    key: str
    status: str
    bytes: int = 0
    items: int = 0
    error: str = ""


class Orchestrator:
    """Central coordinator for one importer home directory."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        storage: SQLiteManager,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        memory_probe: Callable[[], int] = rss_bytes,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.storage = storage
        self.http_client = http_client
        self.logger = configure_logging().bind(component="orchestrator")

        cfg = self.global_config
        db_path = config_repository.store_path()
        self.kv = SQLiteKeyValueStore(storage, db_path)
        self.store = RecordStore(storage, db_path)
        self.breakers = CircuitBreakerRegistry(
            threshold=cfg.retry.breaker_threshold,
            timeout_seconds=cfg.retry.breaker_timeout_seconds,
            clock=clock,
        )
        self.retry = RetryExecutor(self.breakers, sleep=sleep)
        self.checkpoints = CheckpointStore(self.kv, cfg.importing.run_name, self.retry)
        self.corpus_path = config_repository.locator.corpus_path(cfg.corpus_name)
        self.corpus = Corpus(self.corpus_path, self.kv)
        self.combiner = CorpusCombiner(self.kv)
        self.engine = BatchImportEngine(
            corpus=self.corpus,
            store=self.store,
            checkpoints=self.checkpoints,
            retry=self.retry,
            settings=cfg.importing,
            dedup_config=cfg.deduplication,
            clock=clock,
            memory_probe=memory_probe,
        )
        self.purger = Purger(self.kv, self.store, self.checkpoints, self.retry, cfg.lock)

    # ------------------------------------------------------------------
    # Fetch → normalize → combine
    # ------------------------------------------------------------------
    def fetch_feed(self, feed: FeedConfig, fetcher: FeedFetcher) -> FeedSummary:
        locator = self.config_repository.locator
        log = feed_logger(feed.key)
        raw_path = locator.raw_feed_path(feed.key)
        try:
            size = fetcher.fetch(feed.url, raw_path)
        except FetchError as exc:
            log.error("feed_fetch_failed", url=feed.url, error=exc.reason)
            return FeedSummary(key=feed.key, status="failed", error=exc.reason)
        normalizer = StreamingNormalizer(self.global_config.normalize, logger=log)
        items = normalizer.normalize_file(raw_path, locator.staged_feed_path(feed.key), feed.key)
        log.info("feed_staged", size=size, items=items)
        return FeedSummary(key=feed.key, status="ok", bytes=size, items=items)

    def combine(self, feed_keys: list[str] | None = None) -> int:
        locator = self.config_repository.locator
        keys = feed_keys if feed_keys is not None else [feed.key for feed in self.global_config.enabled_feeds()]
        return self.combiner.combine([locator.staged_feed_path(key) for key in keys], self.corpus_path)

    def run_fetch_and_normalize(self) -> dict[str, Any]:
        """Refresh every enabled feed, then rebuild the corpus.

        A feed that fails to download keeps its previous staging file, so its
        listings stay in the corpus until the feed is removed or disabled.
        """

        self.global_config = self.config_repository.load_global_config()
        fetcher = FeedFetcher(self.global_config.fetch, client=self.http_client)
        summaries: list[FeedSummary] = []
        try:
            for feed in self.global_config.enabled_feeds():
                summaries.append(self.fetch_feed(feed, fetcher))
        finally:
            fetcher.close()
        total = self.combine()
        self.logger.info(
            "feeds_refreshed",
            feeds=len(summaries),
            failed=sum(1 for summary in summaries if summary.status != "ok"),
            total=total,
        )
        return {"feeds": [asdict(summary) for summary in summaries], "total": total}

    # ------------------------------------------------------------------
    # Import control
    # ------------------------------------------------------------------
    def run_batch(self, start: int | None = None) -> BatchResult:
        with import_context(run_name=self.checkpoints.run_name):
            return self.engine.run_batch(start)

    def run_until_complete(self, max_invocations: int = 10_000) -> BatchResult:
        with import_context(run_name=self.checkpoints.run_name):
            result = self.engine.run_batch()
            invocations = 1
            while (
                result.success
                and not result.complete
                and result.status != "cancelled"
                and invocations < max_invocations
            ):
                result = self.engine.run_batch()
                invocations += 1
        return result

    def status(self) -> dict[str, Any]:
        payload = self.engine.status()
        payload["cancel_requested"] = self.checkpoints.is_cancelled()
        payload["breakers"] = self.breakers.status()
        return payload

    def cancel(self) -> None:
        self.checkpoints.request_cancel()
        self.logger.info("import_cancel_requested")

    def resume(self) -> None:
        self.checkpoints.clear_cancel()
        self.logger.info("import_resumed")

    def reset(self) -> None:
        self.checkpoints.reset()
        self.logger.info("import_reset")

    def finalize(self) -> PurgeResult:
        return self.purger.finalize()

    def close(self) -> None:
        self.storage.close_all()


__all__ = ["FeedSummary", "Orchestrator"]
