"""Pydantic models used across the feed importer configuration."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_FEED_KEY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class ScheduleType(str, Enum):
    """Trigger modes understood by the scheduler adapter."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """When the full fetch → import cycle should start."""

    type: ScheduleType = Field(default=ScheduleType.ONCE)
    value: Any = Field(
        default=None,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )
    continuation_delay_seconds: float = 5.0
    max_failed_attempts: int = 3

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        if self.continuation_delay_seconds < 0:
            raise ValueError("continuation_delay_seconds must be >= 0")
        if self.max_failed_attempts < 0:
            raise ValueError("max_failed_attempts must be >= 0")
        return self


class FeedConfig(BaseModel):
    """One remote XML feed."""

    key: str
    url: str
    enabled: bool = True

    @field_validator("key")
    @classmethod
    def _validate_key(cls, value: str) -> str:
        value = value.strip().lower()
        if not _FEED_KEY_PATTERN.match(value):
            raise ValueError(f"Feed key must be a lowercase slug: {value!r}")
        return value

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("Feed url must be http(s)")
        return value


class FetchSettings(BaseModel):
    timeout_seconds: float = 300.0
    min_bytes: int = 1000
    chunk_size: int = 64 * 1024
    user_agent: str = "feed-importer/0.1 (+https://github.com/feed-importer)"

    @field_validator("timeout_seconds", "min_bytes", "chunk_size")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("value must be > 0")
        return value


class NormalizeSettings(BaseModel):
    """Streaming parse, cleaning and enrichment options."""

    item_tag: str = "item"
    write_batch_size: int = 100
    progress_every: int = 500
    default_locale: str = "en"
    fallback_domain: str = "belgiumjobs.work"
    utm_source: str = "feed-importer"

    @field_validator("write_batch_size", "progress_every")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value


class ImportSettings(BaseModel):
    """Batch sizing and per-invocation budget."""

    batch_size: int = 10
    min_batch_size: int = 1
    max_batch_size: int = 50
    adaptive: bool = True
    time_budget_seconds: float = 20.0
    memory_limit_mb: int = 512
    memory_pause_ratio: float = 0.9
    log_limit: int = 200
    run_name: str = "job_import"

    @model_validator(mode="after")
    def _validate_bounds(self) -> "ImportSettings":
        if self.min_batch_size < 1:
            raise ValueError("min_batch_size must be >= 1")
        if self.min_batch_size > self.max_batch_size:
            raise ValueError("min_batch_size must be <= max_batch_size")
        if not self.min_batch_size <= self.batch_size <= self.max_batch_size:
            raise ValueError("batch_size must lie between min_batch_size and max_batch_size")
        if self.time_budget_seconds <= 0:
            raise ValueError("time_budget_seconds must be > 0")
        if self.memory_limit_mb <= 0:
            raise ValueError("memory_limit_mb must be > 0")
        if not 0 < self.memory_pause_ratio <= 1:
            raise ValueError("memory_pause_ratio must be in (0, 1]")
        return self

    @property
    def memory_limit_bytes(self) -> int:
        return self.memory_limit_mb * 1024 * 1024


class DeduplicationConfig(BaseModel):
    """Fuzzy duplicate detection settings."""

    threshold: float = 0.85
    max_candidates: int = 10
    enable_fuzzy: bool = True
    fuzzy_policy: Literal["merge", "overwrite"] = "merge"
    pool_size: int = 50
    pool_days: int = 30

    @field_validator("threshold")
    @classmethod
    def _validate_threshold(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("threshold must be in (0, 1]")
        return value


class RetrySettings(BaseModel):
    breaker_threshold: int = 5
    breaker_timeout_seconds: float = 300.0


class LoggingSettings(BaseModel):
    """Level and rotation of the importer and per-feed log files."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3
    console: bool = True

    @field_validator("max_bytes", "backup_count")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must be >= 0")
        return value


class LockSettings(BaseModel):
    ttl_seconds: float = 30.0
    acquire_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.5


class GlobalConfig(BaseModel):
    """Top-level settings stored in ``data/global_config.yaml``."""

    feeds: list[FeedConfig] = Field(default_factory=list)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    normalize: NormalizeSettings = Field(default_factory=NormalizeSettings)
    importing: ImportSettings = Field(default_factory=ImportSettings)
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    lock: LockSettings = Field(default_factory=LockSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    store_path: Path = Field(default=Path("data/importer.db"))
    corpus_name: str = "combined-jobs.jsonl"

    @field_validator("store_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _unique_feeds(self) -> "GlobalConfig":
        keys = [feed.key for feed in self.feeds]
        duplicates = sorted({key for key in keys if keys.count(key) > 1})
        if duplicates:
            raise ValueError(f"Duplicate feed keys: {', '.join(duplicates)}")
        return self

    def enabled_feeds(self) -> list[FeedConfig]:
        return [feed for feed in self.feeds if feed.enabled]

    def resolved_store_path(self, base_dir: Path) -> Path:
        if not self.store_path.is_absolute():
            return (base_dir / self.store_path).resolve()
        return self.store_path


__all__ = [
    "DeduplicationConfig",
    "FeedConfig",
    "FetchSettings",
    "GlobalConfig",
    "ImportSettings",
    "LockSettings",
    "LoggingSettings",
    "NormalizeSettings",
    "RetrySettings",
    "ScheduleConfig",
    "ScheduleType",
]
