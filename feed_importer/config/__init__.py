"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    DeduplicationConfig,
    FeedConfig,
    FetchSettings,
    GlobalConfig,
    ImportSettings,
    LockSettings,
    LoggingSettings,
    NormalizeSettings,
    RetrySettings,
    ScheduleConfig,
    ScheduleType,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
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
