"""Exception types shared across the importer."""

from __future__ import annotations


class FeedImporterError(Exception):
    """Base class for importer failures."""


class FetchError(FeedImporterError):
    """Raised when a feed document cannot be retrieved or is rejected."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class CorpusUnavailableError(FeedImporterError):
    """Raised when the combined corpus file cannot be opened."""


class CircuitOpenError(FeedImporterError):
    """Raised instead of calling an operation whose breaker is open."""

    def __init__(self, operation_key: str, remaining_seconds: float) -> None:
        super().__init__(
            f"Circuit breaker open for {operation_key!r} "
            f"({remaining_seconds:.0f}s remaining)"
        )
        self.operation_key = operation_key
        self.remaining_seconds = remaining_seconds


class LockTimeoutError(FeedImporterError):
    """Raised when an operation lock cannot be acquired in time."""


class StoreContractError(FeedImporterError, TypeError):
    """Raised when a store helper receives arguments of the wrong shape."""


class RecordStoreError(FeedImporterError):
    """Raised when the record store does not hold a row it just wrote."""


__all__ = [
    "CircuitOpenError",
    "CorpusUnavailableError",
    "FeedImporterError",
    "FetchError",
    "LockTimeoutError",
    "RecordStoreError",
    "StoreContractError",
]
