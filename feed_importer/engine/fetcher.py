"""Stream remote feed documents to disk."""

from __future__ import annotations

from pathlib import Path

import httpx
import structlog

from ..config import FetchSettings
from ..errors import FetchError


class FeedFetcher:
    """Download one feed at a time, never holding the whole body in memory."""

    def __init__(
        self,
        settings: FetchSettings | None = None,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings or FetchSettings()
        self.logger = logger or structlog.get_logger("feed_importer.fetcher")
        self._owns_client = client is None
        self._client = client or httpx.Client(
            follow_redirects=True,
            timeout=self.settings.timeout_seconds,
            headers={"User-Agent": self.settings.user_agent},
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self, url: str, destination: Path) -> int:
        """Write the body of ``url`` to ``destination`` and return the byte count.

        The previous file is only replaced once the new body passed validation.
        """

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".part")
        written = 0
        try:
            with self._client.stream(
                "GET",
                url,
                follow_redirects=True,
                timeout=self.settings.timeout_seconds,
            ) as response:
                if response.is_error:
                    raise FetchError(url, f"HTTP {response.status_code}")
                with partial.open("wb") as handle:
                    for chunk in response.iter_bytes(self.settings.chunk_size):
                        handle.write(chunk)
                        written += len(chunk)
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            self.logger.warning("fetch_failed", url=url, error=str(exc))
            raise FetchError(url, str(exc)) from exc
        except FetchError as exc:
            partial.unlink(missing_ok=True)
            self.logger.warning("fetch_rejected", url=url, reason=exc.reason)
            raise

        if written < self.settings.min_bytes:
            partial.unlink(missing_ok=True)
            self.logger.warning("fetch_too_small", url=url, size=written, minimum=self.settings.min_bytes)
            raise FetchError(url, f"body too small ({written} bytes)")

        partial.replace(destination)
        self.logger.info("fetch_completed", url=url, size=written, path=str(destination))
        return written


__all__ = ["FeedFetcher"]
