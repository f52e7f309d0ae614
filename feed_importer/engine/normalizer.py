"""Streaming XML → JSON-lines normalizer."""

from __future__ import annotations

from pathlib import Path
from typing import IO

import structlog
from lxml import etree

from ..config import NormalizeSettings
from .cleaning import clean_fields
from .enrichment import Enricher


def _inner_xml(element: etree._Element) -> str:
    parts = [element.text or ""]
    for child in element:
        parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
    return "".join(parts)


def _release(element: etree._Element) -> None:
    element.clear(keep_tail=True)
    parent = element.getparent()
    if parent is None:
        return
    while element.getprevious() is not None:
        del parent[0]


class StreamingNormalizer:
    """Parse ``<item>`` elements one by one and stage each as a JSON line."""

    def __init__(
        self,
        settings: NormalizeSettings | None = None,
        enricher: Enricher | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.settings = settings or NormalizeSettings()
        self.enricher = enricher or Enricher(self.settings)
        self.logger = logger or structlog.get_logger("feed_importer.normalizer")

    def extract_fields(self, element: etree._Element) -> dict[str, str]:
        fields: dict[str, str] = {}
        for child in element:
            if not isinstance(child.tag, str):
                continue
            name = etree.QName(child).localname.lower()
            fields[name] = _inner_xml(child).strip()
        return fields

    def normalize(self, raw_path: Path, out_handle: IO[str], feed_key: str = "") -> int:
        """Append normalized records from ``raw_path`` to ``out_handle``; return how many.

        A parse error stops the feed but keeps everything staged before it.
        """

        count = 0
        seen = 0
        buffer: list[str] = []
        log = self.logger.bind(feed=feed_key, path=str(raw_path))

        def flush() -> None:
            if buffer:
                out_handle.write("".join(buffer))
                out_handle.flush()
                buffer.clear()

        try:
            context = etree.iterparse(
                str(raw_path),
                events=("end",),
                tag=f"{{*}}{self.settings.item_tag}",
                huge_tree=True,
            )
            for _event, element in context:
                seen += 1
                fields = self.extract_fields(element)
                _release(element)
                if not fields:
                    log.warning("item_without_fields", position=seen)
                    continue
                record = self.enricher.enrich(clean_fields(fields), feed_key)
                if not record.identifier:
                    log.warning("item_without_identifier", position=seen, title=record.title)
                    continue
                buffer.append(record.to_json_line())
                count += 1
                if len(buffer) >= self.settings.write_batch_size:
                    flush()
                if seen % self.settings.progress_every == 0:
                    log.info("normalize_progress", items=seen, staged=count)
        except (etree.XMLSyntaxError, OSError) as exc:
            flush()
            log.error("normalize_aborted", error=str(exc), staged=count)
            return count
        flush()
        log.info("normalize_completed", items=seen, staged=count)
        return count

    def normalize_file(self, raw_path: Path, staged_path: Path, feed_key: str = "") -> int:
        staged_path.parent.mkdir(parents=True, exist_ok=True)
        with staged_path.open("w", encoding="utf-8") as handle:
            return self.normalize(raw_path, handle, feed_key)


__all__ = ["StreamingNormalizer"]
