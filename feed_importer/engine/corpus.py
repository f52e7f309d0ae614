"""Combined corpus: build, count and windowed reads."""

from __future__ import annotations

import gzip
import json
import os
import shutil
from pathlib import Path
from typing import Any, Iterable

import structlog

from ..errors import CorpusUnavailableError
from ..infra.kv import KeyValueStore

INDEX_STRIDE = 100


def _fingerprint(path: Path) -> list[int]:
    stat = path.stat()
    return [stat.st_size, stat.st_mtime_ns, stat.st_ino]


def _index_key(path: Path) -> str:
    return f"corpus_index:{path.name}"


def _scan(handle, stride: int) -> tuple[int, list[int]]:
    """Count non-blank lines and collect the byte offset of every ``stride``-th one."""

    count = 0
    offsets: list[int] = []
    position = handle.tell()
    for line in handle:
        if line.strip():
            if count % stride == 0:
                offsets.append(position)
            count += 1
        position += len(line)
    return count, offsets


class Corpus:
    """Read access to the combined JSON-lines corpus.

    The item count and a sparse offset index are cached in the key-value
    store together with the file fingerprint (size, mtime, inode); a rebuilt
    corpus never reuses a stale count.
    """

    def __init__(
        self,
        path: Path,
        kv: KeyValueStore,
        stride: int = INDEX_STRIDE,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.path = path
        self.kv = kv
        self.stride = stride
        self.logger = logger or structlog.get_logger("feed_importer.corpus")

    def _stat(self) -> list[int]:
        try:
            return _fingerprint(self.path)
        except OSError as exc:
            raise CorpusUnavailableError(f"Corpus not available: {self.path}") from exc

    def _index(self) -> dict[str, Any]:
        fingerprint = self._stat()
        cached = self.kv.get(_index_key(self.path))
        if cached and cached.get("fingerprint") == fingerprint and cached.get("stride") == self.stride:
            return cached
        return self.rebuild_index()

    def rebuild_index(self) -> dict[str, Any]:
        try:
            with self.path.open("rb") as handle:
                count, offsets = _scan(handle, self.stride)
        except OSError as exc:
            raise CorpusUnavailableError(f"Corpus not available: {self.path}") from exc
        index = {
            "fingerprint": self._stat(),
            "count": count,
            "stride": self.stride,
            "offsets": offsets,
        }
        self.kv.set(_index_key(self.path), index)
        self.logger.info("corpus_indexed", path=str(self.path), count=count)
        return index

    def count(self) -> int:
        return int(self._index()["count"])

    def version(self) -> str:
        return ":".join(str(part) for part in self._index()["fingerprint"])

    def read_window(self, start: int, end: int) -> list[tuple[int, dict | None]]:
        """Return ``(position, decoded line)`` for ``start <= position < end``.

        Lines that are not valid JSON come back as ``None`` so callers can log
        and skip them without losing their position.
        """

        index = self._index()
        end = min(end, index["count"])
        if start >= end:
            return []
        block = start // index["stride"]
        position = block * index["stride"]
        rows: list[tuple[int, dict | None]] = []
        try:
            with self.path.open("rb") as handle:
                handle.seek(index["offsets"][block])
                for line in handle:
                    if not line.strip():
                        continue
                    if position >= start:
                        rows.append((position, self._decode(line)))
                    position += 1
                    if position >= end:
                        break
        except OSError as exc:
            raise CorpusUnavailableError(f"Corpus not available: {self.path}") from exc
        return rows

    @staticmethod
    def _decode(line: bytes) -> dict | None:
        try:
            value = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        return value if isinstance(value, dict) else None


class CorpusCombiner:
    """Concatenate per-feed staging files into the combined corpus."""

    def __init__(
        self,
        kv: KeyValueStore,
        stride: int = INDEX_STRIDE,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.kv = kv
        self.stride = stride
        self.logger = logger or structlog.get_logger("feed_importer.corpus")

    def combine(self, feed_paths: Iterable[Path], output_path: Path) -> int:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial = output_path.with_name(output_path.name + ".part")
        count = 0
        offsets: list[int] = []
        position = 0
        with partial.open("wb") as out:
            for feed_path in feed_paths:
                if not feed_path.exists():
                    self.logger.warning("staged_feed_missing", path=str(feed_path))
                    continue
                with feed_path.open("rb") as source:
                    for line in source:
                        if not line.strip():
                            continue
                        if not line.endswith(b"\n"):
                            line += b"\n"
                        if count % self.stride == 0:
                            offsets.append(position)
                        out.write(line)
                        position += len(line)
                        count += 1
        os.replace(partial, output_path)

        gzip_path = output_path.with_name(output_path.name + ".gz")
        with output_path.open("rb") as source, gzip.open(gzip_path, "wb") as target:
            shutil.copyfileobj(source, target)

        self.kv.set(
            _index_key(output_path),
            {
                "fingerprint": _fingerprint(output_path),
                "count": count,
                "stride": self.stride,
                "offsets": offsets,
            },
        )
        self.logger.info("corpus_combined", path=str(output_path), count=count)
        return count


__all__ = ["Corpus", "CorpusCombiner", "INDEX_STRIDE"]
