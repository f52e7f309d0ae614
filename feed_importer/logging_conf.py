"""Logging setup: structlog events rendered through stdlib handlers as JSON lines.

``logs/importer.log`` carries every importer event, ``logs/error.log`` only
errors, and ``logs/feeds/<key>.log`` the fetch and normalize events of one
feed. File handlers rotate by size according to :class:`LoggingSettings`.
"""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Iterator

import structlog

from .config.models import LoggingSettings

ROOT_LOGGER = "feed_importer"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_LOGGING_INITIALISED = False
_SETTINGS = LoggingSettings()


def log_dir() -> Path:
    env_root = os.environ.get("FEED_IMPORTER_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _rotating(path: Path, level: str, settings: LoggingSettings) -> dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "filename": str(path),
        "maxBytes": settings.max_bytes,
        "backupCount": settings.backup_count,
        "formatter": "json",
        "encoding": "utf-8",
    }


def _dict_config(directory: Path, level: str, settings: LoggingSettings) -> dict[str, Any]:
    handlers = {
        "importer_file": _rotating(directory / "importer.log", level, settings),
        "error_file": _rotating(directory / "error.log", "ERROR", settings),
    }
    if settings.console:
        handlers["console"] = {"class": "logging.StreamHandler", "level": level, "formatter": "json"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT}},
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER: {"handlers": sorted(handlers), "level": level, "propagate": False},
        },
    }


def configure_logging(verbose: bool = False, settings: LoggingSettings | None = None) -> structlog.BoundLogger:
    """Configure logging once per process and return the importer logger.

    The first call wins; later calls (with or without settings) only hand back
    the logger, so components can call this freely.
    """

    global _LOGGING_INITIALISED, _SETTINGS
    if not _LOGGING_INITIALISED:
        _SETTINGS = settings or LoggingSettings()
        directory = log_dir()
        (directory / "feeds").mkdir(parents=True, exist_ok=True)
        level = "DEBUG" if verbose else _SETTINGS.level
        logging.config.dictConfig(_dict_config(directory, level, _SETTINGS))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(ROOT_LOGGER)


def feed_logger(feed_key: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger bound to one feed; events also land in ``logs/feeds/<key>.log``."""

    configure_logging(verbose)
    path = log_dir() / "feeds" / f"{feed_key}.log"
    path.parent.mkdir(parents=True, exist_ok=True)

    name = f"{ROOT_LOGGER}.feed.{feed_key}"
    py_logger = logging.getLogger(name)
    if not any(getattr(handler, "baseFilename", None) == str(path) for handler in py_logger.handlers):
        handler = RotatingFileHandler(
            path,
            maxBytes=_SETTINGS.max_bytes,
            backupCount=_SETTINGS.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(_json_formatter())
        handler.setLevel(logging.INFO)
        py_logger.addHandler(handler)

    return structlog.get_logger(name).bind(feed=feed_key)


def _json_formatter() -> logging.Formatter:
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        if handler.formatter is not None:
            return handler.formatter
    return logging.Formatter(JSON_FORMAT)


@contextmanager
def import_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` (run name, feed, ...) to every event logged inside the block."""

    with structlog.contextvars.bound_contextvars(**fields):
        yield


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last ``line_count`` lines without loading the whole file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_feed_logs() -> Iterable[Path]:
    feeds_dir = log_dir() / "feeds"
    if not feeds_dir.exists():
        return []
    return sorted(feeds_dir.glob("*.log"))


__all__ = [
    "available_feed_logs",
    "configure_logging",
    "feed_logger",
    "import_context",
    "log_dir",
    "tail_log",
]
