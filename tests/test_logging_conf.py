from __future__ import annotations

import logging
from pathlib import Path

import structlog

from feed_importer.config import LoggingSettings
from feed_importer.logging_conf import (
    _dict_config,
    available_feed_logs,
    feed_logger,
    import_context,
    log_dir,
    tail_log,
)


def test_log_dir_follows_importer_home(importer_home: Path) -> None:
    assert log_dir() == importer_home.resolve() / "logs"


def test_dict_config_rotates_files_and_can_drop_console(tmp_path: Path) -> None:
    settings = LoggingSettings(max_bytes=2048, backup_count=2, console=False)
    config = _dict_config(tmp_path, "WARNING", settings)

    assert set(config["handlers"]) == {"importer_file", "error_file"}
    importer = config["handlers"]["importer_file"]
    assert importer["filename"] == str(tmp_path / "importer.log")
    assert (importer["maxBytes"], importer["backupCount"], importer["level"]) == (2048, 2, "WARNING")
    assert config["handlers"]["error_file"]["level"] == "ERROR"
    assert config["loggers"]["feed_importer"]["handlers"] == ["error_file", "importer_file"]


def test_dict_config_keeps_console_by_default(tmp_path: Path) -> None:
    config = _dict_config(tmp_path, "INFO", LoggingSettings())
    assert "console" in config["loggers"]["feed_importer"]["handlers"]


def test_feed_logger_writes_its_own_file(importer_home: Path) -> None:
    logger = feed_logger("vdab")
    logger.info("feed_staged", items=3)

    path = importer_home / "logs" / "feeds" / "vdab.log"
    assert "feed_staged" in path.read_text(encoding="utf-8")
    assert path in list(available_feed_logs())
    # a second call must not stack another handler on the same file
    feed_logger("vdab")
    handlers = logging.getLogger("feed_importer.feed.vdab").handlers
    assert [getattr(handler, "baseFilename", None) for handler in handlers].count(str(path)) == 1


def test_import_context_binds_and_unbinds() -> None:
    with import_context(run_name="job_import"):
        assert structlog.contextvars.get_contextvars()["run_name"] == "job_import"
    assert "run_name" not in structlog.contextvars.get_contextvars()


def test_tail_log(tmp_path: Path) -> None:
    path = tmp_path / "importer.log"
    path.write_text("".join(f"line {n}\n" for n in range(10)), encoding="utf-8")

    assert tail_log(path, 3) == ["line 7\n", "line 8\n", "line 9\n"]
    assert tail_log(tmp_path / "missing.log") == []
