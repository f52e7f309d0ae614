"""Configuration loading helpers for the feed importer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from .models import FeedConfig, GlobalConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as handle:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, handle, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, handle, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    feeds_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("FEED_IMPORTER_HOME")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.feeds_dir = (self.data_dir / "feeds").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.feeds_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME

    def raw_feed_path(self, feed_key: str) -> Path:
        return self.feeds_dir / f"{_slugify(feed_key)}.xml"

    def staged_feed_path(self, feed_key: str) -> Path:
        return self.feeds_dir / f"{_slugify(feed_key)}.jsonl"

    def corpus_path(self, name: str) -> Path:
        return self.feeds_dir / name


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            payload = _read_file(path)
            global_cfg = GlobalConfig.model_validate(payload)
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        self._global_cache = global_cfg
        return global_cfg

    def save_global_config(self, config: GlobalConfig) -> None:
        path = self.locator.global_config_path()
        payload = config.model_dump(mode="json")
        _write_file(path, payload)
        self._global_cache = config

    def reload(self) -> GlobalConfig:
        self._global_cache = None
        return self.load_global_config()

    # ------------------------------------------------------------------
    # Feed helpers
    # ------------------------------------------------------------------
    def list_feeds(self) -> list[FeedConfig]:
        return list(self.load_global_config().feeds)

    def add_feed(self, feed: FeedConfig) -> GlobalConfig:
        current = self.load_global_config()
        feeds = [existing for existing in current.feeds if existing.key != feed.key]
        feeds.append(feed)
        updated = current.model_copy(update={"feeds": feeds})
        self.save_global_config(updated)
        return updated

    def remove_feed(self, key: str) -> bool:
        current = self.load_global_config()
        feeds = [existing for existing in current.feeds if existing.key != key]
        if len(feeds) == len(current.feeds):
            return False
        self.save_global_config(current.model_copy(update={"feeds": feeds}))
        return True

    def store_path(self) -> Path:
        return self.load_global_config().resolved_store_path(self.locator.project_root)


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS"]
