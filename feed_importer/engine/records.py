"""Canonical in-memory shape of one normalized job listing."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, fields
from typing import Any


@dataclass(slots=True)
class NormalizedRecord:
    """One listing as staged in the corpus.

    Known fields are typed attributes; anything else a feed sends ends up in
    ``extra`` so that no information is lost between stages.
    """

    identifier: str
    title: str = ""
    enhanced_title: str = ""
    description: str = ""
    company: str = ""
    location: str = ""
    city: str = ""
    province: str = ""
    locale: str = "en"
    feed: str = ""
    published_at: str = ""
    function_group: str = ""
    slug: str = ""
    link: str = ""
    apply_link: str = ""
    salary: str = ""
    employment_type: str = ""
    summary: str = ""
    languages: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    benefits: dict[str, bool] = field(default_factory=dict)
    job_posting_schema: dict[str, Any] = field(default_factory=dict)
    product_schema: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.description

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True) + "\n"

    @classmethod
    def from_dict(cls, payload: Any) -> "NormalizedRecord":
        """Build a record from a decoded JSON line.

        Raises ``ValueError`` when the payload cannot be a record at all.
        """

        if not isinstance(payload, dict):
            raise ValueError(f"record must be an object, got {type(payload).__name__}")
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        extra = dict(payload.get("extra") or {})
        for key, value in payload.items():
            if key == "extra":
                continue
            if key not in known:
                extra[key] = value
                continue
            values[key] = _coerce(key, known[key].type, value)
        values["extra"] = extra
        values.setdefault("identifier", "")
        return cls(**values)

    def content_hash(self) -> str:
        canonical = json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _coerce(name: str, annotation: str, value: Any) -> Any:
    if annotation.startswith("list"):
        if value in (None, ""):
            return []
        if not isinstance(value, list):
            raise ValueError(f"{name} must be a list")
        return [str(item) for item in value]
    if annotation.startswith("dict"):
        if value in (None, ""):
            return {}
        if not isinstance(value, dict):
            raise ValueError(f"{name} must be an object")
        return dict(value)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ValueError(f"{name} must be a scalar")
    return str(value).strip() if name == "identifier" else str(value)


__all__ = ["NormalizedRecord"]
