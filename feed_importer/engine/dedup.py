"""Exact and fuzzy duplicate detection for job records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence

from rapidfuzz.distance import Levenshtein

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should",
        "may", "might", "must", "can", "shall",
    }
)
WEIGHTS = {"title": 0.4, "company": 0.3, "location": 0.2, "content": 0.1}
SHORT_TEXT_LIMIT = 100

REASON_THRESHOLDS = (
    ("title", 0.85, "Similar title"),
    ("company", 0.85, "Same company"),
    ("location", 0.70, "Similar location"),
)
REASON_IDENTICAL = "Identical content"
REASON_OLDER = "Older version kept"

_PREFIX = re.compile(r"^(?:job|position|vacancy|opening)\s*:\s*", re.IGNORECASE)
_SUFFIX = re.compile(r"\s+(?:job|position|vacancy|opening)$", re.IGNORECASE)
_TOKEN = re.compile(r"\w+", re.UNICODE)


class Comparable(Protocol):
    title: str
    company: str
    location: str
    content: str


class ExistingRecord(Comparable, Protocol):
    id: int
    content_hash: str
    modified_at: str


def normalize_text(text: str) -> str:
    text = " ".join((text or "").lower().split())
    text = _PREFIX.sub("", text)
    return _SUFFIX.sub("", text).strip()


def tokenize(text: str) -> set[str]:
    return {
        token
        for token in _TOKEN.findall((text or "").lower())
        if len(token) > 2 and token not in STOP_WORDS
    }


def jaccard_similarity(left: str, right: str) -> float:
    left_tokens, right_tokens = tokenize(left), tokenize(right)
    union = left_tokens | right_tokens
    if not union:
        return 0.0
    return len(left_tokens & right_tokens) / len(union)


def text_similarity(left: str, right: str) -> float:
    """Similarity in ``[0, 1]``: Levenshtein ratio for short strings, token Jaccard otherwise."""

    left, right = normalize_text(left), normalize_text(right)
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if len(left) < SHORT_TEXT_LIMIT and len(right) < SHORT_TEXT_LIMIT:
        distance = Levenshtein.distance(left, right)
        return 1.0 - distance / max(len(left), len(right))
    return jaccard_similarity(left, right)


def _weighted(scores: dict[str, float]) -> float | None:
    """Weighted mean of component scores, renormalised over the components present."""

    total_weight = sum(WEIGHTS[name] for name in scores)
    if total_weight == 0:
        return None
    return sum(WEIGHTS[name] * score for name, score in scores.items()) / total_weight


@dataclass(slots=True)
class DuplicateMatch:
    store_id: int
    similarity: float
    reasons: list[str] = field(default_factory=list)
    strategy: str = "fuzzy"


@dataclass(slots=True)
class ExactResolution:
    keep: ExistingRecord
    demoted: list[tuple[ExistingRecord, str]] = field(default_factory=list)


class DeduplicationEngine:
    """Weighted similarity over title, company, location and content."""

    def __init__(
        self,
        threshold: float = 0.85,
        max_candidates: int = 10,
        enable_fuzzy: bool = True,
    ) -> None:
        self.threshold = threshold
        self.max_candidates = max_candidates
        self.enable_fuzzy = enable_fuzzy

    def component_scores(self, candidate: Comparable, existing: Comparable) -> dict[str, float]:
        """Per-component similarity; components empty on both sides are left out."""

        scores: dict[str, float] = {}
        for name in WEIGHTS:
            left = getattr(candidate, name, "") or ""
            right = getattr(existing, name, "") or ""
            if not left.strip() and not right.strip():
                continue
            scores[name] = text_similarity(left, right)
        return scores

    def composite_similarity(self, candidate: Comparable, existing: Comparable) -> float:
        return _weighted(self.component_scores(candidate, existing)) or 0.0

    def find_duplicates(
        self,
        candidate: Comparable,
        pool: Iterable[ExistingRecord],
    ) -> list[DuplicateMatch]:
        if not self.enable_fuzzy:
            return []
        matches: list[DuplicateMatch] = []
        for existing in pool:
            scores = self.component_scores(candidate, existing)
            similarity = _weighted(scores)
            if similarity is None or similarity < self.threshold:
                continue
            reasons = [
                reason
                for name, minimum, reason in REASON_THRESHOLDS
                if scores.get(name, 0.0) >= minimum
            ]
            matches.append(
                DuplicateMatch(
                    store_id=existing.id,
                    similarity=round(similarity, 4),
                    reasons=reasons,
                    strategy="fuzzy_title" if "Similar title" in reasons else "fuzzy",
                )
            )
        matches.sort(key=lambda match: (-match.similarity, match.store_id))
        return matches[: self.max_candidates]

    def best_match(
        self,
        candidate: Comparable,
        pool: Iterable[ExistingRecord],
    ) -> DuplicateMatch | None:
        matches = self.find_duplicates(candidate, pool)
        return matches[0] if matches else None

    @staticmethod
    def resolve_exact(records: Sequence[ExistingRecord]) -> ExactResolution:
        """Pick one survivor among records sharing an identifier.

        The most recently modified record wins, ties going to the lowest id, so
        the outcome does not depend on input order.
        """

        if not records:
            raise ValueError("resolve_exact needs at least one record")
        keep = sorted(records, key=lambda record: (record.modified_at, -record.id))[-1]
        demoted = []
        for record in sorted(records, key=lambda record: record.id):
            if record.id == keep.id:
                continue
            reason = REASON_IDENTICAL if record.content_hash == keep.content_hash else REASON_OLDER
            demoted.append((record, reason))
        return ExactResolution(keep=keep, demoted=demoted)


__all__ = [
    "DeduplicationEngine",
    "DuplicateMatch",
    "ExactResolution",
    "REASON_IDENTICAL",
    "REASON_OLDER",
    "STOP_WORDS",
    "WEIGHTS",
    "jaccard_similarity",
    "normalize_text",
    "text_similarity",
    "tokenize",
]
