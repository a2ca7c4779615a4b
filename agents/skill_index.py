"""Skill token normalisation and fuzzy containment matching.

Skills are compared by their case-folded, whitespace-collapsed token. Matching
is loose: one token matching inside the other counts, so
``"react.js"`` matches ``"react"``. When several candidates match, the longest
one wins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

SKILL_CATEGORIES = frozenset({"technical", "soft", "tool", "framework", "language", "concept"})


@dataclass(frozen=True)
class Skill:
    token: str
    category: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.category is not None and self.category not in SKILL_CATEGORIES:
            raise ValueError(f"unknown skill category: {self.category}")

    def __str__(self) -> str:
        return self.token


def normalize_token(raw: object) -> str:
    """Case-fold, trim and collapse inner whitespace."""

    if isinstance(raw, Skill):
        return raw.token
    if raw is None:
        return ""
    return " ".join(str(raw).split()).casefold()


def normalize(raw: object, category: Optional[str] = None) -> Skill:
    if isinstance(raw, Skill) and category is None:
        return raw
    return Skill(normalize_token(raw), category)


def normalize_all(values: Iterable[object]) -> List[str]:
    """Normalise ``values`` keeping first-seen order; drops empties and duplicates."""

    seen: List[str] = []
    for value in values:
        token = normalize_token(value)
        if token and token not in seen:
            seen.append(token)
    return seen


def union(*collections: Iterable[object]) -> List[str]:
    merged: List[str] = []
    for collection in collections:
        for token in normalize_all(collection):
            if token not in merged:
                merged.append(token)
    return merged


def fuzzy_match(left: object, right: object) -> bool:
    a = normalize_token(left)
    b = normalize_token(right)
    if not a or not b:
        return False
    return a in b or b in a


def best_match(collection: Iterable[object], token: object) -> Optional[str]:
    """Return the element of ``collection`` fuzzy-matching ``token``; longest wins."""

    best: Optional[str] = None
    for candidate in normalize_all(collection):
        if fuzzy_match(candidate, token) and (best is None or len(candidate) > len(best)):
            best = candidate
    return best


def has_fuzzy(collection: Iterable[object], token: object) -> bool:
    return best_match(collection, token) is not None


def matched(expected: Iterable[object], mentioned: Iterable[object]) -> List[str]:
    pool = normalize_all(mentioned)
    return [item for item in normalize_all(expected) if has_fuzzy(pool, item)]


def missing(expected: Iterable[object], mentioned: Iterable[object]) -> List[str]:
    pool = normalize_all(mentioned)
    return [item for item in normalize_all(expected) if not has_fuzzy(pool, item)]


__all__ = [
    "SKILL_CATEGORIES",
    "Skill",
    "best_match",
    "fuzzy_match",
    "has_fuzzy",
    "matched",
    "missing",
    "normalize",
    "normalize_all",
    "normalize_token",
    "union",
]
