"""Similarity matching between structured items.

``items_match`` is symmetric and is the single notion of "same issue" or
"same step" used for dedup, the agreement matrix and critique tallies.
``signature`` gives a cheap bucketing key that is checked before the full
match.
"""

from __future__ import annotations

import re

from concord.models import Finding, Item, PlanStep

_NON_WORD = re.compile(r"[^\w\s]")

TITLE_THRESHOLD = 0.5
FILE_ASSISTED_THRESHOLD = 0.3


def normalize_title(title: str) -> str:
    return _NON_WORD.sub("", title.lower()).strip()


def significant_words(title: str) -> frozenset[str]:
    return frozenset(w for w in normalize_title(title).split() if len(w) > 3)


def title_similarity(a: str, b: str) -> float:
    """Jaccard similarity over words longer than three characters."""
    words_a = significant_words(a)
    words_b = significant_words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def file_path(file: str | None) -> str:
    """Path part of a ``path:line`` reference."""
    return (file or "").split(":")[0]


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def findings_match(a: Finding, b: Finding) -> bool:
    if a.severity != b.severity:
        return False
    title_a = normalize_title(a.title)
    title_b = normalize_title(b.title)
    if title_a == title_b:
        return True

    words_a = significant_words(a.title)
    words_b = significant_words(b.title)
    if not words_a or not words_b:
        return False
    similarity = len(words_a & words_b) / len(words_a | words_b)
    if similarity > TITLE_THRESHOLD:
        return True

    if a.file and b.file:
        same_file = basename(file_path(a.file)) == basename(file_path(b.file))
        if same_file and similarity > FILE_ASSISTED_THRESHOLD:
            return True
    return False


def steps_match(a: PlanStep, b: PlanStep) -> bool:
    if a.phase != b.phase:
        return False
    if normalize_title(a.title) == normalize_title(b.title):
        return True
    return title_similarity(a.title, b.title) > TITLE_THRESHOLD


def items_match(a: Item, b: Item) -> bool:
    if isinstance(a, Finding) and isinstance(b, Finding):
        return findings_match(a, b)
    if isinstance(a, PlanStep) and isinstance(b, PlanStep):
        return steps_match(a, b)
    return False


def signature(item: Item) -> str:
    """Stable dedup key: severity or phase, normalised title, file for findings."""
    if isinstance(item, Finding):
        return "|".join([item.severity, normalize_title(item.title), file_path(item.file).lower()])
    return "|".join([str(item.phase), normalize_title(item.title)])


def dedupe(items: list[Item]) -> list[Item]:
    """Keep the first of every group of matching items, in input order."""
    unique: list[Item] = []
    seen: set[str] = set()
    for item in items:
        sig = signature(item)
        if sig in seen:
            continue
        if any(items_match(item, existing) for existing in unique):
            continue
        seen.add(sig)
        unique.append(item)
    return unique


def title_prefix_match(a: str, b: str, length: int = 20) -> bool:
    """Loose reference match used to attach critique votes to items."""
    if not a.strip() or not b.strip():
        return False
    la = a.lower()
    lb = b.lower()
    return lb[:length] in la or la[:length] in lb
