# File: civicwatch/services/similarity.py
"""Text similarity between issue reports.

Two reports about the same defect rarely share exact wording ("Pothole on Main
St" vs "pothole on main street"), so the score blends two views of the text:

1. word-token Jaccard over the normalized title + description, and
2. character-trigram Jaccard, with each word padded the way PostgreSQL's
   ``pg_trgm`` pads it, which tolerates abbreviations and typos.

The mean of the two is the text score. A fixed bonus is added when both
reports carry the same category, capped at 1.0.

Pool members and candidates are duck-typed: anything with ``title``,
``description`` and ``category`` attributes works; pool members also need
``id``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class MatchParams:
    radius_meters: float = 150.0
    threshold: float = 0.6
    category_bonus: float = 0.15


@dataclass(frozen=True)
class SimilarityMatch:
    issue_id: int
    score: float
    title: str = ""


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(text: str | None) -> set[str]:
    return set(normalize_text(text).split())


def trigrams(text: str | None) -> set[str]:
    grams: set[str] = set()
    for word in normalize_text(text).split():
        padded = f"  {word} "
        grams.update(padded[i:i + 3] for i in range(len(padded) - 2))
    return grams


def jaccard(a: set, b: set) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def text_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two free texts in [0, 1]."""
    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    tokens = jaccard(set(norm_a.split()), set(norm_b.split()))
    grams = jaccard(trigrams(norm_a), trigrams(norm_b))
    return (tokens + grams) / 2


def _report_text(report) -> str:
    return f"{report.title or ''} {report.description or ''}"


def similarity(candidate, other, category_bonus: float = 0.15) -> float:
    base = text_similarity(_report_text(candidate), _report_text(other))
    # empty text never matches, bonus or not
    if base == 0.0:
        return 0.0
    if candidate.category and candidate.category == other.category:
        base += category_bonus
    return round(min(base, 1.0), 4)


def score_pool(candidate, pool: Iterable, category_bonus: float = 0.15) -> Iterator[SimilarityMatch]:
    """Lazily score every pool member, oldest (lowest id) first."""
    for issue in sorted(pool, key=lambda i: i.id):
        yield SimilarityMatch(
            issue_id=issue.id,
            score=similarity(candidate, issue, category_bonus),
            title=issue.title,
        )


def rank_similar(candidate, pool: Iterable, category_bonus: float = 0.15,
                 threshold: float = 0.0) -> list[SimilarityMatch]:
    """Matches at or above ``threshold``, best first; ties go to the lower id."""
    matches = [m for m in score_pool(candidate, pool, category_bonus) if m.score > 0 and m.score >= threshold]
    matches.sort(key=lambda m: (-m.score, m.issue_id))
    return matches


@dataclass(frozen=True)
class _Query:
    title: str
    description: str
    category: str


def find_similar_issues(input_title: str, input_description: str, input_category: str,
                        pool: Iterable, similarity_threshold: float = 0.3,
                        category_bonus: float = 0.15) -> list[SimilarityMatch]:
    query = _Query(input_title, input_description, input_category)
    return rank_similar(query, pool, category_bonus, similarity_threshold)
