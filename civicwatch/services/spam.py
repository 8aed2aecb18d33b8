# File: civicwatch/services/spam.py
"""Heuristic spam gate run before a report is persisted.

Advisory only: a positive verdict marks the issue ``is_spam`` for a moderator
to review, it never drops the report.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

from civicwatch.services.similarity import normalize_text

_REPEATED_UNIT = re.compile(r"^(.{1,3})\1{3,}$")


@dataclass(frozen=True)
class SpamRules:
    max_reports: int = 5
    window_minutes: int = 60
    min_description_length: int = 10
    repeat_ratio: float = 0.8
    repeat_min_length: int = 8


@dataclass(frozen=True)
class SpamVerdict:
    spam: bool
    reason: str | None = None


NOT_SPAM = SpamVerdict(spam=False)


def is_repeated_noise(text: str | None, rules: SpamRules) -> bool:
    compact = re.sub(r"\s+", "", (text or "").lower())
    if len(compact) < 3:
        return False
    if len(set(compact)) == 1 or _REPEATED_UNIT.match(compact):
        return True
    if len(compact) >= rules.repeat_min_length:
        _, top = Counter(compact).most_common(1)[0]
        return top / len(compact) >= rules.repeat_ratio
    return False


def classify(candidate, recent_submissions: int, rules: SpamRules | None = None) -> SpamVerdict:
    """``recent_submissions`` counts the fingerprint's reports inside the window, excluding this one."""
    rules = rules or SpamRules()
    if recent_submissions >= rules.max_reports:
        return SpamVerdict(True, "rate_limited")
    description = normalize_text(candidate.description)
    if not description:
        return SpamVerdict(True, "empty_description")
    if len(description) < rules.min_description_length:
        return SpamVerdict(True, "description_too_short")
    if is_repeated_noise(candidate.title, rules) or is_repeated_noise(candidate.description, rules):
        return SpamVerdict(True, "repeated_characters")
    return NOT_SPAM
