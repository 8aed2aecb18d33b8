# File: civicwatch/services/priority.py
"""Priority scoring.

    score = w_upvotes * ln(1 + upvotes)
          + w_category * category_weight(category)
          + w_age * min(age_days, cap) / cap
          + w_duplicates * duplicate_count

The score is always recomputed from the issue's current state, never patched
incrementally. Callers are responsible for not rescoring resolved issues.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from civicwatch.core.timeutil import as_utc


@dataclass(frozen=True)
class ScoreWeights:
    upvotes: float = 2.0
    category: float = 1.0
    age: float = 2.0
    duplicates: float = 1.5
    age_cap_days: float = 30.0
    category_weights: dict = field(default_factory=dict)
    default_category_weight: float = 1.0


def category_weight(category: str | None, weights: ScoreWeights) -> float:
    if not category:
        return weights.default_category_weight
    return float(weights.category_weights.get(category, weights.default_category_weight))


def age_factor(age: timedelta, cap_days: float) -> float:
    """Linear ramp from 0 at creation to 1 at ``cap_days``, flat afterwards."""
    if cap_days <= 0:
        return 0.0
    days = max(0.0, age.total_seconds() / 86400)
    return min(days, cap_days) / cap_days


def score(issue, now: datetime, duplicate_count: int = 0,
          weights: ScoreWeights | None = None) -> float:
    weights = weights or ScoreWeights()
    upvotes = max(0, issue.upvotes_count or 0)
    age = as_utc(now) - as_utc(issue.created_at)
    value = (
        weights.upvotes * math.log1p(upvotes)
        + weights.category * category_weight(issue.category, weights)
        + weights.age * age_factor(age, weights.age_cap_days)
        + weights.duplicates * max(0, duplicate_count)
    )
    return round(max(0.0, value), 4)
