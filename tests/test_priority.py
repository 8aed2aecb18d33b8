"""Priority scorer tests."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from civicwatch.services.priority import ScoreWeights, age_factor, category_weight, score

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
WEIGHTS = ScoreWeights(category_weights={"Water Leak": 5.0, "Pothole": 4.0, "Graffiti": 1.0})


@dataclass
class Issue:
    category: str = "Water Leak"
    upvotes_count: int = 0
    created_at: datetime = NOW


class TestComponents:
    def test_category_weight_falls_back_to_default(self):
        assert category_weight("Water Leak", WEIGHTS) == 5.0
        assert category_weight("Unknown thing", WEIGHTS) == 1.0
        assert category_weight(None, WEIGHTS) == 1.0

    def test_age_factor_ramps_then_caps(self):
        assert age_factor(timedelta(0), 30) == 0.0
        assert age_factor(timedelta(days=15), 30) == pytest.approx(0.5)
        assert age_factor(timedelta(days=90), 30) == 1.0
        assert age_factor(timedelta(days=-1), 30) == 0.0


class TestScore:
    def test_fresh_issue_scores_category_baseline(self):
        assert score(Issue(), NOW, 0, WEIGHTS) == pytest.approx(5.0)

    def test_all_components(self):
        issue = Issue(category="Pothole", upvotes_count=3, created_at=NOW - timedelta(days=15))
        expected = 2.0 * math.log(4) + 4.0 + 2.0 * 0.5 + 1.5 * 2
        assert score(issue, NOW, 2, WEIGHTS) == pytest.approx(expected, abs=1e-4)

    def test_monotonic_in_upvotes_and_duplicates(self):
        scores = [score(Issue(upvotes_count=n), NOW, 0, WEIGHTS) for n in range(6)]
        assert scores == sorted(scores)
        assert score(Issue(), NOW, 2, WEIGHTS) > score(Issue(), NOW, 1, WEIGHTS)

    def test_age_contribution_capped(self):
        old = score(Issue(created_at=NOW - timedelta(days=30)), NOW, 0, WEIGHTS)
        older = score(Issue(created_at=NOW - timedelta(days=300)), NOW, 0, WEIGHTS)
        assert old == older == pytest.approx(7.0)

    def test_naive_created_at_is_treated_as_utc(self):
        issue = Issue(created_at=(NOW - timedelta(days=3)).replace(tzinfo=None))
        assert score(issue, NOW, 0, WEIGHTS) == pytest.approx(5.0 + 2.0 * 0.1)
