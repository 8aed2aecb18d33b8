# File: civicwatch/services/duplicates.py
"""Decide whether an incoming report repeats an open issue nearby.

The geo filter runs first (one indexed query plus an exact haversine pass),
then the text matcher scores what is left. The pool only ever contains open,
non-spam, canonical issues, so a positive decision can always be linked
without creating a chain.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from civicwatch.core.errors import StoreError
from civicwatch.services.geo import bounding_box, within_radius
from civicwatch.services.similarity import MatchParams, SimilarityMatch, score_pool

logger = logging.getLogger(__name__)

PERFECT_MATCH = 1.0


@dataclass(frozen=True)
class DuplicateDecision:
    duplicate_of: Optional[int] = None
    similarity: float = 0.0
    error: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None


class DuplicateResolver:
    def __init__(self, store, params: MatchParams | None = None, timeout: float = 5.0) -> None:
        self.store = store
        self.params = params or MatchParams()
        self.timeout = timeout

    async def candidates(self, report) -> list:
        box = bounding_box(report.latitude, report.longitude, self.params.radius_meters)
        pool = await self.store.list_merge_candidates(box)
        return within_radius(report.latitude, report.longitude, pool, self.params.radius_meters)

    async def resolve(self, report) -> DuplicateDecision:
        try:
            nearby = await asyncio.wait_for(self.candidates(report), timeout=self.timeout)
        except (StoreError, asyncio.TimeoutError) as exc:
            # fail closed: the report goes in as unique and the caller hears why
            detail = getattr(exc, "detail", None) or "duplicate lookup timed out"
            logger.warning("Duplicate lookup failed, treating report as unique: %s", detail)
            return DuplicateDecision(error=detail)

        best: Optional[SimilarityMatch] = None
        for match in score_pool(report, nearby, self.params.category_bonus):
            # strictly greater keeps the oldest issue on ties
            if best is None or match.score > best.score:
                best = match
            if match.score >= PERFECT_MATCH:
                break

        if best is not None and best.score >= self.params.threshold:
            logger.info("Report matches issue #%s (similarity %.3f)", best.issue_id, best.score)
            return DuplicateDecision(duplicate_of=best.issue_id, similarity=best.score)
        return DuplicateDecision(similarity=best.score if best else 0.0)
