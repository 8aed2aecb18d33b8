# File: civicwatch/services/lifecycle.py
"""Issue lifecycle: submission, upvotes, moderation and the status machine.

Every mutation of one issue runs under that issue's lock, and every mutation
that can move the priority score recomputes it from scratch before the lock
is released. Resolved issues keep the score they had when they were resolved.

Known gap: two near-simultaneous reports of the same new problem can both
miss each other in the duplicate lookup and both become canonical. Moderators
merge those by hand with ``link_duplicate``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from civicwatch.core.errors import CivicError, ConflictError, ForbiddenError, NotFoundError, StoreError, ValidationError
from civicwatch.core.security import Caller
from civicwatch.core.timeutil import as_utc, utcnow
from civicwatch.models.issue import Issue, IssueStatus
from civicwatch.models.issue_activity import ActivityKind, IssueActivity
from civicwatch.repositories.issues import IssueFilter, IssueRepository
from civicwatch.schemas.issue import IssueCreate
from civicwatch.services import priority, spam
from civicwatch.services.duplicates import DuplicateDecision, DuplicateResolver
from civicwatch.services.locks import IssueLocks
from civicwatch.services.notifications import ChangeEvent, ChangeFeed, score_delta
from civicwatch.services.priority import ScoreWeights
from civicwatch.services.similarity import MatchParams, SimilarityMatch, find_similar_issues
from civicwatch.services.spam import SpamRules, SpamVerdict

logger = logging.getLogger(__name__)

TRANSITIONS: dict[IssueStatus, set[IssueStatus]] = {
    IssueStatus.new: {IssueStatus.in_progress, IssueStatus.resolved},
    IssueStatus.in_progress: {IssueStatus.new, IssueStatus.resolved},
    IssueStatus.resolved: {IssueStatus.in_progress},
}

SUGGESTION_THRESHOLD = 0.3


@dataclass
class SubmitOutcome:
    outcome: str
    issue: Issue
    duplicate_of: Optional[int] = None
    similarity: Optional[float] = None
    reason: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UpvoteResult:
    upvoted: bool
    new_count: int


@dataclass(frozen=True)
class _Query:
    title: str
    description: str
    category: str
    latitude: float
    longitude: float


class IssueLifecycleManager:
    def __init__(
        self,
        store: IssueRepository,
        feed: Optional[ChangeFeed] = None,
        *,
        match: Optional[MatchParams] = None,
        weights: Optional[ScoreWeights] = None,
        spam_rules: Optional[SpamRules] = None,
        locks: Optional[IssueLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.feed = feed if feed is not None else store.feed
        self.weights = weights or ScoreWeights()
        self.spam_rules = spam_rules or SpamRules()
        self.resolver = DuplicateResolver(store, match)
        self.locks = locks or IssueLocks()
        self._clock = clock

    # --- helpers ---

    @staticmethod
    def _require_admin(caller: Optional[Caller]) -> None:
        if caller is None or not caller.is_admin:
            raise ForbiddenError("Admin access required")

    @staticmethod
    def _validate(fields: IssueCreate | dict[str, Any]) -> IssueCreate:
        if isinstance(fields, IssueCreate):
            return fields
        try:
            return IssueCreate.model_validate(fields)
        except PydanticValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            raise ValidationError(problems) from exc

    async def _publish(self, event: ChangeEvent) -> None:
        if self.feed is not None:
            await self.feed.publish(event)

    async def _classify(self, report: IssueCreate, fingerprint: Optional[str], now: datetime,
                        warnings: list[str]) -> SpamVerdict:
        recent = 0
        if fingerprint:
            since = now - timedelta(minutes=self.spam_rules.window_minutes)
            try:
                recent = await self.store.recent_submission_count(fingerprint, since)
            except StoreError:
                logger.warning("Spam rate check unavailable; allowing report for review")
                warnings.append("spam_check_unavailable")
        return spam.classify(report, recent, self.spam_rules)

    async def _rescore_locked(self, issue_id: int, issue: Optional[Issue] = None) -> Issue:
        """Caller must hold the issue lock."""
        issue = issue or await self.store.get_issue(issue_id)
        if issue.status == IssueStatus.resolved:
            return issue
        duplicates = await self.store.count_duplicates(issue_id)
        new_score = priority.score(issue, self._clock(), duplicates, self.weights)
        if new_score != issue.priority_score:
            issue = await self.store.update_issue(issue_id, {"priority_score": new_score})
            await self._publish(score_delta(issue_id, new_score))
        return issue

    async def recompute(self, issue_id: int) -> Issue:
        async with self.locks.hold(issue_id):
            return await self._rescore_locked(issue_id)

    # --- citizen operations ---

    async def submit_report(self, fields: IssueCreate | dict[str, Any],
                            fingerprint: Optional[str] = None) -> SubmitOutcome:
        report = self._validate(fields)
        now = self._clock()
        warnings: list[str] = []
        activity: list[tuple[ActivityKind, Optional[str]]] = [(ActivityKind.created, None)]

        verdict = await self._classify(report, fingerprint, now, warnings)
        if "spam_check_unavailable" in warnings:
            activity.append((ActivityKind.review_requested, "spam check unavailable"))

        decision = DuplicateDecision()
        if not verdict.spam:
            decision = await self.resolver.resolve(report)
            if decision.error:
                warnings.append(f"duplicate_check_failed: {decision.error}")

        values: dict[str, Any] = report.model_dump()
        values.update(
            category=report.category.value,
            reporter_fingerprint=fingerprint,
            status=IssueStatus.new,
            is_spam=verdict.spam,
            duplicate_of=decision.duplicate_of,
            upvotes_count=0,
            created_at=now,
            updated_at=now,
        )
        values["priority_score"] = priority.score(Issue(**values), now, 0, self.weights)
        if verdict.spam:
            activity.append((ActivityKind.spam_flagged, verdict.reason))
        if decision.is_duplicate:
            activity.append((
                ActivityKind.duplicate_linked,
                f"duplicate of #{decision.duplicate_of} (similarity {decision.similarity:.2f})",
            ))

        # past this point the submission and its rescoring complete even if the caller goes away
        issue = await asyncio.shield(self._commit_submission(values, activity, warnings))

        if verdict.spam:
            logger.info("Report #%s flagged as spam: %s", issue.id, verdict.reason)
            return SubmitOutcome("rejected", issue, reason=verdict.reason, warnings=warnings)
        if issue.duplicate_of is not None:
            return SubmitOutcome("duplicate", issue, duplicate_of=issue.duplicate_of,
                                 similarity=decision.similarity, warnings=warnings)
        return SubmitOutcome("created", issue, similarity=decision.similarity or None, warnings=warnings)

    async def _commit_submission(self, values: dict[str, Any], activity: list, warnings: list[str]) -> Issue:
        """Persist the report, then rescore the issue it was linked to."""
        target = values.get("duplicate_of")
        if target is None:
            issue = await self.store.create_issue(values, activity)
        else:
            # the target's lock keeps it from becoming a duplicate itself mid-link
            async with self.locks.hold(target):
                issue = await self._persist(values, activity, warnings)
                if issue.duplicate_of is not None:
                    await self._rescore_locked(issue.duplicate_of)
        if issue.duplicate_of is None and not issue.is_spam:
            await self._publish(score_delta(issue.id, issue.priority_score))
        return issue

    async def _persist(self, values: dict[str, Any], activity: list, warnings: list[str]) -> Issue:
        try:
            return await self.store.create_issue(values, activity)
        except (ConflictError, NotFoundError) as exc:
            if values.get("duplicate_of") is None:
                raise
            # the target changed between lookup and write; keep the report as its own issue
            logger.warning("Duplicate target #%s no longer linkable: %s", values["duplicate_of"], exc.detail)
            warnings.append(f"duplicate_link_dropped: {exc.detail}")
            values = {**values, "duplicate_of": None}
            activity = [a for a in activity if a[0] != ActivityKind.duplicate_linked]
            return await self.store.create_issue(values, activity)

    async def toggle_upvote(self, issue_id: int, fingerprint: str) -> UpvoteResult:
        if not fingerprint or not fingerprint.strip():
            raise ValidationError("A submitter fingerprint is required to upvote")
        for attempt in (1, 2):
            try:
                async with self.locks.hold(issue_id):
                    count = await self.store.delete_upvote(issue_id, fingerprint)
                    upvoted = count is None
                    if upvoted:
                        count = await self.store.create_upvote(issue_id, fingerprint)
                    await self._rescore_locked(issue_id)
                return UpvoteResult(upvoted=upvoted, new_count=count)
            except ConflictError:
                if attempt == 2:
                    raise
                logger.info("Upvote toggle on #%s raced another request; retrying once", issue_id)
        raise AssertionError("unreachable")

    async def get_issue(self, issue_id: int) -> Issue:
        return await self.store.get_issue(issue_id)

    async def get_ranked_feed(self, flt: Optional[IssueFilter] = None) -> list[Issue]:
        flt = flt or IssueFilter()
        try:
            return await self.store.list_issues(flt)
        except StoreError:
            logger.info("Feed read failed; retrying once")
            return await self.store.list_issues(flt)

    async def find_similar(self, title: str, description: str, category: str,
                           latitude: float, longitude: float,
                           threshold: float = SUGGESTION_THRESHOLD) -> list[SimilarityMatch]:
        query = _Query(title, description, category, latitude, longitude)
        nearby = await self.resolver.candidates(query)
        return find_similar_issues(title, description, category, nearby,
                                   similarity_threshold=threshold,
                                   category_bonus=self.resolver.params.category_bonus)

    # --- admin operations ---

    async def set_status(self, issue_id: int, new_status: IssueStatus | str,
                         caller: Optional[Caller]) -> Issue:
        self._require_admin(caller)
        try:
            target = IssueStatus(new_status)
        except ValueError:
            raise ValidationError(f"Invalid status: {new_status}")

        async with self.locks.hold(issue_id):
            issue = await self.store.get_issue(issue_id)
            current = issue.status
            if current == target:
                return issue
            if target not in TRANSITIONS[current]:
                raise ConflictError(f"Cannot move an issue from {current.value} to {target.value}")

            now = self._clock()
            fields: dict[str, Any] = {"status": target}
            activity: list[tuple[ActivityKind, Optional[str]]] = []
            if current == IssueStatus.resolved:
                fields.update(resolved_at=None, response_time=None)
                activity.append((ActivityKind.reopened, f"{current.value} -> {target.value}"))
            if target == IssueStatus.in_progress:
                fields["in_progress_at"] = now
                activity.append((ActivityKind.in_progress, None))
            elif target == IssueStatus.resolved:
                elapsed = now - as_utc(issue.created_at)
                fields.update(resolved_at=now, response_time=max(elapsed, timedelta(0)))
                activity.append((ActivityKind.resolved, None))
            elif target == IssueStatus.new:
                activity.append((ActivityKind.reopened, f"{current.value} -> {target.value}"))

            issue = await self.store.update_issue(issue_id, fields, activity)
            issue = await self._rescore_locked(issue_id, issue)
        logger.info("Issue #%s moved %s -> %s by %s", issue_id, current.value, target.value, caller.subject)
        return issue

    async def set_spam_flag(self, issue_id: int, is_spam: bool, caller: Optional[Caller]) -> Issue:
        self._require_admin(caller)
        async with self.locks.hold(issue_id):
            issue = await self.store.get_issue(issue_id)
            if issue.is_spam == is_spam:
                return issue
            issue, unlinked = await self.store.flag_spam(issue_id, is_spam)
            if not is_spam:
                issue = await self._rescore_locked(issue_id, issue)
        if unlinked:
            logger.info("Spam flag on #%s unlinked duplicates %s", issue_id, unlinked)
        if issue.duplicate_of is not None:
            # spam duplicates do not count toward the canonical issue's score
            await self.recompute(issue.duplicate_of)
        return issue

    async def assign(self, issue_id: int, assigned_to: Optional[str], caller: Optional[Caller]) -> Issue:
        self._require_admin(caller)
        handler = (assigned_to or "").strip() or None
        async with self.locks.hold(issue_id):
            return await self.store.update_issue(
                issue_id, {"assigned_to": handler}, [(ActivityKind.assigned, handler)]
            )

    async def set_public_notes(self, issue_id: int, notes: Optional[str], caller: Optional[Caller]) -> Issue:
        self._require_admin(caller)
        text = (notes or "").strip() or None
        async with self.locks.hold(issue_id):
            return await self.store.update_issue(
                issue_id, {"public_notes": text}, [(ActivityKind.notes_updated, None)]
            )

    async def link_duplicate(self, issue_id: int, target_id: Optional[int], caller: Optional[Caller]) -> Issue:
        """Manually merge ``issue_id`` into ``target_id``, or unlink it when target is None."""
        self._require_admin(caller)
        # both ends locked: a concurrent move of the target could otherwise create a chain
        async with self.locks.hold_many(issue_id, target_id):
            issue = await self.store.get_issue(issue_id)
            previous = issue.duplicate_of
            if previous == target_id:
                return issue
            if target_id is None:
                activity = [(ActivityKind.duplicate_unlinked, f"was duplicate of #{previous}")]
            else:
                activity = [(ActivityKind.duplicate_linked, f"duplicate of #{target_id} (moderator)")]
            issue = await self.store.update_issue(issue_id, {"duplicate_of": target_id}, activity)
        for affected in (previous, target_id):
            if affected is not None:
                await self.recompute(affected)
        return issue

    async def refresh_scores(self, caller: Optional[Caller]) -> int:
        """Recompute every open issue so the age ramp is reflected; returns how many changed."""
        self._require_admin(caller)
        changed = 0
        for issue_id in await self.store.list_open_issue_ids():
            async with self.locks.hold(issue_id):
                before = await self.store.get_issue(issue_id)
                after = await self._rescore_locked(issue_id, before)
            if after.priority_score != before.priority_score:
                changed += 1
        return changed

    async def list_activity(self, issue_id: int, caller: Optional[Caller]) -> list[IssueActivity]:
        self._require_admin(caller)
        return await self.store.list_activity(issue_id)

    # --- store notifications ---

    async def handle_change(self, event: ChangeEvent) -> Optional[float]:
        """Re-derive the cached upvote count and score after an upvote row changed."""
        if event.entity != "upvote" or event.event_type not in ("insert", "delete"):
            return None
        issue_id = event.payload.get("issue_id")
        if issue_id is None:
            return None
        async with self.locks.hold(issue_id):
            issue = await self.store.get_issue(issue_id)
            actual = await self.store.count_upvotes(issue_id)
            if actual != issue.upvotes_count:
                logger.info("Resyncing upvotes on #%s: %s -> %s", issue_id, issue.upvotes_count, actual)
                issue = await self.store.update_issue(issue_id, {"upvotes_count": actual})
            issue = await self._rescore_locked(issue_id, issue)
        return issue.priority_score

    async def consume_changes(self) -> None:
        """Feed every store event through ``handle_change`` until cancelled."""
        if self.feed is None:
            return
        async with self.feed.subscribe() as queue:
            while True:
                event = await queue.get()
                try:
                    await self.handle_change(event)
                except CivicError as exc:
                    logger.warning("Change handling failed for %s/%s: %s",
                                   event.entity, event.event_type, exc.detail)


_default: Optional[IssueLifecycleManager] = None


def build_lifecycle(session_factory, settings) -> IssueLifecycleManager:
    store = IssueRepository(session_factory, ChangeFeed())
    return IssueLifecycleManager(
        store,
        match=settings.match_params(),
        weights=settings.score_weights(),
        spam_rules=settings.spam_rules(),
    )


def get_lifecycle() -> IssueLifecycleManager:
    global _default
    if _default is None:
        from civicwatch.core.config import settings
        from civicwatch.db.session import SessionLocal
        _default = build_lifecycle(SessionLocal, settings)
    return _default
