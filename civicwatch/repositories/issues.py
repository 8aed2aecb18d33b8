# File: civicwatch/repositories/issues.py
"""Reporting store backed by SQLAlchemy.

Each public method is one unit of work: it opens its own session, commits
before returning and publishes the matching change event afterwards. Upvote
counts are adjusted with atomic ``UPDATE ... SET upvotes_count = upvotes_count
± 1`` statements and upvote uniqueness is left to the ``uq_issue_upvote``
constraint, so concurrent writers never read-modify-write in memory.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from civicwatch.core.errors import CivicError, ConflictError, NotFoundError, StoreError, ValidationError
from civicwatch.core.timeutil import utcnow
from civicwatch.models.issue import Issue, IssueStatus
from civicwatch.models.issue_activity import ActivityKind, IssueActivity
from civicwatch.models.upvote import IssueUpvote
from civicwatch.services.geo import BoundingBox
from civicwatch.services.notifications import ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "description", "category", "latitude", "longitude")
# columns the lifecycle may change through update_issue
MUTABLE_FIELDS = {
    "status", "assigned_to", "public_notes", "response_time", "priority_score",
    "is_spam", "duplicate_of", "in_progress_at", "resolved_at", "upvotes_count",
}

Activity = tuple[ActivityKind, Optional[str]]

FEED_ORDERINGS = {
    "priority": (Issue.priority_score.desc(), Issue.created_at.desc(), Issue.id.desc()),
    "newest": (Issue.created_at.desc(), Issue.id.desc()),
    "oldest": (Issue.created_at.asc(), Issue.id.asc()),
    "popular": (Issue.upvotes_count.desc(), Issue.created_at.desc(), Issue.id.desc()),
}


@dataclass
class IssueFilter:
    status: Optional[IssueStatus] = None
    category: Optional[str] = None
    include_spam: bool = False
    include_duplicates: bool = False
    search: Optional[str] = None
    sort: str = "priority"
    limit: int = 50
    offset: int = 0


def issue_payload(issue: Issue) -> dict:
    return {
        "id": issue.id,
        "status": issue.status.value,
        "category": issue.category,
        "is_spam": issue.is_spam,
        "duplicate_of": issue.duplicate_of,
        "priority_score": issue.priority_score,
        "upvotes_count": issue.upvotes_count,
    }


class IssueRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession],
                 feed: Optional[ChangeFeed] = None) -> None:
        self._session_factory = session_factory
        self.feed = feed

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    yield db
        except (CivicError, IntegrityError):
            raise
        except SQLAlchemyError as exc:
            logger.error("Reporting store operation failed", exc_info=True)
            raise StoreError() from exc

    async def _publish(self, event: ChangeEvent) -> None:
        if self.feed is not None:
            await self.feed.publish(event)

    @staticmethod
    async def _load(db: AsyncSession, issue_id: int) -> Issue:
        issue = await db.get(Issue, issue_id, populate_existing=True)
        if issue is None:
            raise NotFoundError(f"Issue #{issue_id} not found")
        return issue

    @staticmethod
    def _add_activity(db: AsyncSession, issue_id: int, activity: Sequence[Activity], at: datetime) -> None:
        for kind, detail in activity:
            db.add(IssueActivity(issue_id=issue_id, kind=kind.value, detail=detail, at=at))

    @staticmethod
    async def _check_link(db: AsyncSession, issue_id: Optional[int], target_id: int) -> None:
        """Keep ``duplicate_of`` a one-hop forest pointing at non-spam issues."""
        if issue_id is not None and target_id == issue_id:
            raise ConflictError("An issue cannot be a duplicate of itself")
        target = await db.get(Issue, target_id)
        if target is None:
            raise NotFoundError(f"Issue #{target_id} not found")
        if target.is_spam:
            raise ConflictError(f"Issue #{target_id} is flagged as spam")
        if target.duplicate_of is not None:
            raise ConflictError(f"Issue #{target_id} is itself a duplicate of #{target.duplicate_of}")
        if issue_id is not None:
            children = await db.scalar(
                select(func.count(Issue.id)).where(Issue.duplicate_of == issue_id)
            )
            if children:
                raise ConflictError(f"Issue #{issue_id} already has duplicates linked to it")

    # --- issues ---

    async def create_issue(self, fields: dict[str, Any], activity: Sequence[Activity] = ()) -> Issue:
        missing = [name for name in REQUIRED_FIELDS if fields.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        values = dict(fields)
        values.setdefault("created_at", utcnow())
        async with self._transaction() as db:
            if values.get("duplicate_of") is not None:
                await self._check_link(db, None, values["duplicate_of"])
            issue = Issue(**values)
            db.add(issue)
            await db.flush()
            self._add_activity(db, issue.id, activity, values["created_at"])
        await self._publish(ChangeEvent("insert", "issue", issue_payload(issue)))
        return issue

    async def get_issue(self, issue_id: int) -> Issue:
        async with self._transaction() as db:
            return await self._load(db, issue_id)

    async def list_issues(self, flt: IssueFilter) -> list[Issue]:
        ordering = FEED_ORDERINGS.get(flt.sort)
        if ordering is None:
            raise ValidationError(f"Unknown sort: {flt.sort}")
        q = select(Issue)
        if flt.status is not None:
            q = q.where(Issue.status == flt.status)
        if flt.category:
            q = q.where(Issue.category == flt.category)
        if not flt.include_spam:
            q = q.where(Issue.is_spam.is_(False))
        if not flt.include_duplicates:
            q = q.where(Issue.duplicate_of.is_(None))
        if flt.search and flt.search.strip():
            like = f"%{flt.search.strip()}%"
            q = q.where(or_(
                Issue.title.ilike(like),
                Issue.description.ilike(like),
                Issue.location_name.ilike(like),
                Issue.street_address.ilike(like),
            ))
        q = (
            q.order_by(*ordering)
            .offset(max(0, flt.offset))
            .limit(max(1, min(flt.limit, 500)))
        )
        async with self._transaction() as db:
            return list((await db.scalars(q)).all())

    async def list_merge_candidates(self, box: BoundingBox) -> list[Issue]:
        """Open, non-spam, canonical issues inside the bounding box, oldest first."""
        lng_clauses = [Issue.longitude.between(lo, hi) for lo, hi in box.lng_ranges]
        q = (
            select(Issue)
            .where(
                Issue.is_spam.is_(False),
                Issue.status != IssueStatus.resolved,
                Issue.duplicate_of.is_(None),
                Issue.latitude.between(box.min_lat, box.max_lat),
                or_(*lng_clauses),
            )
            .order_by(Issue.id.asc())
        )
        async with self._transaction() as db:
            return list((await db.scalars(q)).all())

    async def list_open_issue_ids(self) -> list[int]:
        q = select(Issue.id).where(Issue.status != IssueStatus.resolved).order_by(Issue.id)
        async with self._transaction() as db:
            return list((await db.scalars(q)).all())

    async def update_issue(self, issue_id: int, fields: dict[str, Any],
                           activity: Sequence[Activity] = ()) -> Issue:
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        now = utcnow()
        async with self._transaction() as db:
            issue = await self._load(db, issue_id)
            if fields.get("duplicate_of") is not None and fields["duplicate_of"] != issue.duplicate_of:
                await self._check_link(db, issue_id, fields["duplicate_of"])
            for name, value in fields.items():
                setattr(issue, name, value)
            issue.updated_at = now
            self._add_activity(db, issue_id, activity, now)
            await db.flush()
        await self._publish(ChangeEvent("update", "issue", issue_payload(issue)))
        return issue

    async def flag_spam(self, issue_id: int, is_spam: bool) -> tuple[Issue, list[int]]:
        """Set the spam flag; flagging also detaches any duplicates linked to the issue."""
        now = utcnow()
        unlinked: list[int] = []
        async with self._transaction() as db:
            issue = await self._load(db, issue_id)
            issue.is_spam = is_spam
            issue.updated_at = now
            kind = ActivityKind.spam_flagged if is_spam else ActivityKind.spam_cleared
            self._add_activity(db, issue_id, [(kind, None)], now)
            if is_spam:
                unlinked = list((await db.scalars(
                    select(Issue.id).where(Issue.duplicate_of == issue_id).order_by(Issue.id)
                )).all())
                if unlinked:
                    await db.execute(
                        update(Issue).where(Issue.id.in_(unlinked)).values(duplicate_of=None, updated_at=now)
                    )
                    for dup_id in unlinked:
                        self._add_activity(db, dup_id, [(
                            ActivityKind.duplicate_unlinked,
                            f"#{issue_id} was flagged as spam",
                        )], now)
            await db.flush()
        await self._publish(ChangeEvent("update", "issue", issue_payload(issue)))
        return issue, unlinked

    async def count_duplicates(self, issue_id: int) -> int:
        q = select(func.count(Issue.id)).where(
            Issue.duplicate_of == issue_id, Issue.is_spam.is_(False)
        )
        async with self._transaction() as db:
            return int(await db.scalar(q) or 0)

    async def recent_submission_count(self, fingerprint: str, since: datetime) -> int:
        q = select(func.count(Issue.id)).where(
            and_(Issue.reporter_fingerprint == fingerprint, Issue.created_at >= since)
        )
        async with self._transaction() as db:
            return int(await db.scalar(q) or 0)

    async def list_activity(self, issue_id: int) -> list[IssueActivity]:
        q = (
            select(IssueActivity)
            .where(IssueActivity.issue_id == issue_id)
            .order_by(IssueActivity.at.asc(), IssueActivity.id.asc())
        )
        async with self._transaction() as db:
            await self._load(db, issue_id)
            return list((await db.scalars(q)).all())

    # --- upvotes ---

    async def count_upvotes(self, issue_id: int) -> int:
        q = select(func.count(IssueUpvote.id)).where(IssueUpvote.issue_id == issue_id)
        async with self._transaction() as db:
            return int(await db.scalar(q) or 0)

    async def create_upvote(self, issue_id: int, fingerprint: str) -> int:
        """Insert the vote and bump the cached count; returns the new count."""
        try:
            async with self._transaction() as db:
                await self._load(db, issue_id)
                db.add(IssueUpvote(issue_id=issue_id, user_ip=fingerprint))
                await db.flush()
                await db.execute(
                    update(Issue)
                    .where(Issue.id == issue_id)
                    .values(upvotes_count=Issue.upvotes_count + 1)
                )
                count = int(await db.scalar(select(Issue.upvotes_count).where(Issue.id == issue_id)))
        except IntegrityError as exc:
            raise ConflictError("This issue already has your support") from exc
        await self._publish(ChangeEvent("insert", "upvote", {"issue_id": issue_id, "upvotes_count": count}))
        return count

    async def delete_upvote(self, issue_id: int, fingerprint: str) -> Optional[int]:
        """Remove the vote; returns the new count, or None when there was nothing to remove."""
        async with self._transaction() as db:
            await self._load(db, issue_id)
            result = await db.execute(
                delete(IssueUpvote).where(
                    IssueUpvote.issue_id == issue_id, IssueUpvote.user_ip == fingerprint
                )
            )
            if not result.rowcount:
                return None
            await db.execute(
                update(Issue)
                .where(Issue.id == issue_id)
                .values(upvotes_count=case(
                    (Issue.upvotes_count > 0, Issue.upvotes_count - 1), else_=0
                ))
            )
            count = int(await db.scalar(select(Issue.upvotes_count).where(Issue.id == issue_id)))
        await self._publish(ChangeEvent("delete", "upvote", {"issue_id": issue_id, "upvotes_count": count}))
        return count
