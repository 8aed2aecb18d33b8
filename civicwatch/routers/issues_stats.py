# File: civicwatch/routers/issues_stats.py
from collections import defaultdict
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from civicwatch.core.security import require_admin
from civicwatch.core.timeutil import as_utc, utcnow
from civicwatch.db.session import get_db
from civicwatch.models.issue import Issue, IssueStatus

router = APIRouter(prefix="/issues/stats", tags=["issues:stats"], dependencies=[Depends(require_admin)])

HIGH_PRIORITY_SCORE = 5.0

def range_to_dt(range_key: str):
    now = utcnow()
    if range_key == "today": return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if range_key == "7d": return now - timedelta(days=7)
    if range_key == "30d": return now - timedelta(days=30)
    if range_key == "90d": return now - timedelta(days=90)
    if range_key == "year": return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return None

def apply_filters(q, since=None, category: Optional[str] = None, include_spam: bool = False):
    if since is not None:
        q = q.where(Issue.created_at >= since)
    if category and category != "all":
        q = q.where(Issue.category == category)
    if not include_spam:
        q = q.where(Issue.is_spam.is_(False))
    return q

@router.get("/summary")
async def summary(range: str = Query("all"), db: AsyncSession = Depends(get_db)):
    since = range_to_dt(range)
    q = apply_filters(select(Issue.status, func.count(Issue.id)), since).group_by(Issue.status)
    by_status = {s.value: 0 for s in IssueStatus}
    for status, n in (await db.execute(q)).all():
        by_status[status.value] = n

    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    resolved_today = await db.scalar(apply_filters(
        select(func.count(Issue.id)).where(Issue.status == IssueStatus.resolved, Issue.resolved_at >= today),
        since,
    ))
    spam = await db.scalar(apply_filters(
        select(func.count(Issue.id)).where(Issue.is_spam.is_(True)), since, include_spam=True
    ))
    duplicates = await db.scalar(apply_filters(
        select(func.count(Issue.id)).where(Issue.duplicate_of.isnot(None)), since
    ))
    upvotes = await db.scalar(apply_filters(select(func.coalesce(func.sum(Issue.upvotes_count), 0)), since))
    high_priority = await db.scalar(apply_filters(
        select(func.count(Issue.id)).where(Issue.priority_score > HIGH_PRIORITY_SCORE), since
    ))
    return {
        "total": sum(by_status.values()),
        **by_status,
        "resolved_today": resolved_today or 0,
        "spam": spam or 0,
        "duplicates": duplicates or 0,
        "total_upvotes": int(upvotes or 0),
        "high_priority": high_priority or 0,
    }

@router.get("/by-category")
async def by_category(
    range: str = Query("all"),
    open_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    q = apply_filters(select(Issue.category, func.count(Issue.id)), range_to_dt(range))
    if open_only:
        q = q.where(Issue.status != IssueStatus.resolved)
    q = q.group_by(Issue.category).order_by(func.count(Issue.id).desc(), Issue.category)
    return [{"category": c, "count": n} for c, n in (await db.execute(q)).all()]

@router.get("/monthly")
async def monthly(range: str = Query("year"), db: AsyncSession = Depends(get_db)):
    q = apply_filters(select(Issue.created_at, Issue.status), range_to_dt(range))
    months: dict[str, dict] = {}
    for created_at, status in (await db.execute(q)).all():
        key = as_utc(created_at).strftime("%Y-%m")
        row = months.setdefault(key, {"month": key, "total": 0, "resolved": 0})
        row["total"] += 1
        if status == IssueStatus.resolved:
            row["resolved"] += 1
    return [months[k] for k in sorted(months)]

@router.get("/resolution-times")
async def resolution_times(range: str = Query("all"), db: AsyncSession = Depends(get_db)):
    q = apply_filters(
        select(Issue.category, Issue.response_time).where(
            Issue.status == IssueStatus.resolved, Issue.response_time.isnot(None)
        ),
        range_to_dt(range),
    )
    totals: dict[str, list[float]] = defaultdict(list)
    for category, response_time in (await db.execute(q)).all():
        totals[category].append(response_time.total_seconds() / 3600)
    return [
        {"category": c, "avg_time_hours": round(sum(hours) / len(hours), 2), "count": len(hours)}
        for c, hours in sorted(totals.items())
    ]

@router.get("/hotspots")
async def hotspots(
    range: str = Query("all"),
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    location = func.coalesce(Issue.location_name, "Unknown")
    q = apply_filters(select(location, func.count(Issue.id)), range_to_dt(range))
    q = q.group_by(location).order_by(func.count(Issue.id).desc(), location).limit(limit)
    return [{"location": loc, "count": n} for loc, n in (await db.execute(q)).all()]
