# File: civicwatch/routers/issues.py
import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from civicwatch.core.config import settings
from civicwatch.core.ratelimit import limiter
from civicwatch.core.security import Caller, get_caller
from civicwatch.models.issue import IssueCategory, IssueStatus
from civicwatch.repositories.issues import IssueFilter
from civicwatch.schemas.issue import (
    FeedSort,
    IssueCreate,
    IssueOut,
    SimilarIssueOut,
    SubmitReportOut,
    UpvoteOut,
)
from civicwatch.services.lifecycle import IssueLifecycleManager, get_lifecycle
from civicwatch.services.notifications import ChangeFeed, public_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/issues", tags=["issues"])

KEEPALIVE_SECONDS = 15


@router.post("", response_model=SubmitReportOut, status_code=201)
@limiter.limit(settings.submit_rate_limit)
async def submit_report(
    request: Request,
    body: IssueCreate,
    caller: Caller = Depends(get_caller),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    result = await lifecycle.submit_report(body, fingerprint=caller.fingerprint)
    return SubmitReportOut(
        outcome=result.outcome,
        issue=IssueOut.model_validate(result.issue),
        duplicate_of=result.duplicate_of,
        similarity=result.similarity,
        reason=result.reason,
        warnings=result.warnings,
    )


@router.get("", response_model=List[IssueOut])
async def ranked_feed(
    status: Optional[IssueStatus] = Query(default=None),
    category: Optional[IssueCategory] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=200),
    sort: FeedSort = Query(default="priority"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    issues = await lifecycle.get_ranked_feed(IssueFilter(
        status=status,
        category=category.value if category else None,
        search=q,
        sort=sort,
        limit=limit,
        offset=offset,
    ))
    return [IssueOut.model_validate(i) for i in issues]


@router.get("/similar", response_model=List[SimilarIssueOut])
async def similar_issues(
    title: str = Query(..., min_length=1, max_length=200),
    description: str = Query(default="", max_length=4000),
    category: IssueCategory = Query(...),
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    matches = await lifecycle.find_similar(title, description, category.value, lat, lng)
    return [
        SimilarIssueOut(issue_id=m.issue_id, similarity_score=m.score, title=m.title)
        for m in matches
    ]


async def event_stream(feed: ChangeFeed, is_disconnected: Callable[[], Awaitable[bool]],
                       keepalive: float = KEEPALIVE_SECONDS) -> AsyncIterator[str]:
    async with feed.subscribe() as queue:
        while not await is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            visible = public_event(event)
            if visible is None:
                continue
            yield f"event: {visible.entity}\ndata: {json.dumps(visible.as_dict(), default=str)}\n\n"


@router.get("/events")
async def change_events(
    request: Request,
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    """Server-sent events: score deltas and issue/upvote changes, no refetch needed."""
    return StreamingResponse(event_stream(lifecycle.feed, request.is_disconnected),
                             media_type="text/event-stream")


@router.get("/{issue_id}", response_model=IssueOut)
async def get_issue(issue_id: int, lifecycle: IssueLifecycleManager = Depends(get_lifecycle)):
    return IssueOut.model_validate(await lifecycle.get_issue(issue_id))


@router.post("/{issue_id}/upvote", response_model=UpvoteOut)
async def toggle_upvote(
    issue_id: int,
    caller: Caller = Depends(get_caller),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    result = await lifecycle.toggle_upvote(issue_id, caller.fingerprint)
    return UpvoteOut(upvoted=result.upvoted, new_count=result.new_count)
