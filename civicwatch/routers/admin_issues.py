# File: civicwatch/routers/admin_issues.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from civicwatch.core.security import Caller, require_admin
from civicwatch.models.issue import IssueCategory, IssueStatus
from civicwatch.repositories.issues import IssueFilter
from civicwatch.schemas.issue import (
    FeedSort,
    ActivityOut,
    IssueAssignPatch,
    IssueDuplicatePatch,
    IssueNotesPatch,
    IssueOut,
    IssueSpamPatch,
    IssueStatusPatch,
    RefreshScoresOut,
)
from civicwatch.services.lifecycle import IssueLifecycleManager, get_lifecycle

router = APIRouter(prefix="/admin/issues", tags=["admin-issues"])


@router.get("", response_model=List[IssueOut])
async def list_issues(
    status: Optional[IssueStatus] = Query(default=None),
    category: Optional[IssueCategory] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=200),
    sort: FeedSort = Query(default="priority"),
    include_spam: bool = Query(default=True),
    include_duplicates: bool = Query(default=True),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    issues = await lifecycle.get_ranked_feed(IssueFilter(
        status=status,
        category=category.value if category else None,
        include_spam=include_spam,
        include_duplicates=include_duplicates,
        search=q,
        sort=sort,
        limit=limit,
        offset=offset,
    ))
    return [IssueOut.model_validate(i) for i in issues]


@router.patch("/{issue_id}/status", response_model=IssueOut)
async def update_status(
    issue_id: int,
    body: IssueStatusPatch,
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    return IssueOut.model_validate(await lifecycle.set_status(issue_id, body.status, caller))


@router.patch("/{issue_id}/spam", response_model=IssueOut)
async def update_spam(
    issue_id: int,
    body: IssueSpamPatch,
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    return IssueOut.model_validate(await lifecycle.set_spam_flag(issue_id, body.is_spam, caller))


@router.patch("/{issue_id}/assign", response_model=IssueOut)
async def assign_issue(
    issue_id: int,
    body: IssueAssignPatch,
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    return IssueOut.model_validate(await lifecycle.assign(issue_id, body.assigned_to, caller))


@router.patch("/{issue_id}/notes", response_model=IssueOut)
async def update_notes(
    issue_id: int,
    body: IssueNotesPatch,
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    return IssueOut.model_validate(await lifecycle.set_public_notes(issue_id, body.public_notes, caller))


@router.patch("/{issue_id}/duplicate", response_model=IssueOut)
async def update_duplicate(
    issue_id: int,
    body: IssueDuplicatePatch,
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    return IssueOut.model_validate(await lifecycle.link_duplicate(issue_id, body.duplicate_of, caller))


@router.post("/refresh-scores", response_model=RefreshScoresOut)
async def refresh_scores(
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    return RefreshScoresOut(rescored=await lifecycle.refresh_scores(caller))


@router.get("/{issue_id}/activity", response_model=List[ActivityOut])
async def issue_activity(
    issue_id: int,
    caller: Caller = Depends(require_admin),
    lifecycle: IssueLifecycleManager = Depends(get_lifecycle),
):
    rows = await lifecycle.list_activity(issue_id, caller)
    return [ActivityOut.model_validate(r) for r in rows]
