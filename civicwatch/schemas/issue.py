from pydantic import BaseModel, Field, computed_field
from typing import Optional, Literal, List
from datetime import datetime, timedelta

from civicwatch.models.issue import IssueCategory, IssueStatus

Status = Literal["new", "in_progress", "resolved"]
Outcome = Literal["created", "rejected", "duplicate"]
FeedSort = Literal["priority", "newest", "oldest", "popular"]


class IssueCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=4000)
    category: IssueCategory
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    location_name: Optional[str] = Field(default=None, max_length=200)
    street_address: Optional[str] = Field(default=None, max_length=300)
    landmark: Optional[str] = Field(default=None, max_length=200)
    image_url: Optional[str] = Field(default=None, max_length=500)

    class Config:
        str_strip_whitespace = True


def format_duration(value: timedelta) -> str:
    hours = int(value.total_seconds() // 3600)
    days = hours // 24
    if days > 0:
        return f"{days} days {hours % 24} hours"
    return f"{hours} hours"


class IssueOut(BaseModel):
    id: int
    title: str
    description: str
    category: str
    status: IssueStatus

    latitude: float
    longitude: float
    location_name: Optional[str] = None
    street_address: Optional[str] = None
    landmark: Optional[str] = None
    image_url: Optional[str] = None

    is_spam: bool = False
    duplicate_of: Optional[int] = None
    priority_score: float = 0.0
    upvotes_count: int = 0

    assigned_to: Optional[str] = None
    public_notes: Optional[str] = None
    response_time: Optional[timedelta] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @computed_field
    @property
    def response_time_text(self) -> Optional[str]:
        return format_duration(self.response_time) if self.response_time is not None else None

    class Config:
        from_attributes = True
        use_enum_values = True


class SubmitReportOut(BaseModel):
    outcome: Outcome
    issue: IssueOut
    duplicate_of: Optional[int] = None
    similarity: Optional[float] = None
    reason: Optional[str] = None
    warnings: List[str] = []


class UpvoteOut(BaseModel):
    upvoted: bool
    new_count: int


class IssueStatusPatch(BaseModel):
    status: Status


class IssueSpamPatch(BaseModel):
    is_spam: bool


class IssueAssignPatch(BaseModel):
    assigned_to: Optional[str] = Field(default=None, max_length=120)


class IssueNotesPatch(BaseModel):
    public_notes: Optional[str] = Field(default=None, max_length=4000)


class IssueDuplicatePatch(BaseModel):
    duplicate_of: Optional[int] = None


class SimilarIssueOut(BaseModel):
    issue_id: int
    similarity_score: float
    title: str


class ActivityOut(BaseModel):
    kind: str
    detail: Optional[str] = None
    at: datetime

    class Config:
        from_attributes = True


class RefreshScoresOut(BaseModel):
    rescored: int
