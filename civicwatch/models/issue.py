# File: civicwatch/models/issue.py
from __future__ import annotations
from datetime import datetime, timedelta
from enum import Enum as PyEnum
from sqlalchemy import String, Float, Enum, Integer, Boolean, DateTime, Interval, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from civicwatch.db.base import Base

class IssueStatus(PyEnum):
    new = "new"
    in_progress = "in_progress"
    resolved = "resolved"

class IssueCategory(str, PyEnum):
    pothole = "Pothole"
    broken_streetlight = "Broken Streetlight"
    overflowing_trash_bin = "Overflowing Trash Bin"
    graffiti = "Graffiti"
    damaged_public_property = "Damaged Public Property"
    water_leak = "Water Leak"
    sidewalk_damage = "Sidewalk Damage"
    traffic_signal_issue = "Traffic Signal Issue"
    other = "Other"

class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(String(4000))
    category: Mapped[str] = mapped_column(String(120), index=True)
    status: Mapped[IssueStatus] = mapped_column(Enum(IssueStatus), default=IssueStatus.new, index=True)

    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    location_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    street_address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    landmark: Mapped[str | None] = mapped_column(String(200), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # moderation
    is_spam: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", index=True)
    duplicate_of: Mapped[int | None] = mapped_column(
        ForeignKey("issues.id", ondelete="SET NULL"), nullable=True, index=True
    )
    reporter_fingerprint: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    # ranking; recomputed, never user-editable
    priority_score: Mapped[float] = mapped_column(Float, default=0.0, server_default="0", index=True)
    upvotes_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    assigned_to: Mapped[str | None] = mapped_column(String(120), nullable=True)
    public_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_time: Mapped[timedelta | None] = mapped_column(Interval, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    in_progress_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

Index("ix_issues_latitude_longitude", Issue.latitude, Issue.longitude)
