# File: civicwatch/models/issue_activity.py
from __future__ import annotations
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from civicwatch.db.base import Base

class ActivityKind(str, PyEnum):
    created = "created"
    in_progress = "in_progress"
    resolved = "resolved"
    reopened = "reopened"
    spam_flagged = "spam_flagged"
    spam_cleared = "spam_cleared"
    duplicate_linked = "duplicate_linked"
    duplicate_unlinked = "duplicate_unlinked"
    assigned = "assigned"
    notes_updated = "notes_updated"
    review_requested = "review_requested"

class IssueActivity(Base):
    __tablename__ = "issue_activity"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), index=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    detail: Mapped[str | None] = mapped_column(String(500), nullable=True)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
