"""
Project and Meeting models.

A Meeting owns an ordered, append-only sequence of typed MeetingUpdate
records (status changes and review notes). Meetings are never physically
deleted; Deleted is a terminal status.
"""

from datetime import date as date_type, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from ..utils import utcnow, uuid7
from .enums import MeetingCategory, MeetingStatus


class Project(BaseModel):
    id: UUID = Field(default_factory=uuid7)
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class ProjectMember(BaseModel):
    """A user on a project's roster, as owners are resolved against."""

    user_id: UUID
    email: str | None = None
    full_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or ''


class MeetingUpdateKind(str, Enum):
    STATUS_CHANGE = 'status_change'
    REVIEW_NOTE = 'review_note'
    REVIEW_DISCARDED = 'review_discarded'
    LOCK_FORCED = 'lock_forced'


class MeetingUpdate(BaseModel):
    """One timestamped entry of a meeting's history."""

    sequence: int = Field(..., ge=1, description='Position in the meeting history (1-based)')
    kind: MeetingUpdateKind
    from_status: MeetingStatus | None = None
    to_status: MeetingStatus | None = None
    actor_user_id: UUID | None = None
    message: str = ''
    reason_code: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Meeting(BaseModel):
    """
    A meeting record within a project.

    Created on upload (Draft); mutated by the pipeline (Processing ->
    Review/Failed) and by reviewers (Review -> Published).
    """

    id: UUID = Field(default_factory=uuid7)
    project_id: UUID
    title: str | None = None
    date: date_type | None = None
    category: MeetingCategory | None = None
    status: MeetingStatus = MeetingStatus.DRAFT

    transcript_text: str | None = None
    content_fingerprint: str | None = None
    source_name: str | None = Field(
        default=None, description='File name or source reference the transcript came from'
    )

    # Extracted payloads from the validated contract
    recap: dict[str, Any] | None = None
    tone: dict[str, Any] | None = None
    fishbone: dict[str, Any] | None = None

    failure_reason_code: str | None = None
    failure_message: str | None = None
    processed_at: datetime | None = None

    updates: list[MeetingUpdate] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def next_update_sequence(self) -> int:
        return len(self.updates) + 1
