"""Review lock: advisory single-writer lock over a meeting under review."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class ReviewLock(BaseModel):
    """At most one per meeting. Expired locks are treated as absent."""

    meeting_id: UUID
    holder_user_id: UUID
    acquired_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class LockConflict:
    """Another user holds the lock. An expected condition, not a fault."""

    meeting_id: UUID
    holder_user_id: UUID
    expires_at: datetime

    reason_code: str = 'lock_conflict'

    def to_dict(self) -> dict[str, str]:
        return {
            'reason_code': self.reason_code,
            'meeting_id': str(self.meeting_id),
            'holder_user_id': str(self.holder_user_id),
            'expires_at': self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class LockOutcome:
    """Result of an acquire attempt."""

    acquired: bool
    lock: ReviewLock | None = None
    conflict: LockConflict | None = None

    @property
    def holder_user_id(self) -> UUID | None:
        if self.lock is not None:
            return self.lock.holder_user_id
        if self.conflict is not None:
            return self.conflict.holder_user_id
        return None


@dataclass(frozen=True)
class PublishOutcome:
    """Result of a publish attempt: published, or rejected by a lock conflict."""

    published: bool
    conflict: LockConflict | None = None
