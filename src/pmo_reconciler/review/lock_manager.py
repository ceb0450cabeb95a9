"""
Review Lock Manager: advisory single-writer lock over a meeting in Review.

Every operation runs inside MeetingStore.meeting_transaction, so acquire,
release, publish and note recording for one meeting are serialised by the
meeting row lock. An expired lock is treated exactly like no lock.

A lock held by someone else is an expected condition and is returned as a
LockConflict value, never raised.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from ..config import config
from ..errors import AuthorizationError, InvalidTransitionError
from ..lifecycle import append_update, transition
from ..logging import get_logger, logging_context
from ..models.enums import MeetingStatus
from ..models.lock import LockConflict, LockOutcome, PublishOutcome, ReviewLock
from ..models.meeting import Meeting, MeetingUpdate, MeetingUpdateKind
from ..store.authorizer import Authorizer
from ..utils import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReviewNoteOutcome:
    """Result of recording a review edit."""

    recorded: bool
    update: MeetingUpdate | None = None
    conflict: LockConflict | None = None


def _require_review(meeting: Meeting, action: str) -> None:
    if meeting.status != MeetingStatus.REVIEW:
        raise InvalidTransitionError(
            f"Cannot {action}: meeting is {meeting.status.value}, not Review",
            context={'meeting_id': str(meeting.id), 'status': meeting.status.value},
        )


class ReviewLockManager:
    """
    Acquire, release, force-unlock and publish under the review lock.

    Usage:
        manager = ReviewLockManager(store, authorizer)
        outcome = await manager.acquire(meeting_id, user_id)
        if not outcome.acquired:
            show_holder(outcome.holder_user_id)
    """

    def __init__(
        self,
        store: Any,
        authorizer: Authorizer,
        ttl_minutes: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the lock manager.

        Args:
            store: MeetingStore (or any object with a compatible meeting_transaction)
            authorizer: Used for the admin check on force_unlock
            ttl_minutes: Lock lifetime (defaults to config.LOCK_TTL_MINUTES)
            clock: Returns the current time; injectable for expiry tests
        """
        self.store = store
        self.authorizer = authorizer
        self.ttl = timedelta(
            minutes=ttl_minutes if ttl_minutes is not None else config.LOCK_TTL_MINUTES
        )
        self.clock = clock

    @staticmethod
    def _conflict(lock: ReviewLock) -> LockConflict:
        return LockConflict(
            meeting_id=lock.meeting_id,
            holder_user_id=lock.holder_user_id,
            expires_at=lock.expires_at,
        )

    async def acquire(self, meeting_id: UUID, user_id: UUID) -> LockOutcome:
        """
        Take or refresh the review lock.

        Succeeds when there is no active lock or the caller already holds it
        (the expiry is extended). Otherwise returns the current holder.

        Raises:
            MeetingNotFoundError: No such meeting
            InvalidTransitionError: Meeting is not in Review
        """
        with logging_context(meeting_id=str(meeting_id)):
            async with self.store.meeting_transaction(meeting_id) as tx:
                _require_review(tx.meeting, 'acquire review lock')
                now = self.clock()
                current = await tx.get_lock(meeting_id)

                if current is not None and current.is_active(now):
                    if current.holder_user_id != user_id:
                        logger.info(
                            'lock_manager.conflict',
                            user_id=str(user_id),
                            holder_user_id=str(current.holder_user_id),
                        )
                        return LockOutcome(acquired=False, conflict=self._conflict(current))
                    acquired_at = current.acquired_at
                else:
                    acquired_at = now

                lock = ReviewLock(
                    meeting_id=meeting_id,
                    holder_user_id=user_id,
                    acquired_at=acquired_at,
                    expires_at=now + self.ttl,
                )
                await tx.put_lock(lock)

            logger.info(
                'lock_manager.acquired',
                user_id=str(user_id),
                expires_at=lock.expires_at.isoformat(),
            )
            return LockOutcome(acquired=True, lock=lock)

    async def release(self, meeting_id: UUID, user_id: UUID) -> bool:
        """
        Release the lock. Only the holder may release; anyone else is a no-op.

        Returns:
            True if the caller's lock was removed
        """
        async with self.store.meeting_transaction(meeting_id) as tx:
            current = await tx.get_lock(meeting_id)
            if current is None or current.holder_user_id != user_id:
                return False
            await tx.delete_lock(meeting_id)

        logger.info('lock_manager.released', meeting_id=str(meeting_id), user_id=str(user_id))
        return True

    async def force_unlock(self, meeting_id: UUID, acting_admin_id: UUID) -> bool:
        """
        Remove any lock on a meeting (administrators only).

        Returns:
            True if a lock was removed

        Raises:
            AuthorizationError: Caller is not an administrator
        """
        if not await self.authorizer.is_admin(acting_admin_id):
            raise AuthorizationError(
                'Only administrators can force-unlock a meeting',
                context={'meeting_id': str(meeting_id), 'user_id': str(acting_admin_id)},
            )

        async with self.store.meeting_transaction(meeting_id) as tx:
            current = await tx.get_lock(meeting_id)
            if current is None:
                return False
            await tx.delete_lock(meeting_id)
            append_update(
                tx.meeting,
                MeetingUpdateKind.LOCK_FORCED,
                message=f"Review lock held by {current.holder_user_id} removed",
                actor_user_id=acting_admin_id,
                now=self.clock(),
            )
            await tx.save_meeting()

        logger.warning(
            'lock_manager.force_unlocked',
            meeting_id=str(meeting_id),
            admin_id=str(acting_admin_id),
            previous_holder=str(current.holder_user_id),
        )
        return True

    async def publish(self, meeting_id: UUID, user_id: UUID) -> PublishOutcome:
        """
        Publish a meeting under review.

        The meeting must be in Review and any active lock must belong to the
        publisher. On success the meeting becomes Published and the lock is
        removed in the same transaction.

        Raises:
            MeetingNotFoundError: No such meeting
            InvalidTransitionError: Meeting is not in Review
        """
        with logging_context(meeting_id=str(meeting_id)):
            async with self.store.meeting_transaction(meeting_id) as tx:
                _require_review(tx.meeting, 'publish')
                now = self.clock()
                current = await tx.get_lock(meeting_id)
                if (
                    current is not None
                    and current.is_active(now)
                    and current.holder_user_id != user_id
                ):
                    logger.info(
                        'lock_manager.publish_rejected',
                        user_id=str(user_id),
                        holder_user_id=str(current.holder_user_id),
                    )
                    return PublishOutcome(published=False, conflict=self._conflict(current))

                transition(tx.meeting, MeetingStatus.PUBLISHED, actor_user_id=user_id, now=now)
                await tx.save_meeting()
                if current is not None:
                    await tx.delete_lock(meeting_id)

            logger.info('lock_manager.published', user_id=str(user_id))
            return PublishOutcome(published=True)

    async def record_review_note(
        self, meeting_id: UUID, user_id: UUID, note: str
    ) -> ReviewNoteOutcome:
        """
        Record a human review edit. The caller must hold the active lock.

        Raises:
            InvalidTransitionError: Meeting is not in Review
        """
        async with self.store.meeting_transaction(meeting_id) as tx:
            _require_review(tx.meeting, 'record review note')
            now = self.clock()
            current = await tx.get_lock(meeting_id)
            if current is None or not current.is_active(now):
                return ReviewNoteOutcome(recorded=False)
            if current.holder_user_id != user_id:
                return ReviewNoteOutcome(recorded=False, conflict=self._conflict(current))

            update = append_update(
                tx.meeting,
                MeetingUpdateKind.REVIEW_NOTE,
                message=note,
                actor_user_id=user_id,
                now=now,
            )
            await tx.save_meeting()

        logger.info('lock_manager.note_recorded', meeting_id=str(meeting_id), sequence=update.sequence)
        return ReviewNoteOutcome(recorded=True, update=update)
