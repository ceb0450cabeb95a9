"""
Tests for the Review Lock Manager.

Covers:
- Exclusive acquisition under concurrent attempts
- Expiry (an expired lock is the same as no lock)
- Refresh by the holder
- Release, force-unlock and publish
- Review notes gated on holding the lock
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import ADMIN_ID, OTHER_USER_ID, USER_ID

from pmo_reconciler.errors import (
    AuthorizationError,
    InvalidTransitionError,
    MeetingNotFoundError,
)
from pmo_reconciler.models.enums import MeetingStatus
from pmo_reconciler.models.meeting import MeetingUpdateKind
from pmo_reconciler.review.lock_manager import ReviewLockManager
from pmo_reconciler.utils import uuid7

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class Clock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def manager(store, authorizer, clock) -> ReviewLockManager:
    return ReviewLockManager(store, authorizer, ttl_minutes=30, clock=clock)


@pytest.fixture
def review_meeting(processing_meeting):
    return processing_meeting(status=MeetingStatus.REVIEW)


class TestAcquire:
    @pytest.mark.asyncio
    async def test_acquire_free_lock(self, manager, store, review_meeting):
        outcome = await manager.acquire(review_meeting.id, USER_ID)

        assert outcome.acquired is True
        assert outcome.holder_user_id == USER_ID
        assert outcome.lock.expires_at == START + timedelta(minutes=30)
        assert store.locks[review_meeting.id].holder_user_id == USER_ID

    @pytest.mark.asyncio
    async def test_second_user_gets_conflict(self, manager, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        outcome = await manager.acquire(review_meeting.id, OTHER_USER_ID)

        assert outcome.acquired is False
        assert outcome.holder_user_id == USER_ID
        assert outcome.conflict.to_dict()['reason_code'] == 'lock_conflict'
        assert outcome.conflict.expires_at == START + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_concurrent_acquire_has_single_winner(self, manager, store, review_meeting):
        outcomes = await asyncio.gather(
            manager.acquire(review_meeting.id, USER_ID),
            manager.acquire(review_meeting.id, OTHER_USER_ID),
            manager.acquire(review_meeting.id, ADMIN_ID),
        )

        winners = [o for o in outcomes if o.acquired]
        assert len(winners) == 1
        losers = [o for o in outcomes if not o.acquired]
        assert all(o.holder_user_id == winners[0].holder_user_id for o in losers)
        assert store.locks[review_meeting.id].holder_user_id == winners[0].holder_user_id

    @pytest.mark.asyncio
    async def test_holder_refresh_extends_expiry(self, manager, clock, review_meeting):
        first = await manager.acquire(review_meeting.id, USER_ID)
        clock.advance(minutes=20)

        second = await manager.acquire(review_meeting.id, USER_ID)

        assert second.acquired is True
        assert second.lock.acquired_at == first.lock.acquired_at
        assert second.lock.expires_at == clock.now + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self, manager, clock, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)
        clock.advance(minutes=31)

        outcome = await manager.acquire(review_meeting.id, OTHER_USER_ID)

        assert outcome.acquired is True
        assert outcome.lock.acquired_at == clock.now

    @pytest.mark.asyncio
    async def test_requires_review_status(self, manager, processing_meeting):
        meeting = processing_meeting()

        with pytest.raises(InvalidTransitionError):
            await manager.acquire(meeting.id, USER_ID)

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, manager):
        with pytest.raises(MeetingNotFoundError):
            await manager.acquire(uuid7(), USER_ID)


class TestReleaseAndForceUnlock:
    @pytest.mark.asyncio
    async def test_holder_releases(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        assert await manager.release(review_meeting.id, USER_ID) is True
        assert review_meeting.id not in store.locks

    @pytest.mark.asyncio
    async def test_release_by_non_holder_is_noop(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        assert await manager.release(review_meeting.id, OTHER_USER_ID) is False
        assert store.locks[review_meeting.id].holder_user_id == USER_ID

    @pytest.mark.asyncio
    async def test_release_without_lock_is_noop(self, manager, review_meeting):
        assert await manager.release(review_meeting.id, USER_ID) is False

    @pytest.mark.asyncio
    async def test_admin_force_unlock(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        assert await manager.force_unlock(review_meeting.id, ADMIN_ID) is True

        assert review_meeting.id not in store.locks
        last = store.meetings[review_meeting.id].updates[-1]
        assert last.kind == MeetingUpdateKind.LOCK_FORCED
        assert last.actor_user_id == ADMIN_ID

    @pytest.mark.asyncio
    async def test_force_unlock_requires_admin(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        with pytest.raises(AuthorizationError):
            await manager.force_unlock(review_meeting.id, OTHER_USER_ID)

        assert review_meeting.id in store.locks


class TestPublish:
    @pytest.mark.asyncio
    async def test_holder_publishes_and_lock_is_removed(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        outcome = await manager.publish(review_meeting.id, USER_ID)

        assert outcome.published is True
        assert store.meetings[review_meeting.id].status == MeetingStatus.PUBLISHED
        assert review_meeting.id not in store.locks

    @pytest.mark.asyncio
    async def test_publish_without_lock(self, manager, store, review_meeting):
        outcome = await manager.publish(review_meeting.id, USER_ID)

        assert outcome.published is True
        assert store.meetings[review_meeting.id].status == MeetingStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_publish_blocked_by_other_holder(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        outcome = await manager.publish(review_meeting.id, OTHER_USER_ID)

        assert outcome.published is False
        assert outcome.conflict.holder_user_id == USER_ID
        assert store.meetings[review_meeting.id].status == MeetingStatus.REVIEW

    @pytest.mark.asyncio
    async def test_publish_after_other_lock_expired(self, manager, clock, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)
        clock.advance(hours=1)

        outcome = await manager.publish(review_meeting.id, OTHER_USER_ID)

        assert outcome.published is True
        assert review_meeting.id not in store.locks

    @pytest.mark.asyncio
    async def test_publish_twice_rejected(self, manager, review_meeting):
        await manager.publish(review_meeting.id, USER_ID)

        with pytest.raises(InvalidTransitionError):
            await manager.publish(review_meeting.id, USER_ID)


class TestReviewNotes:
    @pytest.mark.asyncio
    async def test_holder_records_note(self, manager, store, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        outcome = await manager.record_review_note(review_meeting.id, USER_ID, 'Fixed owner on AI-3')

        assert outcome.recorded is True
        stored = store.meetings[review_meeting.id]
        assert stored.updates[-1].kind == MeetingUpdateKind.REVIEW_NOTE
        assert stored.updates[-1].message == 'Fixed owner on AI-3'
        assert outcome.update.sequence == len(stored.updates)

    @pytest.mark.asyncio
    async def test_note_without_lock_rejected(self, manager, review_meeting):
        outcome = await manager.record_review_note(review_meeting.id, USER_ID, 'Edit')

        assert outcome.recorded is False
        assert outcome.conflict is None

    @pytest.mark.asyncio
    async def test_note_by_non_holder_gets_conflict(self, manager, review_meeting):
        await manager.acquire(review_meeting.id, USER_ID)

        outcome = await manager.record_review_note(review_meeting.id, OTHER_USER_ID, 'Edit')

        assert outcome.recorded is False
        assert outcome.conflict.holder_user_id == USER_ID
