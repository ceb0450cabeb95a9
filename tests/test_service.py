"""
Tests for ReconciliationService.

Exercises the full commit path against the in-memory store:
- Happy path (Processing -> Review, entities written, payloads stored)
- Validation and conflict failures move the meeting to Failed
- Stale and concurrent submissions
- Model-driven processing and reprocessing
- Logical delete cascade
- Manual decision supersede
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ADMIN_ID, OTHER_PROJECT_ID, OTHER_USER_ID, PROJECT_ID, USER_ID
from fakes import action_item, decision, make_payload, risk

from pmo_reconciler.errors import (
    AuthorizationError,
    ContractValidationError,
    DecisionNotFoundError,
    InvalidTransitionError,
    MeetingNotFoundError,
    ModelTimeoutError,
    ReconciliationConflictError,
    ReviewLockHeldError,
)
from pmo_reconciler.models.entities import Decision
from pmo_reconciler.models.enums import (
    DecisionCategory,
    DecisionImpactArea,
    DecisionStatus,
    EntityKind,
    MeetingCategory,
    MeetingStatus,
    OwnerResolutionStatus,
)
from pmo_reconciler.models.lock import ReviewLock
from pmo_reconciler.models.meeting import Meeting, MeetingUpdateKind, ProjectMember
from pmo_reconciler.service import ReconciliationService
from pmo_reconciler.utils import utcnow, uuid7


def _full_payload(**kwargs) -> dict:
    return make_payload(
        action_items=[action_item('Send rollout checklist', due_date='2024-05-10')],
        decisions=[decision('Adopt Postgres 16')],
        risks=[risk('Vendor contract renewal')],
        **kwargs,
    )


def _manual_decision(title: str, project_id=PROJECT_ID, **kwargs) -> Decision:
    kwargs.setdefault('status', DecisionStatus.APPROVED)
    return Decision(
        project_id=project_id,
        title=title,
        category=DecisionCategory.PROCESS_OP_MODEL,
        impact_areas=[DecisionImpactArea.TIME_SCHEDULE],
        **kwargs,
    )


@pytest.fixture
def extractor():
    mock = MagicMock()
    mock.run_extraction = AsyncMock(return_value=_full_payload())
    return mock


@pytest.fixture
def model_service(store, engine, authorizer, extractor) -> ReconciliationService:
    return ReconciliationService(store, engine, authorizer, extractor=extractor)


# =============================================================================
# submit_extraction
# =============================================================================


class TestSubmitExtraction:
    @pytest.mark.asyncio
    async def test_happy_path(self, service, store, processing_meeting):
        meeting = processing_meeting()

        result = await service.submit_extraction(meeting.id, _full_payload(), USER_ID)

        assert result.created_count == 3
        assert len(store.entities_of(EntityKind.ACTION_ITEM)) == 1
        assert len(store.entities_of(EntityKind.DECISION)) == 1
        assert len(store.entities_of(EntityKind.RISK)) == 1

        stored = store.meetings[meeting.id]
        assert stored.status == MeetingStatus.REVIEW
        assert stored.processed_at is not None
        assert stored.recap['summary'] == 'Discussed delivery.'
        assert stored.fishbone['enabled'] is False
        assert stored.updates[-1].message.startswith('Processed: 3 created')
        assert stored.updates[-1].actor_user_id == USER_ID
        for entity in store.entities.values():
            assert entity.source_meeting_id == meeting.id
            assert entity.project_id == PROJECT_ID

    @pytest.mark.asyncio
    async def test_missing_title_and_date_taken_from_payload(self, service, store):
        meeting = Meeting(project_id=PROJECT_ID, status=MeetingStatus.PROCESSING)
        store.meetings[meeting.id] = meeting

        await service.submit_extraction(meeting.id, _full_payload())

        stored = store.meetings[meeting.id]
        assert stored.title == 'Weekly sync'
        assert stored.date.isoformat() == '2024-05-01'
        assert stored.category == MeetingCategory.PROJECT

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_meeting(self, service, store, processing_meeting):
        meeting = processing_meeting()
        payload = make_payload(action_items=[action_item('Send rollout checklist', quotes=[])])

        with pytest.raises(ContractValidationError) as exc_info:
            await service.submit_extraction(meeting.id, payload)

        assert 'action_items[0].evidence' in exc_info.value.paths
        stored = store.meetings[meeting.id]
        assert stored.status == MeetingStatus.FAILED
        assert stored.failure_reason_code == 'validation_failed'
        assert store.entities == {}

    @pytest.mark.asyncio
    async def test_stored_category_drives_fishbone_rule(self, service, store, processing_meeting):
        meeting = processing_meeting(category=MeetingCategory.REMEDIATION)

        with pytest.raises(ContractValidationError) as exc_info:
            await service.submit_extraction(meeting.id, _full_payload(category='Project'))

        assert 'fishbone.enabled' in exc_info.value.paths
        assert store.meetings[meeting.id].status == MeetingStatus.FAILED

    @pytest.mark.asyncio
    async def test_conflict_rolls_back_and_fails_meeting(self, service, store, processing_meeting):
        meeting = processing_meeting()
        payload = make_payload(
            action_items=[action_item('Send rollout checklist')],
            decisions=[decision('Adopt Postgres 16', operation='supersede', supersedes='d-404')],
        )

        with pytest.raises(ReconciliationConflictError):
            await service.submit_extraction(meeting.id, payload)

        assert store.entities == {}
        assert store.rollbacks == 1
        stored = store.meetings[meeting.id]
        assert stored.status == MeetingStatus.FAILED
        assert stored.failure_reason_code == 'reconciliation_conflict'

    @pytest.mark.asyncio
    async def test_stale_submission_rejected(self, service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)

        with pytest.raises(InvalidTransitionError):
            await service.submit_extraction(meeting.id, _full_payload())

        assert store.meetings[meeting.id].status == MeetingStatus.REVIEW
        assert store.entities == {}

    @pytest.mark.asyncio
    async def test_concurrent_submissions_commit_once(self, service, store, processing_meeting):
        meeting = processing_meeting()

        results = await asyncio.gather(
            service.submit_extraction(meeting.id, _full_payload()),
            service.submit_extraction(meeting.id, _full_payload()),
            return_exceptions=True,
        )

        committed = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(committed) == 1
        assert len(rejected) == 1
        assert isinstance(rejected[0], InvalidTransitionError)
        assert len(store.entities) == 3

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, service):
        with pytest.raises(MeetingNotFoundError):
            await service.submit_extraction(uuid7(), _full_payload())

    @pytest.mark.asyncio
    async def test_second_meeting_updates_instead_of_duplicating(self, service, store, processing_meeting):
        first = processing_meeting()
        await service.submit_extraction(first.id, _full_payload())
        second = processing_meeting()

        result = await service.submit_extraction(second.id, _full_payload())

        assert result.created_count == 0
        assert result.updated_count == 3
        assert len(store.entities) == 3

    @pytest.mark.asyncio
    async def test_owners_resolved_against_project_members(self, service, store, processing_meeting):
        store.add_member(PROJECT_ID, ProjectMember(user_id=USER_ID, email='alex@example.com', full_name='Alex Chen'))
        meeting = processing_meeting()
        payload = make_payload(
            action_items=[action_item('Send rollout checklist', owner_email='alex@example.com')],
            decisions=[decision('Adopt Postgres 16')],
        )

        await service.submit_extraction(meeting.id, payload)

        [item] = store.entities_of(EntityKind.ACTION_ITEM)
        assert item.owner.user_id == USER_ID
        assert item.owner.resolution_status == OwnerResolutionStatus.RESOLVED
        [made] = store.entities_of(EntityKind.DECISION)
        assert made.decision_maker.user_id is None
        assert made.decision_maker.resolution_status == OwnerResolutionStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_later_unlinked_mention_keeps_owner_link(self, service, store, processing_meeting):
        store.add_member(PROJECT_ID, ProjectMember(user_id=USER_ID, email='alex@example.com', full_name='Alex Chen'))
        first = processing_meeting()
        await service.submit_extraction(
            first.id,
            make_payload(action_items=[action_item('Send rollout checklist', owner_email='alex@example.com')]),
        )
        store.members.clear()
        second = processing_meeting()

        await service.submit_extraction(
            second.id, make_payload(action_items=[action_item('Send rollout checklist')])
        )

        [item] = store.entities_of(EntityKind.ACTION_ITEM)
        assert item.owner.user_id == USER_ID
        assert item.owner.resolution_status == OwnerResolutionStatus.RESOLVED


# =============================================================================
# Processing and reprocessing
# =============================================================================


class TestProcessing:
    @pytest.mark.asyncio
    async def test_process_meeting_runs_extractor(self, model_service, extractor, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.DRAFT)

        await model_service.start_processing(meeting.id, USER_ID)
        result = await model_service.process_meeting(meeting.id, USER_ID)

        assert result.created_count == 3
        assert store.meetings[meeting.id].status == MeetingStatus.REVIEW
        transcript, category, existing = extractor.run_extraction.call_args.args
        assert transcript == meeting.transcript_text
        assert category == MeetingCategory.PROJECT
        assert set(existing) == {EntityKind.ACTION_ITEM, EntityKind.DECISION, EntityKind.RISK}

    @pytest.mark.asyncio
    async def test_model_failure_fails_meeting(self, model_service, extractor, store, processing_meeting):
        meeting = processing_meeting()
        extractor.run_extraction.side_effect = ModelTimeoutError('Model call timed out')

        with pytest.raises(ModelTimeoutError):
            await model_service.process_meeting(meeting.id)

        stored = store.meetings[meeting.id]
        assert stored.status == MeetingStatus.FAILED
        assert stored.failure_reason_code == 'model_timeout'

    @pytest.mark.asyncio
    async def test_process_requires_extractor(self, service, processing_meeting):
        meeting = processing_meeting()

        with pytest.raises(RuntimeError):
            await service.process_meeting(meeting.id)

    @pytest.mark.asyncio
    async def test_failed_meeting_can_be_retried(self, model_service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.FAILED)

        result = await model_service.reprocess(meeting.id, USER_ID)

        assert result.created_count == 3
        assert store.meetings[meeting.id].status == MeetingStatus.REVIEW

    @pytest.mark.asyncio
    async def test_reprocess_review_requires_discard(self, service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)

        with pytest.raises(InvalidTransitionError):
            await service.reprocess(meeting.id, USER_ID)

        assert store.meetings[meeting.id].status == MeetingStatus.REVIEW

    @pytest.mark.asyncio
    async def test_reprocess_review_drops_lock(self, service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)
        now = utcnow()
        store.locks[meeting.id] = ReviewLock(
            meeting_id=meeting.id, holder_user_id=OTHER_USER_ID, acquired_at=now, expires_at=now
        )

        result = await service.reprocess(meeting.id, USER_ID, discard_review_edits=True)

        assert result is None
        stored = store.meetings[meeting.id]
        assert stored.status == MeetingStatus.PROCESSING
        assert stored.updates[-1].kind == MeetingUpdateKind.REVIEW_DISCARDED
        assert meeting.id not in store.locks

    @pytest.mark.asyncio
    async def test_reprocess_blocked_by_active_lock_of_other_user(
        self, service, store, processing_meeting
    ):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)
        now = utcnow()
        store.locks[meeting.id] = ReviewLock(
            meeting_id=meeting.id,
            holder_user_id=OTHER_USER_ID,
            acquired_at=now,
            expires_at=now + timedelta(minutes=30),
        )

        with pytest.raises(ReviewLockHeldError) as exc_info:
            await service.reprocess(meeting.id, USER_ID, discard_review_edits=True)

        assert exc_info.value.reason_code.value == 'lock_conflict'
        assert exc_info.value.context['holder_user_id'] == str(OTHER_USER_ID)
        assert store.meetings[meeting.id].status == MeetingStatus.REVIEW
        assert store.locks[meeting.id].holder_user_id == OTHER_USER_ID

    @pytest.mark.asyncio
    async def test_reprocess_with_own_active_lock(self, service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)
        now = utcnow()
        store.locks[meeting.id] = ReviewLock(
            meeting_id=meeting.id,
            holder_user_id=USER_ID,
            acquired_at=now,
            expires_at=now + timedelta(minutes=30),
        )

        await service.reprocess(meeting.id, USER_ID, discard_review_edits=True)

        assert store.meetings[meeting.id].status == MeetingStatus.PROCESSING
        assert meeting.id not in store.locks

    @pytest.mark.asyncio
    async def test_reprocess_requires_membership(self, service, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.FAILED, project_id=OTHER_PROJECT_ID)

        with pytest.raises(AuthorizationError):
            await service.reprocess(meeting.id, USER_ID)

    @pytest.mark.asyncio
    async def test_admin_may_reprocess_any_project(self, service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.FAILED, project_id=OTHER_PROJECT_ID)

        await service.reprocess(meeting.id, ADMIN_ID)

        assert store.meetings[meeting.id].status == MeetingStatus.PROCESSING


# =============================================================================
# Delete
# =============================================================================


class TestDeleteMeeting:
    @pytest.mark.asyncio
    async def test_delete_cascades_to_entities(self, service, store, processing_meeting):
        meeting = processing_meeting()
        await service.submit_extraction(meeting.id, _full_payload())

        deleted = await service.delete_meeting(meeting.id, USER_ID)

        assert deleted == 3
        assert store.meetings[meeting.id].status == MeetingStatus.DELETED
        assert all(e.deleted_at is not None for e in store.entities.values())
        assert store.entities_of(EntityKind.ACTION_ITEM) == []

    @pytest.mark.asyncio
    async def test_deleted_entities_no_longer_match(self, service, store, processing_meeting):
        first = processing_meeting()
        await service.submit_extraction(first.id, _full_payload())
        await service.delete_meeting(first.id, USER_ID)
        second = processing_meeting()

        result = await service.submit_extraction(second.id, _full_payload())

        assert result.created_count == 3
        assert len(store.entities_of(EntityKind.ACTION_ITEM, include_deleted=True)) == 2

    @pytest.mark.asyncio
    async def test_delete_removes_lock(self, service, store, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)
        now = utcnow()
        store.locks[meeting.id] = ReviewLock(
            meeting_id=meeting.id, holder_user_id=USER_ID, acquired_at=now, expires_at=now
        )

        await service.delete_meeting(meeting.id, USER_ID)

        assert meeting.id not in store.locks

    @pytest.mark.asyncio
    async def test_delete_blocked_by_active_lock_of_other_user(
        self, service, store, processing_meeting
    ):
        meeting = processing_meeting(status=MeetingStatus.REVIEW)
        now = utcnow()
        store.locks[meeting.id] = ReviewLock(
            meeting_id=meeting.id,
            holder_user_id=OTHER_USER_ID,
            acquired_at=now,
            expires_at=now + timedelta(minutes=30),
        )

        with pytest.raises(ReviewLockHeldError):
            await service.delete_meeting(meeting.id, USER_ID)

        assert store.meetings[meeting.id].status == MeetingStatus.REVIEW
        assert meeting.id in store.locks

    @pytest.mark.asyncio
    async def test_delete_is_terminal(self, service, processing_meeting):
        meeting = processing_meeting(status=MeetingStatus.DELETED)

        with pytest.raises(InvalidTransitionError):
            await service.delete_meeting(meeting.id, USER_ID)

    @pytest.mark.asyncio
    async def test_delete_requires_membership(self, service, store, processing_meeting):
        meeting = processing_meeting(project_id=OTHER_PROJECT_ID)

        with pytest.raises(AuthorizationError):
            await service.delete_meeting(meeting.id, OTHER_USER_ID)

        assert store.meetings[meeting.id].status == MeetingStatus.PROCESSING


# =============================================================================
# Manual supersede
# =============================================================================


class TestSupersedeDecision:
    @pytest.mark.asyncio
    async def test_supersede(self, service, store):
        old = store.add_entity(_manual_decision('Quarterly releases'))
        new = store.add_entity(_manual_decision('Monthly releases'))

        result = await service.supersede_decision(old.id, new.id, USER_ID)

        assert result.status == DecisionStatus.SUPERSEDED
        stored = store.entities[old.id]
        assert stored.status == DecisionStatus.SUPERSEDED
        assert stored.superseded_by_id == new.id
        entry = stored.updates[-1]
        assert entry.source == 'manual'
        assert entry.created_by_user_id == USER_ID
        assert entry.content == 'Status: APPROVED → SUPERSEDED; superseded by "Monthly releases".'

    @pytest.mark.asyncio
    async def test_self_supersede_rejected(self, service, store):
        old = store.add_entity(_manual_decision('Quarterly releases'))

        with pytest.raises(ReconciliationConflictError):
            await service.supersede_decision(old.id, old.id, USER_ID)

    @pytest.mark.asyncio
    async def test_successor_must_be_approved(self, service, store):
        old = store.add_entity(_manual_decision('Quarterly releases'))
        new = store.add_entity(_manual_decision('Monthly releases', status=DecisionStatus.PROPOSED))

        with pytest.raises(ReconciliationConflictError, match='APPROVED'):
            await service.supersede_decision(old.id, new.id, USER_ID)

        assert store.entities[old.id].status == DecisionStatus.APPROVED

    @pytest.mark.asyncio
    async def test_already_superseded_rejected(self, service, store):
        newer = store.add_entity(_manual_decision('Weekly releases'))
        old = store.add_entity(
            _manual_decision(
                'Quarterly releases', status=DecisionStatus.SUPERSEDED, superseded_by_id=newer.id
            )
        )
        new = store.add_entity(_manual_decision('Monthly releases'))

        with pytest.raises(ReconciliationConflictError, match='already superseded'):
            await service.supersede_decision(old.id, new.id, USER_ID)

    @pytest.mark.asyncio
    async def test_cross_project_rejected(self, service, store):
        old = store.add_entity(_manual_decision('Quarterly releases'))
        new = store.add_entity(_manual_decision('Monthly releases', project_id=OTHER_PROJECT_ID))

        with pytest.raises(ReconciliationConflictError, match='different projects'):
            await service.supersede_decision(old.id, new.id, USER_ID)

    @pytest.mark.asyncio
    async def test_missing_decision(self, service, store):
        new = store.add_entity(_manual_decision('Monthly releases'))

        with pytest.raises(DecisionNotFoundError):
            await service.supersede_decision(uuid7(), new.id, USER_ID)

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, service, store):
        old = store.add_entity(_manual_decision('Quarterly releases', project_id=OTHER_PROJECT_ID))
        new = store.add_entity(_manual_decision('Monthly releases', project_id=OTHER_PROJECT_ID))

        with pytest.raises(AuthorizationError):
            await service.supersede_decision(old.id, new.id, USER_ID)
