"""
Reconciliation service: the operations exposed to callers and the API.

Provides:
1. submit_extraction: validate, reconcile and commit one meeting's extraction
2. start_processing / process_meeting: drive a meeting through the model
3. reprocess: send a Failed or Review meeting back through extraction
4. delete_meeting: logical delete cascading to derived entities
5. supersede_decision: manual decision supersede

Validation and reconciliation conflicts are recovered at the meeting level:
the reconciliation transaction rolls back, the meeting moves to Failed with
the reason code in a separate transaction, and the error is re-raised so
the caller sees the reason.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable
from uuid import UUID

from .config import config
from .errors import (
    AuthorizationError,
    ContractValidationError,
    DecisionNotFoundError,
    InvalidTransitionError,
    MeetingNotFoundError,
    ModelInvocationError,
    ReconcilerError,
    ReconciliationConflictError,
    ReviewLockHeldError,
)
from .lifecycle import transition
from .logging import PipelineTimer, get_logger, logging_context
from .models.contract import ExtractionContract
from .models.entities import Decision, EntityUpdate, TrackedEntity
from .models.enums import DecisionStatus, EntityKind, MeetingCategory, MeetingStatus
from .models.meeting import Meeting
from .models.operations import ReconciliationResult
from .pipeline.extractor import MeetingExtractor
from .pipeline.owners import OwnerRoster
from .pipeline.reconciler import ReconciliationEngine
from .pipeline.validator import validate_contract
from .store.authorizer import Authorizer
from .utils import utcnow

logger = get_logger(__name__)

_KINDS = (EntityKind.ACTION_ITEM, EntityKind.DECISION, EntityKind.RISK)


class ReconciliationService:
    """
    Orchestrates validation, reconciliation and the meeting lifecycle.

    Usage:
        service = ReconciliationService(store, engine, authorizer, extractor)
        await service.start_processing(meeting_id)
        result = await service.submit_extraction(meeting_id, payload)
    """

    def __init__(
        self,
        store: Any,
        engine: ReconciliationEngine,
        authorizer: Authorizer,
        extractor: MeetingExtractor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the service.

        Args:
            store: MeetingStore (or a compatible in-memory store)
            engine: Reconciliation engine with its similarity service
            authorizer: Membership and admin checks
            extractor: Model extraction; required by process_meeting / reprocess
            clock: Returns the current time
        """
        self.store = store
        self.engine = engine
        self.authorizer = authorizer
        self.extractor = extractor
        self.clock = clock

    # =========================================================================
    # Extraction commit
    # =========================================================================

    async def submit_extraction(
        self,
        meeting_id: UUID,
        raw_payload: Any,
        actor_user_id: UUID | None = None,
    ) -> ReconciliationResult:
        """
        Validate a raw model payload and fold it into the project record.

        Embeddings are computed before the meeting row is locked. The commit
        requires the meeting to still be Processing, so a concurrent run or
        a late stale batch is rejected.

        Args:
            meeting_id: Meeting the payload was extracted from
            raw_payload: Unvalidated model output
            actor_user_id: User who triggered processing, if any

        Returns:
            ReconciliationResult with created/updated/closed/superseded ids

        Raises:
            MeetingNotFoundError: No such meeting
            InvalidTransitionError: Meeting is not Processing (stale or concurrent run)
            ContractValidationError: Payload rejected (meeting moved to Failed)
            ReconciliationConflictError: Ambiguous match or bad supersede (meeting moved to Failed)
            StorageError: Database failure
        """
        timer = PipelineTimer()
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError('Meeting not found', context={'meeting_id': str(meeting_id)})

        with logging_context(meeting_id=str(meeting_id), project_id=str(meeting.project_id)):
            self._require_processing(meeting)
            logger.info('service.submit_started')

            try:
                with timer.stage('validation'):
                    contract = validate_contract(raw_payload, category=meeting.category)
            except ContractValidationError as e:
                await self.fail_meeting(meeting_id, e, actor_user_id)
                raise

            with timer.stage('embedding'):
                mentions = self.engine.collect_mentions(contract, meeting_id)
                degraded = await self.engine.embed_mentions(mentions)

            try:
                with timer.stage('reconciliation'):
                    result = await self._commit(
                        meeting_id, contract, mentions, degraded, actor_user_id
                    )
            except ReconciliationConflictError as e:
                await self.fail_meeting(meeting_id, e, actor_user_id)
                raise

            logger.info(
                'service.submit_completed',
                created=result.created_count,
                updated=result.updated_count,
                closed=result.closed_count,
                superseded=result.superseded_count,
                skipped=len(result.skipped),
                **timer.summary(),
            )
            return result

    async def _commit(
        self,
        meeting_id: UUID,
        contract: ExtractionContract,
        mentions: dict,
        degraded: bool,
        actor_user_id: UUID | None,
    ) -> ReconciliationResult:
        async with self.store.meeting_transaction(meeting_id, lock_project=True) as tx:
            meeting = tx.meeting
            self._require_processing(meeting)
            now = self.clock()

            existing: dict[EntityKind, list[TrackedEntity]] = {}
            for kind in _KINDS:
                existing[kind] = await tx.list_entities(kind, meeting.project_id)

            roster = OwnerRoster(
                members=await tx.list_project_members(meeting.project_id),
                attendees=list(contract.meeting.attendees),
            )
            self.engine.resolve_owners(mentions, roster)

            plan = self.engine.plan(
                meeting_id, meeting.project_id, mentions, existing, degraded, now=now
            )
            result = await self.engine.apply(tx, plan, existing, now=now)

            self._store_payloads(meeting, contract)
            transition(
                meeting,
                MeetingStatus.REVIEW,
                actor_user_id=actor_user_id,
                message=(
                    f"Processed: {result.created_count} created, {result.updated_count} updated, "
                    f"{result.closed_count} closed, {result.superseded_count} superseded"
                ),
                now=now,
            )
            await tx.save_meeting()
        return result

    @staticmethod
    def _store_payloads(meeting: Meeting, contract: ExtractionContract) -> None:
        meeting.recap = contract.recap.model_dump(mode='json')
        meeting.tone = contract.tone.model_dump(mode='json')
        meeting.fishbone = contract.fishbone.model_dump(mode='json')
        if not meeting.title:
            meeting.title = contract.meeting.title
        if meeting.date is None:
            meeting.date = date.fromisoformat(contract.meeting.date)
        if meeting.category is None:
            meeting.category = contract.meeting.category

    @staticmethod
    def _require_processing(meeting: Meeting) -> None:
        if meeting.status != MeetingStatus.PROCESSING:
            raise InvalidTransitionError(
                f"Meeting is {meeting.status.value}; extraction can only be committed while Processing",
                context={'meeting_id': str(meeting.id), 'status': meeting.status.value},
            )

    async def fail_meeting(
        self, meeting_id: UUID, error: ReconcilerError, actor_user_id: UUID | None = None
    ) -> None:
        """Move a Processing meeting to Failed, keeping the reason."""
        async with self.store.meeting_transaction(meeting_id) as tx:
            if tx.meeting.status != MeetingStatus.PROCESSING:
                return
            transition(
                tx.meeting,
                MeetingStatus.FAILED,
                actor_user_id=actor_user_id,
                message=error.message,
                reason_code=error.reason_code.value,
                now=self.clock(),
            )
            await tx.save_meeting()
        logger.warning(
            'service.meeting_failed',
            meeting_id=str(meeting_id),
            reason_code=error.reason_code.value,
            error=str(error),
        )

    # =========================================================================
    # Processing
    # =========================================================================

    async def start_processing(
        self, meeting_id: UUID, actor_user_id: UUID | None = None
    ) -> Meeting:
        """
        Move a Draft or Failed meeting to Processing.

        Raises:
            InvalidTransitionError: Meeting is in any other status
        """
        async with self.store.meeting_transaction(meeting_id) as tx:
            transition(
                tx.meeting, MeetingStatus.PROCESSING, actor_user_id=actor_user_id, now=self.clock()
            )
            await tx.save_meeting()
            return tx.meeting

    async def process_meeting(
        self, meeting_id: UUID, actor_user_id: UUID | None = None
    ) -> ReconciliationResult:
        """
        Run the model over a Processing meeting's transcript and commit the result.

        A model failure moves the meeting to Failed with the model's reason
        code and is re-raised.

        Raises:
            ModelInvocationError: Model call failed (meeting moved to Failed)
            plus everything submit_extraction raises
        """
        if self.extractor is None:
            raise RuntimeError('process_meeting requires a MeetingExtractor')

        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError('Meeting not found', context={'meeting_id': str(meeting_id)})
        self._require_processing(meeting)

        existing = {kind: await self.store.list_entities(kind, meeting.project_id) for kind in _KINDS}
        try:
            payload = await self.extractor.run_extraction(
                meeting.transcript_text or '',
                meeting.category or MeetingCategory(config.DEFAULT_MEETING_CATEGORY),
                existing,
            )
        except ModelInvocationError as e:
            await self.fail_meeting(meeting_id, e, actor_user_id)
            raise

        return await self.submit_extraction(meeting_id, payload, actor_user_id)

    async def reprocess(
        self,
        meeting_id: UUID,
        user_id: UUID,
        discard_review_edits: bool = False,
    ) -> ReconciliationResult | None:
        """
        Send a meeting back through extraction.

        A meeting under review only goes back with discard_review_edits=True;
        its review lock is dropped in the same transaction. An active lock
        held by another user blocks the reprocess. A Failed meeting is
        retried. When no extractor is configured the meeting is left in
        Processing for an external worker to submit.

        Raises:
            AuthorizationError: Caller is neither a project member nor an admin
            InvalidTransitionError: Meeting cannot be reprocessed from its status
            ReviewLockHeldError: Another user holds an active review lock
        """
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError('Meeting not found', context={'meeting_id': str(meeting_id)})
        await self._authorize(user_id, meeting.project_id)

        async with self.store.meeting_transaction(meeting_id) as tx:
            now = self.clock()
            await self._require_no_foreign_lock(tx, meeting_id, user_id, now)
            was_review = tx.meeting.status == MeetingStatus.REVIEW
            transition(
                tx.meeting,
                MeetingStatus.PROCESSING,
                actor_user_id=user_id,
                message='Reprocessing requested',
                discard_review_edits=discard_review_edits,
                now=now,
            )
            await tx.save_meeting()
            if was_review:
                await tx.delete_lock(meeting_id)

        logger.info('service.reprocess_started', meeting_id=str(meeting_id), user_id=str(user_id))
        if self.extractor is None:
            return None
        return await self.process_meeting(meeting_id, actor_user_id=user_id)

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete_meeting(self, meeting_id: UUID, user_id: UUID) -> int:
        """
        Logically delete a meeting and every entity it created.

        The meeting row stays (status Deleted); derived entities get a
        deleted_at marker and the review lock is removed. An active lock held
        by another user blocks the delete.

        Returns:
            Number of entities marked deleted

        Raises:
            AuthorizationError: Caller is neither a project member nor an admin
            InvalidTransitionError: Meeting is already Deleted
            ReviewLockHeldError: Another user holds an active review lock
        """
        meeting = await self.store.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError('Meeting not found', context={'meeting_id': str(meeting_id)})
        await self._authorize(user_id, meeting.project_id)

        async with self.store.meeting_transaction(meeting_id) as tx:
            now = self.clock()
            await self._require_no_foreign_lock(tx, meeting_id, user_id, now)
            transition(tx.meeting, MeetingStatus.DELETED, actor_user_id=user_id, now=now)
            deleted = await tx.mark_entities_deleted(meeting_id, now)
            await tx.delete_lock(meeting_id)
            await tx.save_meeting()

        logger.info(
            'service.meeting_deleted',
            meeting_id=str(meeting_id),
            user_id=str(user_id),
            entities_deleted=deleted,
        )
        return deleted

    # =========================================================================
    # Manual decision supersede
    # =========================================================================

    async def supersede_decision(
        self, decision_id: UUID, superseded_by_id: UUID, user_id: UUID
    ) -> Decision:
        """
        Mark a decision as replaced by another approved decision.

        Rules: not self, both decisions exist in the same project, the
        predecessor is not already superseded, the successor is APPROVED
        and not itself superseded, and the caller is a project member or
        an administrator.

        Returns:
            The superseded decision

        Raises:
            DecisionNotFoundError: Either decision is missing or deleted
            AuthorizationError: Caller may not modify the project
            ReconciliationConflictError: A supersede rule is violated
        """
        context = {'decision_id': str(decision_id), 'superseded_by_id': str(superseded_by_id)}
        if decision_id == superseded_by_id:
            raise ReconciliationConflictError('Decision cannot supersede itself', context=context)

        current = await self.store.get_entity(decision_id)
        if not isinstance(current, Decision) or current.is_deleted:
            raise DecisionNotFoundError('Decision not found', context=context)
        await self._authorize(user_id, current.project_id)

        async with self.store.project_transaction(current.project_id) as tx:
            decision = await tx.get_entity(decision_id, for_update=True)
            successor = await tx.get_entity(superseded_by_id, for_update=True)
            if not isinstance(decision, Decision) or decision.is_deleted:
                raise DecisionNotFoundError('Decision not found', context=context)
            if not isinstance(successor, Decision) or successor.is_deleted:
                raise DecisionNotFoundError('Superseding decision not found', context=context)
            if successor.project_id != decision.project_id:
                raise ReconciliationConflictError(
                    'Decisions belong to different projects', context=context
                )
            if decision.status == DecisionStatus.SUPERSEDED:
                raise ReconciliationConflictError('Decision is already superseded', context=context)
            if successor.status == DecisionStatus.SUPERSEDED:
                raise ReconciliationConflictError(
                    'Superseding decision is itself superseded', context=context
                )
            if successor.status != DecisionStatus.APPROVED:
                raise ReconciliationConflictError(
                    'Superseding decision must be APPROVED', context=context
                )

            now = self.clock()
            previous = decision.status
            decision.status = DecisionStatus.SUPERSEDED
            decision.superseded_by_id = successor.id
            decision.updated_at = now
            decision.updates.append(
                EntityUpdate(
                    content=(
                        f"Status: {previous.value} → {DecisionStatus.SUPERSEDED.value}; "
                        f"superseded by \"{successor.title}\"."
                    ),
                    source='manual',
                    created_by_user_id=user_id,
                    created_at=now,
                )
            )
            await tx.save_entity(decision)

        logger.info(
            'service.decision_superseded',
            decision_id=str(decision_id),
            superseded_by_id=str(superseded_by_id),
            user_id=str(user_id),
        )
        return decision

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _authorize(self, user_id: UUID, project_id: UUID) -> None:
        if await self.authorizer.is_project_member(user_id, project_id):
            return
        if await self.authorizer.is_admin(user_id):
            return
        raise AuthorizationError(
            'User may not modify this project',
            context={'user_id': str(user_id), 'project_id': str(project_id)},
        )

    @staticmethod
    async def _require_no_foreign_lock(
        tx: Any, meeting_id: UUID, user_id: UUID, now: datetime
    ) -> None:
        """Reject when another user holds an active review lock on the meeting."""
        current = await tx.get_lock(meeting_id)
        if current is None or not current.is_active(now) or current.holder_user_id == user_id:
            return
        logger.info(
            'service.review_lock_held',
            meeting_id=str(meeting_id),
            user_id=str(user_id),
            holder_user_id=str(current.holder_user_id),
        )
        raise ReviewLockHeldError(
            'Another user holds the review lock',
            context={
                'meeting_id': str(meeting_id),
                'holder_user_id': str(current.holder_user_id),
                'expires_at': current.expires_at.isoformat(),
            },
        )
