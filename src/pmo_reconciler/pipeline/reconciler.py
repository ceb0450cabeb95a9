"""
Reconciliation Engine: fold a validated extraction into the project record.

Three stages, all for one meeting:
1. collect_mentions: correlate repeated mentions by external_id
2. plan: decide create / update / close / supersede per mention against the
   current project snapshot (pure; raises ReconciliationConflictError)
3. apply: execute the plan inside the caller's meeting transaction

Embeddings for mentions are computed between (1) and (2) so no provider
call happens while the meeting row is locked.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from ..config import config
from ..errors import EmbeddingUnavailableError, ReconciliationConflictError
from ..logging import get_logger
from ..models.contract import ExtractionContract
from ..models.entities import Decision, Owner, TrackedEntity
from ..models.enums import DecisionStatus, EntityKind, Operation
from ..models.operations import (
    CloseOperation,
    CreateOperation,
    ReconciliationPlan,
    ReconciliationResult,
    SkippedMention,
    SupersedeOperation,
    UpdateOperation,
)
from ..utils import utcnow, uuid7
from .kinds import (
    DEFAULT_ADAPTERS,
    EntityKindAdapter,
    MatchCandidate,
    Mention,
    OperationContext,
)
from .owners import OwnerResolver, OwnerRoster
from .similarity import SimilarityService

logger = get_logger(__name__)

_CONTRACT_LISTS = {
    EntityKind.ACTION_ITEM: 'action_items',
    EntityKind.DECISION: 'decisions',
    EntityKind.RISK: 'risks',
}

_OWNER_FIELDS = ('owner', 'decision_maker')


@dataclass
class _PlannedEntity:
    """Stand-in for an entity created earlier in the same run."""

    id: UUID
    title: str
    embedding: list[float] | None
    updated_at: datetime
    is_open: bool = True


class _KindState:
    """Working view of one kind while a plan is built."""

    def __init__(self, entities: list[TrackedEntity]):
        live = [e for e in entities if not e.is_deleted]
        self.by_id: dict[UUID, TrackedEntity] = {e.id: e for e in live}
        self.by_external_id: dict[str, TrackedEntity] = {}
        for entity in sorted(live, key=lambda e: e.updated_at):
            if entity.external_id:
                # Most recently updated wins when an external_id was reused
                self.by_external_id[entity.external_id] = entity
        self.planned: list[_PlannedEntity] = []
        self.run_external_ids: dict[str, UUID] = {}
        self.closed_in_run: set[UUID] = set()
        self.superseded_by: dict[UUID, UUID] = {
            e.id: e.superseded_by_id
            for e in live
            if isinstance(e, Decision) and e.superseded_by_id is not None
        }

    @property
    def candidates(self) -> list[Any]:
        return list(self.by_id.values()) + self.planned

    def is_open(self, entity_id: UUID) -> bool:
        if entity_id in self.closed_in_run or entity_id in self.superseded_by:
            return False
        entity = self.by_id.get(entity_id)
        return entity.is_open if entity is not None else True

    def is_superseded(self, entity_id: UUID) -> bool:
        if entity_id in self.superseded_by:
            return True
        entity = self.by_id.get(entity_id)
        return isinstance(entity, Decision) and entity.status == DecisionStatus.SUPERSEDED

    def supersede_chain_reaches(self, start: UUID, target: UUID) -> bool:
        """Follow superseded_by links from start; True if target is on the chain."""
        seen: set[UUID] = set()
        current: UUID | None = start
        while current is not None and current not in seen:
            if current == target:
                return True
            seen.add(current)
            current = self.superseded_by.get(current)
        return False


class ReconciliationEngine:
    """
    Generic reconciliation routine parameterised over EntityKindAdapters.

    Usage:
        engine = ReconciliationEngine(similarity_service)
        mentions = engine.collect_mentions(contract, meeting_id)
        degraded = await engine.embed_mentions(mentions)
        plan = engine.plan(meeting_id, project_id, mentions, existing, degraded)
        result = await engine.apply(tx, plan, existing)
    """

    def __init__(
        self,
        similarity: SimilarityService,
        adapters: dict[EntityKind, EntityKindAdapter] | None = None,
        threshold: float | None = None,
        owner_resolver: OwnerResolver | None = None,
    ):
        self.similarity = similarity
        self.adapters = adapters or DEFAULT_ADAPTERS
        self.owner_resolver = owner_resolver or OwnerResolver()
        if threshold is not None:
            self.threshold = threshold
        elif similarity is not None:
            self.threshold = similarity.threshold
        else:
            self.threshold = config.SIMILARITY_THRESHOLD

    # =========================================================================
    # Stage 1: in-run correlation
    # =========================================================================

    def collect_mentions(
        self, contract: ExtractionContract, meeting_id: UUID
    ) -> dict[EntityKind, list[Mention]]:
        """
        Turn contract entries into mentions, merging entries that share an
        external_id. The first entry's operation stands; later entries
        overwrite fields and a later close ends the entity Closed.
        """
        mentions: dict[EntityKind, list[Mention]] = {}
        for kind, attr in _CONTRACT_LISTS.items():
            adapter = self.adapters[kind]
            merged: list[Mention] = []
            by_external_id: dict[str, Mention] = {}
            for position, extracted in enumerate(getattr(contract, attr)):
                mention = adapter.mention_from_extracted(extracted, meeting_id, position)
                if mention.external_id and mention.external_id in by_external_id:
                    adapter.merge_mention(by_external_id[mention.external_id], mention)
                    continue
                if mention.external_id:
                    by_external_id[mention.external_id] = mention
                merged.append(mention)
            mentions[kind] = merged
        return mentions

    async def embed_mentions(self, mentions: dict[EntityKind, list[Mention]]) -> bool:
        """
        Attach vectors to mentions that may need similarity matching.

        Returns:
            True when similarity is degraded (no vectors were produced)
        """
        pending = [
            m
            for kind_mentions in mentions.values()
            for m in kind_mentions
            if m.operation != Operation.CLOSE or not m.external_id
        ]
        if not pending:
            return False
        texts = [self.adapters[m.kind].similarity_text(m.fields) for m in pending]
        try:
            vectors = await self.similarity.embed_many(texts)
        except EmbeddingUnavailableError as e:
            logger.warning('reconciler.similarity_degraded', error=e.message)
            return True
        for mention, vector in zip(pending, vectors):
            mention.embedding = vector
        return False

    def resolve_owners(
        self,
        mentions: dict[EntityKind, list[Mention]],
        roster: OwnerRoster,
    ) -> None:
        """Replace extracted owners (and decision makers) with resolved ones in place."""
        counts: dict[str, int] = {}
        for kind_mentions in mentions.values():
            for mention in kind_mentions:
                for name in _OWNER_FIELDS:
                    owner = mention.fields.get(name)
                    if not isinstance(owner, Owner):
                        continue
                    resolved = self.owner_resolver.resolve(owner, roster)
                    mention.fields[name] = resolved
                    if resolved.resolution_status is not None:
                        status = resolved.resolution_status.value
                        counts[status] = counts.get(status, 0) + 1
        if counts:
            logger.info('reconciler.owners_resolved', statuses=counts)

    # =========================================================================
    # Stage 2: planning
    # =========================================================================

    def plan(
        self,
        meeting_id: UUID,
        project_id: UUID,
        mentions: dict[EntityKind, list[Mention]],
        existing: dict[EntityKind, list[TrackedEntity]],
        similarity_degraded: bool = False,
        now: datetime | None = None,
    ) -> ReconciliationPlan:
        """
        Build the ordered operation set for one meeting.

        Args:
            meeting_id: Meeting being reconciled
            project_id: Owning project (entities of other projects are invisible)
            mentions: Output of collect_mentions (with embeddings, if any)
            existing: Current non-deleted entities of the project, per kind
            similarity_degraded: Skip embedding similarity (exact titles still match)
            now: Clock value used for planned entities

        Raises:
            ReconciliationConflictError: Ambiguous match, bad supersede, cycle
        """
        now = now or utcnow()
        plan = ReconciliationPlan(
            meeting_id=meeting_id,
            project_id=project_id,
            similarity_degraded=similarity_degraded,
        )
        if similarity_degraded:
            plan.warnings.append('Similarity unavailable: duplicate detection limited to exact titles')

        for kind in (EntityKind.ACTION_ITEM, EntityKind.DECISION, EntityKind.RISK):
            adapter = self.adapters[kind]
            state = _KindState(
                [e for e in existing.get(kind, []) if e.project_id == project_id]
            )
            kind_mentions = mentions.get(kind, [])

            for mention in kind_mentions:
                if mention.operation == Operation.SUPERSEDE:
                    continue
                self._plan_mention(plan, adapter, state, mention, similarity_degraded, now)

            for mention in kind_mentions:
                if mention.operation == Operation.SUPERSEDE:
                    self._plan_supersede(plan, adapter, state, mention, similarity_degraded, now)

        logger.info(
            'reconciler.plan_built',
            meeting_id=str(meeting_id),
            operations=len(plan.operations),
            skipped=len(plan.skipped),
            similarity_degraded=similarity_degraded,
        )
        return plan

    def _best_match(
        self,
        adapter: EntityKindAdapter,
        state: _KindState,
        mention: Mention,
        degraded: bool,
        exclude: set[UUID] | None = None,
    ) -> MatchCandidate | None:
        candidates = [c for c in state.candidates if state.is_open(c.id)]
        matches = adapter.match_candidates(
            mention,
            candidates,
            None if degraded else self.similarity.similarity,
            self.threshold,
            exclude=exclude,
        )
        if not matches:
            return None
        best = matches[0]
        for other in matches[1:]:
            if other.score != best.score or other.updated_at != best.updated_at:
                break
            if other.entity_id != best.entity_id:
                raise ReconciliationConflictError(
                    'Ambiguous duplicate match',
                    context={
                        'kind': adapter.kind.value,
                        'title': mention.title,
                        'candidates': [str(best.entity_id), str(other.entity_id)],
                        'score': best.score,
                    },
                )
        return best

    def _resolve_target(
        self,
        adapter: EntityKindAdapter,
        state: _KindState,
        mention: Mention,
        degraded: bool,
        exclude: set[UUID] | None = None,
    ) -> tuple[UUID | None, str | None, float | None]:
        """Find the entity a mention refers to: explicit reference, then match."""
        if mention.external_id:
            if mention.external_id in state.run_external_ids:
                return state.run_external_ids[mention.external_id], 'external_id', None
            entity = adapter.identify(mention.external_id, state.by_id, state.by_external_id)
            if entity is not None:
                matched_by = 'id' if str(entity.id) == mention.external_id else 'external_id'
                return entity.id, matched_by, None
        match = self._best_match(adapter, state, mention, degraded, exclude)
        if match is not None:
            return match.entity_id, match.matched_by, match.score
        return None, None, None

    def _plan_create(
        self, plan: ReconciliationPlan, state: _KindState, mention: Mention, now: datetime
    ) -> UUID:
        entity_id = uuid7()
        plan.operations.append(
            CreateOperation(
                kind=mention.kind,
                entity_id=entity_id,
                external_id=mention.external_id,
                payload=mention.fields,
                evidence=mention.evidence,
                embedding=mention.embedding,
            )
        )
        state.planned.append(
            _PlannedEntity(
                id=entity_id,
                title=mention.title,
                embedding=mention.embedding,
                updated_at=now,
                is_open=not mention.closes,
            )
        )
        if mention.closes:
            state.closed_in_run.add(entity_id)
        return entity_id

    def _plan_mention(
        self,
        plan: ReconciliationPlan,
        adapter: EntityKindAdapter,
        state: _KindState,
        mention: Mention,
        degraded: bool,
        now: datetime,
        exclude: set[UUID] | None = None,
    ) -> UUID | None:
        """Plan a create, update or close mention. Returns the resolved entity id."""
        target_id, matched_by, score = self._resolve_target(
            adapter, state, mention, degraded, exclude
        )

        if mention.operation == Operation.CLOSE:
            if target_id is None or not state.is_open(target_id):
                plan.skipped.append(
                    SkippedMention(
                        kind=mention.kind,
                        operation=mention.operation.value,
                        external_id=mention.external_id,
                        title=mention.title,
                        reason='already closed' if target_id else 'no matching open entity',
                    )
                )
                return target_id
            plan.operations.append(
                CloseOperation(
                    kind=mention.kind,
                    target_id=target_id,
                    external_id=mention.external_id,
                    evidence=mention.evidence,
                    matched_by=matched_by,
                    similarity_score=score,
                )
            )
            state.closed_in_run.add(target_id)
            if mention.external_id:
                state.run_external_ids[mention.external_id] = target_id
            return target_id

        if target_id is None:
            if mention.operation == Operation.UPDATE:
                plan.warnings.append(
                    f"{mention.kind.value} update '{mention.title}' had no target; created instead"
                )
            target_id = self._plan_create(plan, state, mention, now)
        else:
            plan.operations.append(
                UpdateOperation(
                    kind=mention.kind,
                    target_id=target_id,
                    external_id=mention.external_id,
                    payload=mention.fields,
                    evidence=mention.evidence,
                    embedding=mention.embedding,
                    matched_by=matched_by,
                    similarity_score=score,
                    closes=mention.closes,
                )
            )
            if mention.closes:
                state.closed_in_run.add(target_id)

        if mention.external_id:
            state.run_external_ids[mention.external_id] = target_id
        return target_id

    def _resolve_predecessor(self, state: _KindState, reference: str) -> UUID | None:
        if reference in state.run_external_ids:
            return state.run_external_ids[reference]
        entity = self.adapters[EntityKind.DECISION].identify(
            reference, state.by_id, state.by_external_id
        )
        return entity.id if entity is not None else None

    def _plan_supersede(
        self,
        plan: ReconciliationPlan,
        adapter: EntityKindAdapter,
        state: _KindState,
        mention: Mention,
        degraded: bool,
        now: datetime,
    ) -> None:
        reference = mention.supersedes or ''
        predecessor_id = self._resolve_predecessor(state, reference)
        context = {'supersedes': reference, 'title': mention.title}
        if predecessor_id is None:
            raise ReconciliationConflictError(
                'Superseded decision not found in this project', context=context
            )
        if state.is_superseded(predecessor_id):
            raise ReconciliationConflictError(
                'Decision is already superseded', context=context
            )

        # Explicit self-reference is a conflict; a similarity hit on the
        # predecessor is not a reason to merge the successor into it
        if mention.external_id and (
            mention.external_id == reference
            or self._resolve_predecessor(state, mention.external_id) == predecessor_id
        ):
            raise ReconciliationConflictError('Decision cannot supersede itself', context=context)

        successor_id = self._plan_mention(
            plan, adapter, state, mention, degraded, now, exclude={predecessor_id}
        )
        if successor_id is None or successor_id == predecessor_id:
            raise ReconciliationConflictError('Decision cannot supersede itself', context=context)
        if state.supersede_chain_reaches(successor_id, predecessor_id):
            raise ReconciliationConflictError('Supersede cycle detected', context=context)

        plan.operations.append(
            SupersedeOperation(
                target_id=predecessor_id,
                successor_id=successor_id,
                external_id=mention.external_id,
                evidence=mention.evidence,
            )
        )
        state.superseded_by[predecessor_id] = successor_id

    # =========================================================================
    # Stage 3: apply
    # =========================================================================

    async def apply(
        self,
        tx: Any,
        plan: ReconciliationPlan,
        existing: dict[EntityKind, list[TrackedEntity]],
        now: datetime | None = None,
    ) -> ReconciliationResult:
        """
        Execute a plan against the store transaction.

        Works on copies of the snapshot entities; nothing is written until
        every operation has been applied, so a conflict raised midway
        leaves the store untouched.

        Args:
            tx: Open store transaction (insert_entity / save_entity)
            plan: Plan built for the same snapshot
            existing: The snapshot the plan was built from
            now: Clock value stamped on changes
        """
        now = now or utcnow()
        ctx = OperationContext(meeting_id=plan.meeting_id, project_id=plan.project_id, now=now)
        working: dict[UUID, TrackedEntity] = {
            e.id: e.model_copy(deep=True) for entities in existing.values() for e in entities
        }
        created: list[UUID] = []
        dirty: list[UUID] = []
        result = ReconciliationResult(
            meeting_id=plan.meeting_id,
            project_id=plan.project_id,
            skipped=list(plan.skipped),
            warnings=list(plan.warnings),
            similarity_degraded=plan.similarity_degraded,
        )

        def _remember(ids: list[UUID], entity_id: UUID) -> None:
            if entity_id not in ids:
                ids.append(entity_id)

        for op in plan.operations:
            adapter = self.adapters[op.kind]
            if isinstance(op, CreateOperation):
                entity = adapter.apply_operation(op, None, ctx)
                working[entity.id] = entity
                created.append(entity.id)
                result.created_ids.append(entity.id)
                continue

            entity = working.get(op.target_id)
            adapter.apply_operation(op, entity, ctx)
            _remember(dirty, op.target_id)
            if isinstance(op, UpdateOperation):
                if op.target_id not in created:
                    _remember(result.updated_ids, op.target_id)
                if op.closes:
                    _remember(result.closed_ids, op.target_id)
            elif isinstance(op, CloseOperation):
                _remember(result.closed_ids, op.target_id)
            elif isinstance(op, SupersedeOperation):
                _remember(result.superseded_ids, op.target_id)

        for entity_id in created:
            await tx.insert_entity(working[entity_id])
        for entity_id in dirty:
            if entity_id not in created:
                await tx.save_entity(working[entity_id])

        logger.info(
            'reconciler.plan_applied',
            meeting_id=str(plan.meeting_id),
            created=result.created_count,
            updated=result.updated_count,
            closed=result.closed_count,
            superseded=result.superseded_count,
        )
        return result
