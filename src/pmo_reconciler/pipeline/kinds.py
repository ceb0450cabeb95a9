"""
Per-kind capabilities for the generic reconciliation routine.

Action items, decisions and risks share the reconciliation algorithm and
differ only in their fields. Each EntityKindAdapter exposes:
- identify: resolve an explicit reference (entity id or stored external_id)
- match_candidates: rank open entities against a mention (exact title, then
  embedding similarity)
- apply_operation: turn an operation into field changes on an entity

plus the small helpers the engine needs (mention construction, similarity
text, change descriptions).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable
from uuid import UUID

from ..errors import ReconciliationConflictError
from ..models.contract import (
    ContractEvidence,
    ContractOwner,
    ExtractedActionItem,
    ExtractedDecision,
    ExtractedRisk,
)
from ..models.entities import (
    ActionItem,
    Decision,
    EntityUpdate,
    EvidenceRecord,
    Owner,
    Risk,
    TrackedEntity,
)
from ..models.enums import (
    DecisionStatus,
    EntityKind,
    EntitySource,
    EntityStatus,
    Operation,
)
from ..models.operations import (
    CloseOperation,
    CreateOperation,
    SupersedeOperation,
    UpdateOperation,
)
from ..utils import normalize_title, parse_uuid

EVIDENCE_QUOTE_MAX_CHARS = 300


@dataclass
class Mention:
    """
    One logical entity mentioned in a contract.

    Several contract entries sharing an external_id are merged into a single
    Mention before planning.
    """

    kind: EntityKind
    operation: Operation
    external_id: str | None
    fields: dict[str, Any]
    evidence: list[EvidenceRecord] = field(default_factory=list)
    closes: bool = False
    supersedes: str | None = None
    embedding: list[float] | None = None
    position: int = 0

    @property
    def title(self) -> str:
        return self.fields.get('title', '')


@dataclass
class MatchCandidate:
    """An entity (stored or planned in this run) scored against a mention."""

    entity_id: UUID
    title: str
    score: float
    updated_at: datetime
    matched_by: str  # 'exact' or 'similarity'


@dataclass
class OperationContext:
    """Values every applied operation needs."""

    meeting_id: UUID
    project_id: UUID
    now: datetime


def _owner_from_contract(owner: ContractOwner | None) -> Owner:
    if owner is None:
        return Owner()
    return Owner(name=owner.name, email=owner.email)


def _evidence_records(evidence: list[ContractEvidence], meeting_id: UUID) -> list[EvidenceRecord]:
    return [
        EvidenceRecord(
            quote=e.quote,
            speaker=e.speaker,
            timestamp=e.timestamp,
            meeting_id=meeting_id,
        )
        for e in evidence
    ]


def _merge_owner(current: Owner, incoming: Owner) -> Owner:
    """Keep an existing link when the incoming owner is the same, unlinked person."""
    if incoming.user_id or not current.user_id:
        return incoming
    if (incoming.email and incoming.email == current.email) or normalize_title(
        incoming.name
    ) == normalize_title(current.name):
        return incoming.model_copy(
            update={
                'user_id': current.user_id,
                'resolution_status': current.resolution_status,
                'resolution_confidence': current.resolution_confidence,
            }
        )
    return incoming


def _primary_quote(evidence: list[EvidenceRecord]) -> str | None:
    if not evidence:
        return None
    quote = evidence[0].quote
    if len(quote) > EVIDENCE_QUOTE_MAX_CHARS:
        quote = quote[:EVIDENCE_QUOTE_MAX_CHARS] + '...'
    return quote


def _status_value(value: Any) -> str:
    return getattr(value, 'value', value) if value is not None else 'None'


class EntityKindAdapter:
    """
    Capabilities the reconciliation routine needs for one entity kind.

    Subclasses set `kind`, `model` and `supported_operations` and implement
    the field-specific hooks.
    """

    kind: EntityKind
    model: type[TrackedEntity]
    supported_operations: frozenset[Operation] = frozenset()
    closed_status: Any = None

    # -------------------------------------------------------------------------
    # Field-specific hooks
    # -------------------------------------------------------------------------

    def fields_from_extracted(self, extracted: Any) -> dict[str, Any]:
        raise NotImplementedError

    def similarity_text(self, fields: dict[str, Any]) -> str:
        raise NotImplementedError

    def describe_changes(self, before: TrackedEntity, after: TrackedEntity) -> list[str]:
        changes = []
        before_status = getattr(before, 'status', None)
        after_status = getattr(after, 'status', None)
        if before_status != after_status:
            changes.append(
                f"Status: {_status_value(before_status)} → {_status_value(after_status)}"
            )
        if before.title != after.title:
            changes.append('Title updated')
        return changes

    # -------------------------------------------------------------------------
    # Mention construction
    # -------------------------------------------------------------------------

    def mention_from_extracted(
        self, extracted: Any, meeting_id: UUID, position: int
    ) -> Mention:
        operation = Operation(extracted.operation)
        if operation not in self.supported_operations:
            raise ReconciliationConflictError(
                f"Operation '{operation.value}' is not supported for {self.kind.value}",
                context={'external_id': extracted.external_id},
            )
        return Mention(
            kind=self.kind,
            operation=operation,
            external_id=extracted.external_id or None,
            fields=self.fields_from_extracted(extracted),
            evidence=_evidence_records(extracted.evidence, meeting_id),
            supersedes=getattr(extracted, 'supersedes', None),
            position=position,
        )

    def merge_mention(self, first: Mention, later: Mention) -> None:
        """Fold a later mention with the same external_id into the first."""
        if later.operation == Operation.CLOSE:
            first.closes = True
        else:
            first.fields.update(later.fields)
            if later.supersedes:
                first.supersedes = later.supersedes
        if first.closes and self.closed_status is not None:
            first.fields['status'] = self.closed_status
        seen = {e.key for e in first.evidence}
        for record in later.evidence:
            if record.key not in seen:
                first.evidence.append(record)
                seen.add(record.key)

    # -------------------------------------------------------------------------
    # Capability interface
    # -------------------------------------------------------------------------

    def identify(
        self,
        reference: str | None,
        by_id: dict[UUID, TrackedEntity],
        by_external_id: dict[str, TrackedEntity],
    ) -> TrackedEntity | None:
        """
        Resolve an explicit reference to a stored entity.

        The reference is either an existing entity id or the external_id an
        entity was created with in an earlier meeting.
        """
        if not reference:
            return None
        entity_id = parse_uuid(reference)
        if entity_id is not None and entity_id in by_id:
            return by_id[entity_id]
        return by_external_id.get(reference)

    def match_candidates(
        self,
        mention: Mention,
        candidates: list[Any],
        similarity: Callable[[list[float], list[float]], float] | None,
        threshold: float,
        exclude: set[UUID] | None = None,
    ) -> list[MatchCandidate]:
        """
        Rank open candidates for a mention.

        An identical normalized title scores 1.0. Otherwise, when both sides
        have vectors and similarity is available, the similarity score is
        used. Only scores at or above the threshold are returned, ordered by
        score then most recent update.

        Args:
            mention: The mention being reconciled
            candidates: Objects with id, title, embedding, updated_at, is_open
            similarity: Score function, or None when similarity is degraded
            threshold: Minimum score to count as a duplicate
            exclude: Entity ids that may not be matched

        Returns:
            Matches sorted best first
        """
        wanted = normalize_title(mention.title)
        matches: list[MatchCandidate] = []
        for candidate in candidates:
            if not candidate.is_open or (exclude and candidate.id in exclude):
                continue
            if wanted and normalize_title(candidate.title) == wanted:
                matches.append(
                    MatchCandidate(
                        entity_id=candidate.id,
                        title=candidate.title,
                        score=1.0,
                        updated_at=candidate.updated_at,
                        matched_by='exact',
                    )
                )
                continue
            if similarity is None or mention.embedding is None or not candidate.embedding:
                continue
            score = similarity(mention.embedding, candidate.embedding)
            if score >= threshold:
                matches.append(
                    MatchCandidate(
                        entity_id=candidate.id,
                        title=candidate.title,
                        score=score,
                        updated_at=candidate.updated_at,
                        matched_by='similarity',
                    )
                )
        matches.sort(key=lambda m: (m.score, m.updated_at), reverse=True)
        return matches

    def apply_operation(
        self,
        operation: Any,
        entity: TrackedEntity | None,
        ctx: OperationContext,
    ) -> TrackedEntity:
        """
        Apply one planned operation.

        Create builds a new entity; update and close mutate `entity` in
        place (appending evidence and a typed update entry); supersede marks
        `entity` (the predecessor) as replaced.
        """
        if isinstance(operation, CreateOperation):
            return self._create(operation, ctx)
        if entity is None:
            raise ReconciliationConflictError(
                f"{operation.op} operation has no target entity",
                context={'kind': self.kind.value},
            )
        if isinstance(operation, UpdateOperation):
            return self._update(operation, entity, ctx)
        if isinstance(operation, CloseOperation):
            return self._close(operation, entity, ctx)
        if isinstance(operation, SupersedeOperation):
            return self._supersede(operation, entity, ctx)
        raise ReconciliationConflictError(f"Unknown operation: {operation!r}")

    # -------------------------------------------------------------------------
    # Operation implementations
    # -------------------------------------------------------------------------

    def _create(self, op: CreateOperation, ctx: OperationContext) -> TrackedEntity:
        entity = self.model(
            id=op.entity_id,
            project_id=ctx.project_id,
            source=EntitySource.MEETING,
            source_meeting_id=ctx.meeting_id,
            external_id=op.external_id,
            embedding=op.embedding,
            created_at=ctx.now,
            updated_at=ctx.now,
            **op.payload,
        )
        entity.append_evidence(op.evidence)
        return entity

    def _assign_fields(self, entity: TrackedEntity, fields: dict[str, Any]) -> None:
        for name, value in fields.items():
            if name == 'owner' and isinstance(value, Owner):
                value = _merge_owner(getattr(entity, 'owner'), value)
            setattr(entity, name, value)

    def _update(
        self, op: UpdateOperation, entity: TrackedEntity, ctx: OperationContext
    ) -> TrackedEntity:
        before = entity.model_copy(deep=True)
        self._assign_fields(entity, op.payload)
        if op.embedding is not None:
            entity.embedding = op.embedding
        if entity.external_id is None and op.external_id:
            entity.external_id = op.external_id
        added = entity.append_evidence(op.evidence)

        changes = self.describe_changes(before, entity)
        if not changes and not added:
            return entity

        if changes:
            content = f"Updated via meeting processing: {'; '.join(changes)}."
        else:
            content = 'Reviewed in meeting (no changes to core fields).'
        entity.updates.append(
            EntityUpdate(
                content=content,
                meeting_id=ctx.meeting_id,
                evidence_quote=_primary_quote(op.evidence),
                created_at=ctx.now,
            )
        )
        entity.updated_at = ctx.now
        return entity

    def _close(
        self, op: CloseOperation, entity: TrackedEntity, ctx: OperationContext
    ) -> TrackedEntity:
        setattr(entity, 'status', self.closed_status)
        entity.append_evidence(op.evidence)
        entity.updates.append(
            EntityUpdate(
                content='Closed via meeting processing.',
                meeting_id=ctx.meeting_id,
                evidence_quote=_primary_quote(op.evidence),
                created_at=ctx.now,
            )
        )
        entity.updated_at = ctx.now
        return entity

    def _supersede(
        self, op: SupersedeOperation, entity: TrackedEntity, ctx: OperationContext
    ) -> TrackedEntity:
        raise ReconciliationConflictError(
            f"Supersede is not supported for {self.kind.value}",
            context={'target_id': str(op.target_id)},
        )


class ActionItemKind(EntityKindAdapter):
    kind = EntityKind.ACTION_ITEM
    model = ActionItem
    supported_operations = frozenset({Operation.CREATE, Operation.UPDATE, Operation.CLOSE})
    closed_status = EntityStatus.CLOSED

    def fields_from_extracted(self, extracted: ExtractedActionItem) -> dict[str, Any]:
        return {
            'title': extracted.title,
            'description': extracted.description,
            'status': extracted.status,
            'owner': _owner_from_contract(extracted.owner),
            'due_date': date.fromisoformat(extracted.due_date) if extracted.due_date else None,
        }

    def similarity_text(self, fields: dict[str, Any]) -> str:
        return f"{fields.get('title', '')}. {fields.get('description', '')}"

    def describe_changes(self, before: ActionItem, after: ActionItem) -> list[str]:
        changes = super().describe_changes(before, after)
        if before.description != after.description:
            changes.append('Description updated')
        if before.due_date != after.due_date:
            changes.append(f"Due date: {before.due_date or 'None'} → {after.due_date or 'None'}")
        if before.owner.name != after.owner.name:
            changes.append(
                f"Owner: {before.owner.name or 'Unassigned'} → {after.owner.name or 'Unassigned'}"
            )
        return changes


class RiskKind(EntityKindAdapter):
    kind = EntityKind.RISK
    model = Risk
    supported_operations = frozenset({Operation.CREATE, Operation.UPDATE, Operation.CLOSE})
    closed_status = EntityStatus.CLOSED

    def fields_from_extracted(self, extracted: ExtractedRisk) -> dict[str, Any]:
        return {
            'title': extracted.title,
            'description': extracted.description,
            'probability': extracted.probability,
            'impact': extracted.impact,
            'mitigation': extracted.mitigation,
            'owner': _owner_from_contract(extracted.owner),
            'status': extracted.status,
        }

    def similarity_text(self, fields: dict[str, Any]) -> str:
        return f"{fields.get('title', '')}. {fields.get('description', '')}"

    def describe_changes(self, before: Risk, after: Risk) -> list[str]:
        changes = super().describe_changes(before, after)
        if before.description != after.description:
            changes.append('Description updated')
        if before.probability != after.probability:
            changes.append(
                f"Probability: {before.probability.value} → {after.probability.value}"
            )
        if before.impact != after.impact:
            changes.append(f"Impact: {before.impact.value} → {after.impact.value}")
        if before.mitigation != after.mitigation:
            changes.append('Mitigation updated')
        return changes


class DecisionKind(EntityKindAdapter):
    """Decisions are never closed; they end by being superseded."""

    kind = EntityKind.DECISION
    model = Decision
    supported_operations = frozenset(
        {Operation.CREATE, Operation.UPDATE, Operation.SUPERSEDE}
    )

    def fields_from_extracted(self, extracted: ExtractedDecision) -> dict[str, Any]:
        return {
            'title': extracted.title,
            'rationale': extracted.rationale,
            'impact': extracted.impact,
            'category': extracted.category,
            'impact_areas': list(extracted.impact_areas),
            'status': extracted.status,
            'decision_maker': _owner_from_contract(extracted.decision_maker),
            'outcome': extracted.outcome,
        }

    def similarity_text(self, fields: dict[str, Any]) -> str:
        return f"{fields.get('title', '')}. {fields.get('rationale', '')}"

    def _assign_fields(self, entity: Decision, fields: dict[str, Any]) -> None:
        fields = dict(fields)
        maker = fields.pop('decision_maker', None)
        if maker is not None:
            entity.decision_maker = _merge_owner(entity.decision_maker, maker)
        # A superseded decision keeps its status; updates only touch content
        if entity.status == DecisionStatus.SUPERSEDED:
            fields.pop('status', None)
        super()._assign_fields(entity, fields)

    def describe_changes(self, before: Decision, after: Decision) -> list[str]:
        changes = super().describe_changes(before, after)
        if before.rationale != after.rationale:
            changes.append('Rationale updated')
        if before.outcome != after.outcome:
            changes.append('Outcome updated')
        return changes

    def _supersede(
        self, op: SupersedeOperation, entity: Decision, ctx: OperationContext
    ) -> Decision:
        if entity.status == DecisionStatus.SUPERSEDED:
            raise ReconciliationConflictError(
                'Decision is already superseded',
                context={'decision_id': str(entity.id)},
            )
        previous = entity.status
        entity.status = DecisionStatus.SUPERSEDED
        entity.superseded_by_id = op.successor_id
        entity.append_evidence(op.evidence)
        entity.updates.append(
            EntityUpdate(
                content=(
                    f"Superseded via meeting processing: Status: {previous.value} → "
                    f"{DecisionStatus.SUPERSEDED.value}; replaced by {op.successor_id}."
                ),
                meeting_id=ctx.meeting_id,
                evidence_quote=_primary_quote(op.evidence),
                created_at=ctx.now,
            )
        )
        entity.updated_at = ctx.now
        return entity


DEFAULT_ADAPTERS: dict[EntityKind, EntityKindAdapter] = {
    EntityKind.ACTION_ITEM: ActionItemKind(),
    EntityKind.DECISION: DecisionKind(),
    EntityKind.RISK: RiskKind(),
}
