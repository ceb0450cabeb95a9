"""
Stored project entities: ActionItem, Decision and Risk.

The three kinds are structurally analogous and share TrackedEntity:
- Owner (name + email, optionally linked to a user id)
- Provenance (manual vs. derived from a specific meeting)
- external_id supplied by the model for cross-mention correlation
- Embedding for duplicate detection
- Append-only evidence and typed update history
- Logical delete marker (entities are never physically removed)
"""

from datetime import date, datetime
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils import utcnow, uuid7
from .enums import (
    DecisionCategory,
    DecisionImpactArea,
    DecisionStatus,
    EntityKind,
    EntitySource,
    EntityStatus,
    Level,
    OwnerResolutionStatus,
)


class Owner(BaseModel):
    """Person responsible for an entity."""

    name: str = Field(default='', description='Display name as extracted or entered')
    email: str | None = Field(default=None, description='Email address if known')
    user_id: UUID | None = Field(
        default=None, description='Linked user id when the owner is a known user'
    )
    resolution_status: OwnerResolutionStatus | None = Field(
        default=None, description='Set when the owner came from a meeting extraction'
    )
    resolution_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class EvidenceRecord(BaseModel):
    """
    Immutable transcript excerpt attached to an entity.

    Evidence only ever accumulates: reconciliation appends, never replaces.
    """

    model_config = ConfigDict(frozen=True)

    quote: str
    speaker: str | None = None
    timestamp: str | None = Field(default=None, description='HH:MM:SS offset into the meeting')
    meeting_id: UUID | None = Field(default=None, description='Meeting the quote came from')
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str | None, str | None, UUID | None]:
        """Identity used to avoid attaching the same quote twice."""
        return (self.quote.strip(), self.speaker, self.timestamp, self.meeting_id)


class EntityUpdate(BaseModel):
    """One entry of an entity's append-only change history."""

    id: UUID = Field(default_factory=uuid7)
    content: str
    source: str = Field(default='meeting_processing')
    meeting_id: UUID | None = None
    created_by_user_id: UUID | None = None
    evidence_quote: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class TrackedEntity(BaseModel):
    """Common fields for every extractable entity kind."""

    kind: ClassVar[EntityKind]

    id: UUID = Field(default_factory=uuid7, description='Unique identifier (UUIDv7)')
    project_id: UUID = Field(..., description='Owning project')
    title: str

    source: EntitySource = Field(default=EntitySource.MEETING)
    source_meeting_id: UUID | None = Field(
        default=None, description='Meeting that first created this entity'
    )
    external_id: str | None = Field(
        default=None,
        description='Model-supplied correlation id from the extraction that created it',
    )

    embedding: list[float] | None = Field(
        default=None, description='Similarity vector computed from the entity text'
    )
    evidence: list[EvidenceRecord] = Field(default_factory=list)
    updates: list[EntityUpdate] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: datetime | None = Field(
        default=None, description='Set when the source meeting is soft-deleted'
    )

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def append_evidence(self, records: list[EvidenceRecord]) -> int:
        """Append evidence not already attached. Returns the number added."""
        seen = {e.key for e in self.evidence}
        added = 0
        for record in records:
            if record.key in seen:
                continue
            self.evidence.append(record)
            seen.add(record.key)
            added += 1
        return added


class ActionItem(TrackedEntity):
    kind: ClassVar[EntityKind] = EntityKind.ACTION_ITEM

    description: str = ''
    status: EntityStatus = EntityStatus.OPEN
    owner: Owner = Field(default_factory=Owner)
    due_date: date | None = None

    @property
    def is_open(self) -> bool:
        return self.status != EntityStatus.CLOSED


class Risk(TrackedEntity):
    kind: ClassVar[EntityKind] = EntityKind.RISK

    description: str = ''
    probability: Level = Level.MED
    impact: Level = Level.MED
    mitigation: str = ''
    status: EntityStatus = EntityStatus.OPEN
    owner: Owner = Field(default_factory=Owner)

    @property
    def is_open(self) -> bool:
        return self.status != EntityStatus.CLOSED


class Decision(TrackedEntity):
    """
    A recorded project decision.

    SUPERSEDED is reachable only through a supersede operation, which also
    sets superseded_by_id to the replacing decision.
    """

    kind: ClassVar[EntityKind] = EntityKind.DECISION

    rationale: str = ''
    impact: str = ''
    outcome: str = ''
    category: DecisionCategory
    impact_areas: list[DecisionImpactArea] = Field(min_length=1)
    status: DecisionStatus = DecisionStatus.PROPOSED
    decision_maker: Owner = Field(default_factory=Owner)
    superseded_by_id: UUID | None = None

    @field_validator('impact_areas')
    @classmethod
    def _unique_areas(cls, value: list[DecisionImpactArea]) -> list[DecisionImpactArea]:
        return list(dict.fromkeys(value))

    @property
    def is_open(self) -> bool:
        return self.status != DecisionStatus.SUPERSEDED

    @property
    def owner(self) -> Owner:
        return self.decision_maker


ENTITY_MODELS: dict[EntityKind, type[TrackedEntity]] = {
    EntityKind.ACTION_ITEM: ActionItem,
    EntityKind.DECISION: Decision,
    EntityKind.RISK: Risk,
}
