"""
Reconciliation operations and results.

The engine first plans (contract entities + current project state ->
ordered operations), then applies the plan inside one transaction.
Operations are a tagged union discriminated by `op`.
"""

from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from .entities import EvidenceRecord
from .enums import EntityKind


class BaseOperation(BaseModel):
    kind: EntityKind
    external_id: str | None = Field(
        default=None, description='Model-supplied correlation id of the mention(s)'
    )
    payload: dict[str, Any] = Field(
        default_factory=dict, description='Entity field values carried by the payload'
    )
    evidence: list[EvidenceRecord] = Field(default_factory=list)
    matched_by: str | None = Field(
        default=None,
        description="How the target was found: 'id', 'external_id', 'exact', 'similarity'",
    )
    similarity_score: float | None = None
    embedding: list[float] | None = Field(
        default=None, description='Vector computed for the payload text, if available'
    )


class CreateOperation(BaseOperation):
    op: Literal['create'] = 'create'
    entity_id: UUID = Field(..., description='Id assigned to the new entity')


class UpdateOperation(BaseOperation):
    op: Literal['update'] = 'update'
    target_id: UUID
    closes: bool = Field(
        default=False,
        description='A later close mention in the same run ends the entity as Closed',
    )


class CloseOperation(BaseOperation):
    op: Literal['close'] = 'close'
    target_id: UUID


class SupersedeOperation(BaseOperation):
    """Marks target_id SUPERSEDED by successor_id. Emitted after the successor's op."""

    op: Literal['supersede'] = 'supersede'
    kind: EntityKind = EntityKind.DECISION
    target_id: UUID
    successor_id: UUID


ReconciliationOperation = Annotated[
    CreateOperation | UpdateOperation | CloseOperation | SupersedeOperation,
    Field(discriminator='op'),
]


class SkippedMention(BaseModel):
    """A mention that produced no operation (no-op close, unresolved target...)."""

    kind: EntityKind
    operation: str
    external_id: str | None = None
    title: str | None = None
    reason: str


class ReconciliationPlan(BaseModel):
    meeting_id: UUID
    project_id: UUID
    operations: list[ReconciliationOperation] = Field(default_factory=list)
    skipped: list[SkippedMention] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    similarity_degraded: bool = False

    def of_kind(self, kind: EntityKind) -> list[Any]:
        return [op for op in self.operations if op.kind == kind]


class ReconciliationResult(BaseModel):
    """Outcome of a committed reconciliation run."""

    meeting_id: UUID
    project_id: UUID
    created_ids: list[UUID] = Field(default_factory=list)
    updated_ids: list[UUID] = Field(default_factory=list)
    closed_ids: list[UUID] = Field(default_factory=list)
    superseded_ids: list[UUID] = Field(default_factory=list)
    skipped: list[SkippedMention] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    similarity_degraded: bool = False

    @property
    def created_count(self) -> int:
        return len(self.created_ids)

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)

    @property
    def closed_count(self) -> int:
        return len(self.closed_ids)

    @property
    def superseded_count(self) -> int:
        return len(self.superseded_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            'meeting_id': str(self.meeting_id),
            'project_id': str(self.project_id),
            'created': self.created_count,
            'updated': self.updated_count,
            'closed': self.closed_count,
            'superseded': self.superseded_count,
            'skipped': len(self.skipped),
            'created_ids': [str(i) for i in self.created_ids],
            'updated_ids': [str(i) for i in self.updated_ids],
            'closed_ids': [str(i) for i in self.closed_ids],
            'superseded_ids': [str(i) for i in self.superseded_ids],
            'warnings': self.warnings,
            'similarity_degraded': self.similarity_degraded,
        }
