"""
Extraction contract (schema version pmo_tool.v1).

These models describe the JSON payload the language model must return.
They are strict: the Contract Validator turns every pydantic error into a
ValidationIssue, so field-level constraints live here and cross-field rules
that need the meeting category live in pipeline/validator.py.
"""

from datetime import date
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)

from .enums import (
    DecisionCategory,
    DecisionImpactArea,
    DecisionStatus,
    EntityStatus,
    Level,
    MeetingCategory,
)

SCHEMA_VERSION = 'pmo_tool.v1'
SUPPORTED_SCHEMA_VERSIONS = frozenset({SCHEMA_VERSION})

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
TIMESTAMP_PATTERN = r'^\d{2}:\d{2}:\d{2}$'


def _check_calendar_date(value: str) -> str:
    date.fromisoformat(value)
    return value


def _check_clock_time(value: str) -> str:
    hours, minutes, seconds = (int(part) for part in value.split(':'))
    if minutes > 59 or seconds > 59:
        raise ValueError('timestamp minutes and seconds must be below 60')
    return value


DateStr = Annotated[str, Field(pattern=DATE_PATTERN), AfterValidator(_check_calendar_date)]
TimestampStr = Annotated[str, Field(pattern=TIMESTAMP_PATTERN), AfterValidator(_check_clock_time)]
NonEmptyStr = Annotated[str, Field(min_length=1)]


class ContractModel(BaseModel):
    """Base for contract models: unknown keys from the model are dropped."""

    model_config = ConfigDict(extra='ignore')


class ContractEvidence(ContractModel):
    """Transcript excerpt justifying an extracted fact."""

    quote: NonEmptyStr
    speaker: str | None = None
    timestamp: TimestampStr | None = None


class ContractOwner(ContractModel):
    name: str
    email: str | None = None


class Attendee(ContractModel):
    name: str
    email: str | None = None


class MeetingInfo(ContractModel):
    category: MeetingCategory
    title: str
    date: DateStr
    attendees: list[Attendee] = Field(default_factory=list)


class KeyTopic(ContractModel):
    topic: str
    discussion: str
    participants: list[str] = Field(default_factory=list)
    outcome: str | None = None


class ActionItemSummary(ContractModel):
    title: str
    owner: str
    due_date: str | None = None
    status: EntityStatus


class OutstandingTopic(ContractModel):
    topic: str
    context: str
    blockers: list[str] = Field(default_factory=list)
    suggested_next_steps: list[str] = Field(default_factory=list)


class Recap(ContractModel):
    summary: str
    highlights: list[str] = Field(default_factory=list)
    key_topics: list[KeyTopic] = Field(default_factory=list)
    action_items_summary: list[ActionItemSummary] = Field(default_factory=list)
    outstanding_topics: list[OutstandingTopic] = Field(default_factory=list)


class ParticipantTone(ContractModel):
    name: str
    tone: str
    happiness: Level
    buy_in: Level


class Tone(ContractModel):
    overall: str
    participants: list[ParticipantTone] = Field(default_factory=list)


EvidenceList = Annotated[
    list[ContractEvidence], Field(default_factory=list, validate_default=True)
]


class ExtractedEntity(ContractModel):
    """
    Shared rules for extracted action items, decisions and risks.

    Subclasses declare `operation` first and `evidence` last so that the
    evidence check can see which operation was requested.
    """

    @field_validator('evidence', check_fields=False)
    @classmethod
    def _evidence_required(
        cls, value: list[ContractEvidence], info: ValidationInfo
    ) -> list[ContractEvidence]:
        # Close carries no new facts; every other operation must be justified.
        if info.data.get('operation') != 'close' and not value:
            raise ValueError('at least one evidence item is required')
        return value


class ExtractedActionItem(ExtractedEntity):
    operation: Literal['create', 'update', 'close']
    external_id: str | None = None
    title: NonEmptyStr
    description: str
    status: EntityStatus
    owner: ContractOwner
    due_date: DateStr | None = None
    evidence: EvidenceList


class ExtractedDecision(ExtractedEntity):
    operation: Literal['create', 'update', 'supersede']
    external_id: str | None = None
    title: NonEmptyStr
    rationale: str
    impact: str
    category: DecisionCategory
    impact_areas: list[DecisionImpactArea] = Field(min_length=1)
    status: DecisionStatus
    decision_maker: ContractOwner
    outcome: str
    supersedes: str | None = Field(default=None, validate_default=True)
    evidence: EvidenceList

    @field_validator('status')
    @classmethod
    def _not_superseded(cls, value: DecisionStatus) -> DecisionStatus:
        if value == DecisionStatus.SUPERSEDED:
            raise ValueError(
                'SUPERSEDED is only reachable through a supersede operation'
            )
        return value

    @field_validator('supersedes')
    @classmethod
    def _predecessor_named(cls, value: str | None, info: ValidationInfo) -> str | None:
        if info.data.get('operation') == 'supersede' and not value:
            raise ValueError('supersede operation must name the superseded decision')
        return value


class ExtractedRisk(ExtractedEntity):
    operation: Literal['create', 'update', 'close']
    external_id: str | None = None
    title: NonEmptyStr
    description: str
    probability: Level
    impact: Level
    mitigation: str
    owner: ContractOwner
    status: EntityStatus
    evidence: EvidenceList


class FishboneCategory(ContractModel):
    name: str
    causes: list[str] = Field(default_factory=list)


class FishboneOutline(ContractModel):
    problem_statement: str
    categories: list[FishboneCategory] = Field(default_factory=list)

    @property
    def is_populated(self) -> bool:
        return bool(self.problem_statement.strip()) and any(
            c.causes for c in self.categories
        )


class FishboneRendered(ContractModel):
    format: Literal['svg']
    payload: str


class Fishbone(ContractModel):
    """Root-cause analysis, required for (and only for) Remediation meetings."""

    enabled: bool
    outline: FishboneOutline | None = None
    rendered: FishboneRendered | None = None


class ExtractionContract(ContractModel):
    """A complete, validated model extraction for one meeting."""

    schema_version: Literal['pmo_tool.v1']
    meeting: MeetingInfo
    recap: Recap
    tone: Tone
    action_items: list[ExtractedActionItem] = Field(default_factory=list)
    decisions: list[ExtractedDecision] = Field(default_factory=list)
    risks: list[ExtractedRisk] = Field(default_factory=list)
    fishbone: Fishbone

    @property
    def entity_count(self) -> int:
        return len(self.action_items) + len(self.decisions) + len(self.risks)
