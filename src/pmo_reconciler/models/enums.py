"""
Fixed value sets shared by the contract, the stored entities and the engine.

Do not add values without a matching contract schema version bump.
"""

from enum import Enum


class MeetingCategory(str, Enum):
    PROJECT = 'Project'
    GOVERNANCE = 'Governance'
    DISCOVERY = 'Discovery'
    ALIGNMENT = 'Alignment'
    REMEDIATION = 'Remediation'


class MeetingStatus(str, Enum):
    """Processing lifecycle of a meeting record."""

    DRAFT = 'Draft'
    PROCESSING = 'Processing'
    REVIEW = 'Review'
    PUBLISHED = 'Published'
    FAILED = 'Failed'
    DELETED = 'Deleted'


class EntityStatus(str, Enum):
    """Status lifecycle for action items and risks."""

    OPEN = 'Open'
    IN_PROGRESS = 'In Progress'
    CLOSED = 'Closed'


class DecisionStatus(str, Enum):
    PROPOSED = 'PROPOSED'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    SUPERSEDED = 'SUPERSEDED'


class DecisionCategory(str, Enum):
    PROCESS_OP_MODEL = 'PROCESS_OP_MODEL'
    TECHNOLOGY_SYSTEMS = 'TECHNOLOGY_SYSTEMS'
    DATA_REPORTING = 'DATA_REPORTING'
    PEOPLE_CHANGE_MGMT = 'PEOPLE_CHANGE_MGMT'
    GOVERNANCE_COMPLIANCE = 'GOVERNANCE_COMPLIANCE'
    STRATEGY_COMMERCIAL = 'STRATEGY_COMMERCIAL'


class DecisionImpactArea(str, Enum):
    SCOPE = 'SCOPE'
    COST_BUDGET = 'COST_BUDGET'
    TIME_SCHEDULE = 'TIME_SCHEDULE'
    RISK = 'RISK'
    CUSTOMER_EXP = 'CUSTOMER_EXP'


class Level(str, Enum):
    """Low/Med/High scale used for risk probability, impact and tone."""

    LOW = 'Low'
    MED = 'Med'
    HIGH = 'High'


class EntityKind(str, Enum):
    ACTION_ITEM = 'action_item'
    DECISION = 'decision'
    RISK = 'risk'


class EntitySource(str, Enum):
    """Provenance of an extractable entity."""

    MANUAL = 'manual'
    MEETING = 'meeting'


class Operation(str, Enum):
    """Operation requested by the model for an extracted entity."""

    CREATE = 'create'
    UPDATE = 'update'
    CLOSE = 'close'
    SUPERSEDE = 'supersede'


class OwnerResolutionStatus(str, Enum):
    """How confidently an extracted owner was linked to a project member."""

    RESOLVED = 'resolved'
    NEEDS_CONFIRMATION = 'needs_confirmation'
    AMBIGUOUS = 'ambiguous'
    CONFERENCE_ROOM = 'conference_room'
    UNKNOWN = 'unknown'
