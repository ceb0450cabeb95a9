"""
Data models for the meeting reconciliation engine.

Every stored entity carries project_id; every derived entity records the
meeting it came from.
"""

from .enums import (
    MeetingCategory,
    MeetingStatus,
    EntityStatus,
    DecisionStatus,
    DecisionCategory,
    DecisionImpactArea,
    Level,
    EntityKind,
    EntitySource,
    Operation,
    OwnerResolutionStatus,
)
from .contract import (
    SCHEMA_VERSION,
    ExtractionContract,
    ExtractedActionItem,
    ExtractedDecision,
    ExtractedRisk,
    ContractEvidence,
)
from .meeting import Project, ProjectMember, Meeting, MeetingUpdate, MeetingUpdateKind
from .entities import (
    Owner,
    EvidenceRecord,
    EntityUpdate,
    TrackedEntity,
    ActionItem,
    Decision,
    Risk,
    ENTITY_MODELS,
)
from .lock import ReviewLock, LockConflict, LockOutcome, PublishOutcome
from .operations import (
    CreateOperation,
    UpdateOperation,
    CloseOperation,
    SupersedeOperation,
    SkippedMention,
    ReconciliationPlan,
    ReconciliationResult,
)

__all__ = [
    # Enums
    'MeetingCategory',
    'MeetingStatus',
    'EntityStatus',
    'DecisionStatus',
    'DecisionCategory',
    'DecisionImpactArea',
    'Level',
    'EntityKind',
    'EntitySource',
    'Operation',
    'OwnerResolutionStatus',
    # Contract
    'SCHEMA_VERSION',
    'ExtractionContract',
    'ExtractedActionItem',
    'ExtractedDecision',
    'ExtractedRisk',
    'ContractEvidence',
    # Meetings
    'Project',
    'ProjectMember',
    'Meeting',
    'MeetingUpdate',
    'MeetingUpdateKind',
    # Entities
    'Owner',
    'EvidenceRecord',
    'EntityUpdate',
    'TrackedEntity',
    'ActionItem',
    'Decision',
    'Risk',
    'ENTITY_MODELS',
    # Review lock
    'ReviewLock',
    'LockConflict',
    'LockOutcome',
    'PublishOutcome',
    # Reconciliation
    'CreateOperation',
    'UpdateOperation',
    'CloseOperation',
    'SupersedeOperation',
    'SkippedMention',
    'ReconciliationPlan',
    'ReconciliationResult',
]
