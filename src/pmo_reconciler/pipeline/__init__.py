"""
Pipeline components for contract validation, similarity, reconciliation and ingestion.
"""

from .extractor import MeetingExtractor
from .ingestion import (
    IngestionCoordinator,
    PlainTextExtractor,
    SourceItem,
    TextExtractionResult,
    TextExtractor,
    parse_meeting_filename,
)
from .kinds import (
    DEFAULT_ADAPTERS,
    ActionItemKind,
    DecisionKind,
    EntityKindAdapter,
    MatchCandidate,
    Mention,
    RiskKind,
)
from .owners import OwnerResolver, OwnerRoster
from .reconciler import ReconciliationEngine
from .similarity import SimilarityService, cosine_similarity
from .validator import check_fishbone, normalize_payload, validate_contract

__all__ = [
    # Validation
    'validate_contract',
    'normalize_payload',
    'check_fishbone',
    # Similarity
    'SimilarityService',
    'cosine_similarity',
    # Owners
    'OwnerResolver',
    'OwnerRoster',
    # Reconciliation
    'ReconciliationEngine',
    'EntityKindAdapter',
    'ActionItemKind',
    'DecisionKind',
    'RiskKind',
    'DEFAULT_ADAPTERS',
    'Mention',
    'MatchCandidate',
    # Extraction
    'MeetingExtractor',
    # Ingestion
    'IngestionCoordinator',
    'SourceItem',
    'TextExtractor',
    'TextExtractionResult',
    'PlainTextExtractor',
    'parse_meeting_filename',
]
