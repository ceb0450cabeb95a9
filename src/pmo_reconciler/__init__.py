"""
PMO Meeting Reconciler

Folds language-model extractions of meeting transcripts (action items,
decisions, risks) into a durable project record without duplicates, and
guards human review with a single-writer lock. PostgreSQL storage,
OpenAI-powered extraction and embeddings.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .pipeline import (
    IngestionCoordinator,
    MeetingExtractor,
    ReconciliationEngine,
    SimilarityService,
    validate_contract,
)
from .review import ReviewLockManager
from .service import ReconciliationService
from .store import MeetingStore, PostgresAuthorizer
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PipelineTimer,
)
from .errors import (
    ReconcilerError,
    ContractValidationError,
    ReconciliationConflictError,
    InvalidTransitionError,
    AuthorizationError,
    EmbeddingUnavailableError,
    ModelInvocationError,
    StorageError,
    BatchSummary,
)

__all__ = [
    # Version
    '__version__',
    # Services
    'ReconciliationService',
    'ReviewLockManager',
    'IngestionCoordinator',
    # Components
    'ReconciliationEngine',
    'SimilarityService',
    'MeetingExtractor',
    'validate_contract',
    # Storage
    'MeetingStore',
    'PostgresAuthorizer',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PipelineTimer',
    # Errors
    'ReconcilerError',
    'ContractValidationError',
    'ReconciliationConflictError',
    'InvalidTransitionError',
    'AuthorizationError',
    'EmbeddingUnavailableError',
    'ModelInvocationError',
    'StorageError',
    'BatchSummary',
]
