"""
Custom exceptions and error handling for the meeting reconciliation engine.

Provides:
- Typed exception hierarchy for different failure modes
- Stable reason codes surfaced to callers (raw diagnostics stay in logs)
- Error context preservation for debugging
- Per-item result handling for batch ingestion
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ReasonCode(str, Enum):
    """Stable reason codes attached to every failure."""

    VALIDATION_FAILED = 'validation_failed'
    RECONCILIATION_CONFLICT = 'reconciliation_conflict'
    LOCK_CONFLICT = 'lock_conflict'
    EMBEDDING_UNAVAILABLE = 'embedding_unavailable'
    MODEL_TIMEOUT = 'model_timeout'
    MODEL_TRANSIENT = 'model_transient'
    MODEL_QUOTA = 'model_quota'
    MODEL_ERROR = 'model_error'
    TEXT_EXTRACTION_FAILED = 'text_extraction_failed'
    STORAGE_FAILURE = 'storage_failure'
    MEETING_NOT_FOUND = 'meeting_not_found'
    PROJECT_NOT_FOUND = 'project_not_found'
    DECISION_NOT_FOUND = 'decision_not_found'
    INVALID_TRANSITION = 'invalid_transition'
    FORBIDDEN = 'forbidden'
    UNEXPECTED = 'unexpected_error'


class ReconcilerError(Exception):
    """Base exception for all reconciliation engine errors."""

    reason_code: ReasonCode = ReasonCode.UNEXPECTED

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Caller-safe representation: reason code and message only."""
        return {'reason_code': self.reason_code.value, 'message': self.message}


# =============================================================================
# Contract Validation
# =============================================================================


@dataclass(frozen=True)
class ValidationIssue:
    """A single violated field in a model-output payload."""

    path: str
    message: str
    code: str = 'invalid'

    def to_dict(self) -> dict[str, str]:
        return {'path': self.path, 'message': self.message, 'code': self.code}


class ContractValidationError(ReconcilerError):
    """Model output violated the extraction contract.

    Carries every violated field so callers can request a targeted
    re-generation.
    """

    reason_code = ReasonCode.VALIDATION_FAILED

    def __init__(
        self,
        issues: list[ValidationIssue],
        context: dict[str, Any] | None = None,
    ):
        self.issues = list(issues)
        summary = '; '.join(f"{i.path}: {i.message}" for i in self.issues[:5])
        if len(self.issues) > 5:
            summary += f" (+{len(self.issues) - 5} more)"
        super().__init__(
            f"Contract validation failed with {len(self.issues)} issue(s): {summary}",
            context=context,
        )

    @property
    def paths(self) -> list[str]:
        return [i.path for i in self.issues]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data['issues'] = [i.to_dict() for i in self.issues]
        return data


# =============================================================================
# Reconciliation / Lifecycle Errors
# =============================================================================


class ReconciliationConflictError(ReconcilerError):
    """Operation set cannot be applied (supersede cycle, ambiguous match, ...)."""

    reason_code = ReasonCode.RECONCILIATION_CONFLICT


class InvalidTransitionError(ReconcilerError):
    """Meeting status change not allowed from the current state."""

    reason_code = ReasonCode.INVALID_TRANSITION


class AuthorizationError(ReconcilerError):
    """Acting user lacks the privilege required for the operation."""

    reason_code = ReasonCode.FORBIDDEN


class ReviewLockHeldError(ReconcilerError):
    """Another user holds an active review lock on the meeting.

    Raised by operations that would discard the holder's review (reprocess,
    delete). The holder releases the lock or an administrator force-unlocks.
    """

    reason_code = ReasonCode.LOCK_CONFLICT


class NotFoundError(ReconcilerError):
    """Base class for missing referenced records."""

    pass


class MeetingNotFoundError(NotFoundError):
    reason_code = ReasonCode.MEETING_NOT_FOUND


class ProjectNotFoundError(NotFoundError):
    reason_code = ReasonCode.PROJECT_NOT_FOUND


class DecisionNotFoundError(NotFoundError):
    reason_code = ReasonCode.DECISION_NOT_FOUND


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(ReconcilerError):
    """Base class for external provider failures."""

    retryable: bool = False


class EmbeddingUnavailableError(ProviderError):
    """Embedding could not be produced; duplicate detection is skipped."""

    reason_code = ReasonCode.EMBEDDING_UNAVAILABLE
    retryable = True


class ModelInvocationError(ProviderError):
    """Language-model extraction call failed."""

    reason_code = ReasonCode.MODEL_ERROR


class ModelTimeoutError(ModelInvocationError):
    reason_code = ReasonCode.MODEL_TIMEOUT
    retryable = True


class ModelTransientError(ModelInvocationError):
    """Rate limit, 5xx or connection reset."""

    reason_code = ReasonCode.MODEL_TRANSIENT
    retryable = True


class ModelQuotaError(ModelInvocationError):
    """Cost or quota exhausted; retrying will not help."""

    reason_code = ReasonCode.MODEL_QUOTA
    retryable = False


class TextExtractionError(ProviderError):
    """Source document could not be turned into plain text."""

    reason_code = ReasonCode.TEXT_EXTRACTION_FAILED


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(ReconcilerError):
    """Transaction aborted or database unreachable. Retried by caller policy."""

    reason_code = ReasonCode.STORAGE_FAILURE


# =============================================================================
# Per-Item Results (batch ingestion)
# =============================================================================


@dataclass
class ItemResult:
    """Result for a single source item in a batch run."""

    item_id: str | None
    outcome: str  # 'processed', 'skipped', 'failed', 'cancelled'
    reason_code: str | None = None
    message: str | None = None
    meeting_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            'item_id': self.item_id,
            'outcome': self.outcome,
            'reason_code': self.reason_code,
            'message': self.message,
            'meeting_id': self.meeting_id,
        }


@dataclass
class BatchSummary:
    """
    Result of a batch ingestion run that may partially succeed.

    One item failing never stops the others; each outcome is kept with
    its reason for display and for retry decisions.
    """

    items: list[ItemResult] = field(default_factory=list)
    cancelled: bool = False

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.items if r.outcome == outcome)

    @property
    def processed_count(self) -> int:
        return self._count('processed')

    @property
    def skipped_count(self) -> int:
        return self._count('skipped')

    @property
    def failed_count(self) -> int:
        return self._count('failed')

    @property
    def cancelled_count(self) -> int:
        return self._count('cancelled')

    @property
    def total_count(self) -> int:
        return len(self.items)

    @property
    def errors(self) -> list[str]:
        return [
            f"{r.item_id}: {r.message}"
            for r in self.items
            if r.outcome == 'failed' and r.message
        ]

    def add_processed(self, item_id: str | None, meeting_id: str | None = None) -> None:
        self.items.append(ItemResult(item_id=item_id, outcome='processed', meeting_id=meeting_id))

    def add_skipped(
        self,
        item_id: str | None,
        reason: str,
        meeting_id: str | None = None,
    ) -> None:
        self.items.append(
            ItemResult(
                item_id=item_id,
                outcome='skipped',
                reason_code='skipped',
                message=reason,
                meeting_id=meeting_id,
            )
        )

    def add_failure(
        self,
        item_id: str | None,
        error: ReconcilerError,
        meeting_id: str | None = None,
    ) -> None:
        self.items.append(
            ItemResult(
                item_id=item_id,
                outcome='failed',
                reason_code=error.reason_code.value,
                message=error.message,
                meeting_id=meeting_id,
            )
        )

    def add_cancelled(self, item_id: str | None) -> None:
        self.items.append(ItemResult(item_id=item_id, outcome='cancelled'))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'processed': self.processed_count,
            'skipped': self.skipped_count,
            'failed': self.failed_count,
            'cancelled': self.cancelled_count,
            'total': self.total_count,
            'was_cancelled': self.cancelled,
            'errors': self.errors,
            'items': [r.to_dict() for r in self.items],
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_openai_error(
    exc: Exception, context: dict[str, Any] | None = None
) -> ModelInvocationError:
    """
    Wrap an OpenAI exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed ModelInvocationError subclass (retryable or not)
    """
    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__
    status = getattr(exc, 'status_code', None)

    if 'insufficient_quota' in error_str or 'quota' in error_str or 'billing' in error_str:
        return ModelQuotaError(f"Model quota exhausted: {exc}", context=ctx)
    elif 'timeout' in error_str or 'timed out' in error_str or status == 408:
        return ModelTimeoutError(f"Model call timed out: {exc}", context=ctx)
    elif (
        'rate limit' in error_str
        or 'rate_limit' in error_str
        or 'connection' in error_str
        or status == 429
        or (isinstance(status, int) and 500 <= status < 600)
    ):
        return ModelTransientError(f"Model temporarily unavailable: {exc}", context=ctx)
    else:
        return ModelInvocationError(f"Model call failed: {exc}", context=ctx)


def wrap_storage_error(exc: Exception, context: dict[str, Any] | None = None) -> StorageError:
    """
    Wrap a database exception as a StorageError.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        StorageError preserving the original message in context
    """
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__
    return StorageError(f"Storage operation failed: {exc}", context=ctx)
