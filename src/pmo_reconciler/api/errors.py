"""Map engine errors to HTTP responses showing only reason code and a safe message."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import structlog

from pmo_reconciler.errors import (
    AuthorizationError,
    ContractValidationError,
    InvalidTransitionError,
    ModelTimeoutError,
    NotFoundError,
    ProviderError,
    ReconcilerError,
    ReconciliationConflictError,
    ReviewLockHeldError,
    StorageError,
)

logger = structlog.get_logger(__name__)

# Checked in order; first match wins
_STATUS_CODES: list[tuple[type[ReconcilerError], int]] = [
    (ContractValidationError, 422),
    (ReconciliationConflictError, 409),
    (InvalidTransitionError, 409),
    (ReviewLockHeldError, 409),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ModelTimeoutError, 504),
    (ProviderError, 502),
    (StorageError, 503),
]

# Provider and storage messages embed raw driver output; those stay in the logs
_SAFE_MESSAGES: dict[type[ReconcilerError], str] = {
    ProviderError: "External provider unavailable",
    StorageError: "Storage unavailable",
}


def status_code_for(error: ReconcilerError) -> int:
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


def error_body(error: ReconcilerError) -> dict:
    message = error.message
    for error_type, safe in _SAFE_MESSAGES.items():
        if isinstance(error, error_type):
            message = safe
    body = {"reason_code": error.reason_code.value, "message": message}
    if isinstance(error, ContractValidationError):
        body["issues"] = [issue.to_dict() for issue in error.issues]
    if isinstance(error, ReviewLockHeldError):
        body["holder_user_id"] = error.context.get("holder_user_id")
        body["expires_at"] = error.context.get("expires_at")
    return body


async def reconciler_error_handler(request: Request, exc: ReconcilerError) -> JSONResponse:
    status = status_code_for(exc)
    log = logger.error if status >= 500 else logger.info
    log(
        "api.request_failed",
        path=request.url.path,
        status=status,
        reason_code=exc.reason_code.value,
        error=str(exc),
    )
    return JSONResponse(status_code=status, content=error_body(exc))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReconcilerError, reconciler_error_handler)
