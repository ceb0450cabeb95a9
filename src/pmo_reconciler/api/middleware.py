"""Per-request trace id bound into the logging context."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from pmo_reconciler.logging import logging_context
from pmo_reconciler.utils import uuid7

REQUEST_ID_HEADER = "X-Request-Id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind the caller's X-Request-Id (or a fresh one) and the acting user, then echo the id."""

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid7())
        with logging_context(trace_id=trace_id, user_id=request.headers.get("X-User-Id")):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = trace_id
        return response
