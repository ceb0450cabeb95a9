"""Bearer token authentication and acting-user resolution."""

from uuid import UUID

from fastapi import Header, HTTPException

from .config import get_settings


async def verify_worker_token(authorization: str = Header(...)) -> None:
    """Validate the service bearer token."""
    expected = f"Bearer {get_settings().WORKER_API_KEY}"
    if authorization != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")


async def get_acting_user(x_user_id: str = Header(...)) -> UUID:
    """The user on whose behalf the request is made (authenticated upstream)."""
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID")
