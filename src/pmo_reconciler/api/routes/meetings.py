"""Meeting routes: extraction commit, review lock, publish, reprocess, delete."""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..auth import get_acting_user, verify_worker_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", dependencies=[Depends(verify_worker_token)])


class ReprocessRequest(BaseModel):
    discard_review_edits: bool = False


class ReviewNoteRequest(BaseModel):
    note: str


@router.post("/{meeting_id}/extraction")
async def submit_extraction(
    meeting_id: UUID,
    payload: dict[str, Any],
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    """Validate and commit a model extraction for a Processing meeting."""
    result = await request.app.state.service.submit_extraction(
        meeting_id, payload, actor_user_id=user_id
    )
    logger.info(
        "meetings.extraction_committed",
        meeting_id=str(meeting_id),
        created=result.created_count,
        updated=result.updated_count,
    )
    return result.to_dict()


@router.post("/{meeting_id}/lock")
async def acquire_lock(
    meeting_id: UUID,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    """Take or refresh the review lock; 409 with the holder when someone else has it."""
    outcome = await request.app.state.lock_manager.acquire(meeting_id, user_id)
    if not outcome.acquired:
        return JSONResponse(
            status_code=409,
            content={"acquired": False, **outcome.conflict.to_dict()},
        )
    return {"acquired": True, "lock": outcome.lock.model_dump(mode="json")}


@router.delete("/{meeting_id}/lock")
async def release_lock(
    meeting_id: UUID,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    released = await request.app.state.lock_manager.release(meeting_id, user_id)
    return {"released": released}


@router.post("/{meeting_id}/lock/force")
async def force_unlock(
    meeting_id: UUID,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    """Administrator override: remove any lock on the meeting."""
    removed = await request.app.state.lock_manager.force_unlock(meeting_id, user_id)
    return {"removed": removed}


@router.post("/{meeting_id}/notes")
async def record_review_note(
    meeting_id: UUID,
    body: ReviewNoteRequest,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    outcome = await request.app.state.lock_manager.record_review_note(
        meeting_id, user_id, body.note
    )
    if not outcome.recorded:
        content: dict[str, Any] = {"recorded": False}
        if outcome.conflict is not None:
            content.update(outcome.conflict.to_dict())
        else:
            content["reason_code"] = "lock_required"
        return JSONResponse(status_code=409, content=content)
    return {"recorded": True, "sequence": outcome.update.sequence}


@router.post("/{meeting_id}/publish")
async def publish(
    meeting_id: UUID,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    outcome = await request.app.state.lock_manager.publish(meeting_id, user_id)
    if not outcome.published:
        return JSONResponse(
            status_code=409,
            content={"published": False, **outcome.conflict.to_dict()},
        )
    return {"published": True}


@router.post("/{meeting_id}/reprocess")
async def reprocess(
    meeting_id: UUID,
    request: Request,
    body: ReprocessRequest | None = None,
    user_id: UUID = Depends(get_acting_user),
):
    """Send a Failed meeting, or a Review meeting with discarded edits, back through extraction."""
    discard = body.discard_review_edits if body is not None else False
    result = await request.app.state.service.reprocess(
        meeting_id, user_id, discard_review_edits=discard
    )
    if result is None:
        return {"status": "processing"}
    return {"status": "review", "result": result.to_dict()}


@router.delete("/{meeting_id}")
async def delete_meeting(
    meeting_id: UUID,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    deleted = await request.app.state.service.delete_meeting(meeting_id, user_id)
    return {"deleted": True, "entities_deleted": deleted}
