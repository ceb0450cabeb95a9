"""Decision routes: manual supersede."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ..auth import get_acting_user, verify_worker_token

router = APIRouter(prefix="/decisions", dependencies=[Depends(verify_worker_token)])


class SupersedeRequest(BaseModel):
    superseded_by_id: UUID


@router.post("/{decision_id}/supersede")
async def supersede_decision(
    decision_id: UUID,
    body: SupersedeRequest,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    decision = await request.app.state.service.supersede_decision(
        decision_id, body.superseded_by_id, user_id
    )
    return {
        "id": str(decision.id),
        "status": decision.status.value,
        "superseded_by_id": str(decision.superseded_by_id),
    }
