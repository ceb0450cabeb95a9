"""POST /ingest: run a batch of transcripts through extraction and reconciliation."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from pmo_reconciler.models.enums import MeetingCategory
from pmo_reconciler.pipeline.ingestion import SourceItem

from ..auth import get_acting_user, verify_worker_token

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(verify_worker_token)])


class IngestItem(BaseModel):
    item_id: str
    project_id: UUID
    file_name: str
    content_type: str = "text/plain"
    content: str
    category: MeetingCategory | None = None


class IngestRequest(BaseModel):
    items: list[IngestItem] = Field(min_length=1)


@router.post("/ingest")
async def ingest(
    body: IngestRequest,
    request: Request,
    user_id: UUID = Depends(get_acting_user),
):
    """Ingest items one by one; the response lists each item's outcome."""
    items = [
        SourceItem(
            item_id=item.item_id,
            project_id=item.project_id,
            file_name=item.file_name,
            content_type=item.content_type,
            content=item.content,
            category=item.category,
            actor_user_id=user_id,
        )
        for item in body.items
    ]
    summary = await request.app.state.ingestion.ingest_batch(items)
    logger.info(
        "ingest.complete",
        processed=summary.processed_count,
        skipped=summary.skipped_count,
        failed=summary.failed_count,
    )
    return summary.to_dict()
