"""Health check endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Check Postgres connectivity; report whether similarity is available."""
    if not await request.app.state.postgres.verify_connectivity():
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {
        "status": "ok",
        "similarity_available": request.app.state.similarity.available,
    }
