"""FastAPI application for the meeting reconciliation service."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from pmo_reconciler.clients.openai_client import OpenAIClient
from pmo_reconciler.clients.postgres_client import PostgresClient
from pmo_reconciler.pipeline.extractor import MeetingExtractor
from pmo_reconciler.pipeline.ingestion import IngestionCoordinator
from pmo_reconciler.pipeline.reconciler import ReconciliationEngine
from pmo_reconciler.pipeline.similarity import SimilarityService
from pmo_reconciler.review.lock_manager import ReviewLockManager
from pmo_reconciler.service import ReconciliationService
from pmo_reconciler.store.authorizer import PostgresAuthorizer
from pmo_reconciler.store.meeting_store import MeetingStore
from pmo_reconciler.store.schema import setup_schema

from .config import get_settings
from .errors import install_error_handlers
from .middleware import RequestContextMiddleware
from .routes.decisions import router as decisions_router
from .routes.health import router as health_router
from .routes.ingest import router as ingest_router
from .routes.meetings import router as meetings_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize persistent clients at startup, clean up at shutdown."""
    settings = get_settings()

    logger.info("lifespan.startup")

    postgres = PostgresClient(settings.DATABASE_URL, ssl_required=settings.DATABASE_SSL_REQUIRED)
    await postgres.connect()
    await setup_schema(postgres)

    # Without an OpenAI key the service still reconciles submitted
    # extractions; duplicate detection falls back to exact titles
    openai: OpenAIClient | None = None
    if settings.OPENAI_API_KEY:
        openai = OpenAIClient(api_key=settings.OPENAI_API_KEY)
    else:
        logger.warning("lifespan.openai_disabled")

    similarity = SimilarityService(openai)
    store = MeetingStore(postgres)
    authorizer = PostgresAuthorizer(postgres)
    service = ReconciliationService(
        store=store,
        engine=ReconciliationEngine(similarity),
        authorizer=authorizer,
        extractor=MeetingExtractor(openai) if openai is not None else None,
    )

    # Store on app.state for request handlers
    app.state.postgres = postgres
    app.state.openai = openai
    app.state.similarity = similarity
    app.state.store = store
    app.state.service = service
    app.state.lock_manager = ReviewLockManager(store, authorizer)
    app.state.ingestion = IngestionCoordinator(store, service)

    logger.info("lifespan.ready", similarity_available=similarity.available)
    yield

    # Shutdown
    logger.info("lifespan.shutdown")
    if openai is not None:
        await openai.close()
    await postgres.close()


app = FastAPI(
    title="pmo-reconciler",
    description="Meeting extraction reconciliation and review-lock service",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
install_error_handlers(app)
app.include_router(health_router)
app.include_router(meetings_router)
app.include_router(decisions_router)
app.include_router(ingest_router)
