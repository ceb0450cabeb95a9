"""
PostgreSQL schema for the reconciliation store.

Meeting and entity histories are ordered typed rows (meeting_updates,
entity_updates), never opaque blobs. Evidence rows are unique per
(entity_id, evidence_key) so re-applying the same quote is a no-op.
"""

from sqlalchemy import text

from ..clients.postgres_client import PostgresClient
from ..logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS: list[str] = [
    'CREATE EXTENSION IF NOT EXISTS vector',
    """
    CREATE TABLE IF NOT EXISTS projects (
        id UUID PRIMARY KEY,
        name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id UUID PRIMARY KEY,
        email TEXT,
        full_name TEXT,
        global_role TEXT NOT NULL DEFAULT 'consultant'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_members (
        project_id UUID NOT NULL REFERENCES projects(id),
        user_id UUID NOT NULL REFERENCES profiles(id),
        project_role TEXT NOT NULL DEFAULT 'member',
        PRIMARY KEY (project_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meetings (
        id UUID PRIMARY KEY,
        project_id UUID NOT NULL REFERENCES projects(id),
        title TEXT,
        date DATE,
        category TEXT,
        status TEXT NOT NULL,
        transcript_text TEXT,
        content_fingerprint TEXT,
        source_name TEXT,
        recap JSONB,
        tone JSONB,
        fishbone JSONB,
        failure_reason_code TEXT,
        failure_message TEXT,
        processed_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS meetings_project_fingerprint_idx
        ON meetings (project_id, content_fingerprint)
    """,
    """
    CREATE TABLE IF NOT EXISTS meeting_updates (
        meeting_id UUID NOT NULL REFERENCES meetings(id),
        sequence INTEGER NOT NULL,
        kind TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT,
        actor_user_id UUID,
        message TEXT NOT NULL DEFAULT '',
        reason_code TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (meeting_id, sequence)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS review_locks (
        meeting_id UUID PRIMARY KEY REFERENCES meetings(id),
        holder_user_id UUID NOT NULL,
        acquired_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_entities (
        id UUID PRIMARY KEY,
        kind TEXT NOT NULL,
        project_id UUID NOT NULL REFERENCES projects(id),
        title TEXT NOT NULL,
        status TEXT NOT NULL,
        source TEXT NOT NULL,
        source_meeting_id UUID REFERENCES meetings(id),
        external_id TEXT,
        embedding vector,
        attributes JSONB NOT NULL DEFAULT '{}'::jsonb,
        superseded_by_id UUID REFERENCES project_entities(id),
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS project_entities_project_kind_idx
        ON project_entities (project_id, kind) WHERE deleted_at IS NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS project_entities_source_meeting_idx
        ON project_entities (source_meeting_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS entity_evidence (
        entity_id UUID NOT NULL REFERENCES project_entities(id),
        evidence_key TEXT NOT NULL,
        meeting_id UUID REFERENCES meetings(id),
        quote TEXT NOT NULL,
        speaker TEXT,
        timestamp TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (entity_id, evidence_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entity_updates (
        id UUID PRIMARY KEY,
        entity_id UUID NOT NULL REFERENCES project_entities(id),
        content TEXT NOT NULL,
        source TEXT NOT NULL,
        meeting_id UUID REFERENCES meetings(id),
        created_by_user_id UUID,
        evidence_quote TEXT,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
]


async def setup_schema(postgres: PostgresClient) -> None:
    """Create tables and indexes if they do not exist (idempotent)."""
    async with postgres.engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(text(statement))
    logger.info('store.schema_ready', statements=len(SCHEMA_STATEMENTS))
