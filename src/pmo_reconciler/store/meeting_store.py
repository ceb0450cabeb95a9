"""
Transactional PostgreSQL store for meetings, entities and review locks.

Provides:
- MeetingStore: reads plus the two transaction entry points
  - meeting_transaction(meeting_id): SELECT ... FOR UPDATE on the meeting row,
    serialising every mutation of one meeting (reconciliation commit,
    lock acquire/release, publish, delete)
  - project_transaction(project_id): row lock on the project, used for
    project-wide edits that are not tied to one meeting
- StoreTransaction: the reads and writes available inside a transaction

Lock ordering is always meeting row before project row.
"""

from __future__ import annotations

import hashlib
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..clients.postgres_client import (
    PostgresClient,
    _embedding_to_pgvector,
    _from_jsonb,
    _pgvector_to_embedding,
    _to_jsonb,
    _to_pg_ts,
    _to_pg_uuid,
)
from ..errors import MeetingNotFoundError, ProjectNotFoundError, wrap_storage_error
from ..logging import get_logger
from ..models.entities import (
    ENTITY_MODELS,
    EntityUpdate,
    EvidenceRecord,
    TrackedEntity,
)
from ..models.enums import EntityKind, MeetingStatus
from ..models.lock import ReviewLock
from ..models.meeting import Meeting, MeetingUpdate, Project, ProjectMember

logger = get_logger(__name__)

_COMMON_ENTITY_FIELDS = frozenset(TrackedEntity.model_fields) | {'status', 'superseded_by_id'}

_ENTITY_COLUMNS = """
    id, kind, project_id, title, status, source, source_meeting_id,
    external_id, embedding::text AS embedding, attributes, superseded_by_id,
    created_at, updated_at, deleted_at
"""

_MEETING_COLUMNS = """
    id, project_id, title, date, category, status, transcript_text,
    content_fingerprint, source_name, recap, tone, fishbone,
    failure_reason_code, failure_message, processed_at, created_at, updated_at
"""


# =============================================================================
# Row mapping
# =============================================================================


def evidence_key(record: EvidenceRecord) -> str:
    """Stable digest of an evidence record's identity."""
    raw = json.dumps([_to_pg_uuid(v) if isinstance(v, UUID) else v for v in record.key])
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()


def _entity_attributes(entity: TrackedEntity) -> dict[str, Any]:
    """Kind-specific fields, stored as JSONB."""
    specific = set(type(entity).model_fields) - _COMMON_ENTITY_FIELDS
    return entity.model_dump(mode='json', include=specific)


def _entity_params(entity: TrackedEntity) -> dict[str, Any]:
    return {
        'id': _to_pg_uuid(entity.id),
        'kind': entity.kind.value,
        'project_id': _to_pg_uuid(entity.project_id),
        'title': entity.title,
        'status': getattr(entity, 'status').value,
        'source': entity.source.value,
        'source_meeting_id': _to_pg_uuid(entity.source_meeting_id),
        'external_id': entity.external_id,
        'embedding': _embedding_to_pgvector(entity.embedding),
        'attributes': _to_jsonb(_entity_attributes(entity)),
        'superseded_by_id': _to_pg_uuid(getattr(entity, 'superseded_by_id', None)),
        'created_at': _to_pg_ts(entity.created_at),
        'updated_at': _to_pg_ts(entity.updated_at),
        'deleted_at': _to_pg_ts(entity.deleted_at),
    }


def _entity_from_row(
    row: Any,
    evidence: list[EvidenceRecord],
    updates: list[EntityUpdate],
) -> TrackedEntity:
    data = dict(row._mapping)
    model = ENTITY_MODELS[EntityKind(data['kind'])]
    attributes = _from_jsonb(data.pop('attributes')) or {}
    values = {
        'id': data['id'],
        'project_id': data['project_id'],
        'title': data['title'],
        'status': data['status'],
        'source': data['source'],
        'source_meeting_id': data['source_meeting_id'],
        'external_id': data['external_id'],
        'embedding': _pgvector_to_embedding(data['embedding']),
        'created_at': data['created_at'],
        'updated_at': data['updated_at'],
        'deleted_at': data['deleted_at'],
        'evidence': evidence,
        'updates': updates,
        **attributes,
    }
    if data.get('superseded_by_id') is not None:
        values['superseded_by_id'] = data['superseded_by_id']
    return model.model_validate(values)


def _meeting_params(meeting: Meeting) -> dict[str, Any]:
    return {
        'id': _to_pg_uuid(meeting.id),
        'project_id': _to_pg_uuid(meeting.project_id),
        'title': meeting.title,
        'date': meeting.date,
        'category': meeting.category.value if meeting.category else None,
        'status': meeting.status.value,
        'transcript_text': meeting.transcript_text,
        'content_fingerprint': meeting.content_fingerprint,
        'source_name': meeting.source_name,
        'recap': _to_jsonb(meeting.recap),
        'tone': _to_jsonb(meeting.tone),
        'fishbone': _to_jsonb(meeting.fishbone),
        'failure_reason_code': meeting.failure_reason_code,
        'failure_message': meeting.failure_message,
        'processed_at': _to_pg_ts(meeting.processed_at),
        'created_at': _to_pg_ts(meeting.created_at),
        'updated_at': _to_pg_ts(meeting.updated_at),
    }


def _meeting_from_row(row: Any, updates: list[MeetingUpdate]) -> Meeting:
    data = dict(row._mapping)
    for key in ('recap', 'tone', 'fishbone'):
        data[key] = _from_jsonb(data[key])
    data['updates'] = updates
    return Meeting.model_validate(data)


def _lock_from_row(row: Any) -> ReviewLock:
    return ReviewLock.model_validate(dict(row._mapping))


# =============================================================================
# Shared queries (usable with any connection)
# =============================================================================


async def _load_meeting_updates(conn: Any, meeting_id: UUID) -> list[MeetingUpdate]:
    result = await conn.execute(
        text("""
            SELECT sequence, kind, from_status, to_status, actor_user_id,
                   message, reason_code, created_at
            FROM meeting_updates
            WHERE meeting_id = :meeting_id
            ORDER BY sequence
        """),
        {'meeting_id': _to_pg_uuid(meeting_id)},
    )
    return [MeetingUpdate.model_validate(dict(r._mapping)) for r in result.fetchall()]


async def _load_meeting(conn: Any, meeting_id: UUID, for_update: bool = False) -> Meeting | None:
    sql = f"SELECT {_MEETING_COLUMNS} FROM meetings WHERE id = :id"
    if for_update:
        sql += ' FOR UPDATE'
    result = await conn.execute(text(sql), {'id': _to_pg_uuid(meeting_id)})
    row = result.fetchone()
    if row is None:
        return None
    return _meeting_from_row(row, await _load_meeting_updates(conn, meeting_id))


async def _load_entities(conn: Any, where: str, params: dict[str, Any]) -> list[TrackedEntity]:
    result = await conn.execute(
        text(f"SELECT {_ENTITY_COLUMNS} FROM project_entities WHERE {where} ORDER BY created_at"),
        params,
    )
    rows = result.fetchall()
    if not rows:
        return []

    ids = [str(r._mapping['id']) for r in rows]
    evidence_by_entity: dict[str, list[EvidenceRecord]] = {i: [] for i in ids}
    updates_by_entity: dict[str, list[EntityUpdate]] = {i: [] for i in ids}

    ev_result = await conn.execute(
        text("""
            SELECT entity_id, quote, speaker, timestamp, meeting_id, created_at
            FROM entity_evidence
            WHERE entity_id = ANY(CAST(:ids AS uuid[]))
            ORDER BY created_at
        """),
        {'ids': ids},
    )
    for r in ev_result.fetchall():
        data = dict(r._mapping)
        entity_id = str(data.pop('entity_id'))
        evidence_by_entity[entity_id].append(EvidenceRecord.model_validate(data))

    up_result = await conn.execute(
        text("""
            SELECT entity_id, id, content, source, meeting_id, created_by_user_id,
                   evidence_quote, created_at
            FROM entity_updates
            WHERE entity_id = ANY(CAST(:ids AS uuid[]))
            ORDER BY created_at, id
        """),
        {'ids': ids},
    )
    for r in up_result.fetchall():
        data = dict(r._mapping)
        entity_id = str(data.pop('entity_id'))
        updates_by_entity[entity_id].append(EntityUpdate.model_validate(data))

    return [
        _entity_from_row(r, evidence_by_entity[str(r._mapping['id'])], updates_by_entity[str(r._mapping['id'])])
        for r in rows
    ]


# =============================================================================
# Transaction
# =============================================================================


class StoreTransaction:
    """
    Reads and writes inside one open database transaction.

    `meeting` is the row-locked meeting for meeting transactions and None
    for project transactions.
    """

    def __init__(self, conn: Any, meeting: Meeting | None = None):
        self.conn = conn
        self.meeting = meeting

    # -------------------------------------------------------------------------
    # Projects and entities
    # -------------------------------------------------------------------------

    async def get_project(self, project_id: UUID, for_update: bool = False) -> Project | None:
        sql = 'SELECT id, name, created_at FROM projects WHERE id = :id'
        if for_update:
            sql += ' FOR UPDATE'
        result = await self.conn.execute(text(sql), {'id': _to_pg_uuid(project_id)})
        row = result.fetchone()
        return Project.model_validate(dict(row._mapping)) if row is not None else None

    async def list_entities(self, kind: EntityKind, project_id: UUID) -> list[TrackedEntity]:
        """Non-deleted entities of one kind in a project, with evidence and history."""
        return await _load_entities(
            self.conn,
            'project_id = :project_id AND kind = :kind AND deleted_at IS NULL',
            {'project_id': _to_pg_uuid(project_id), 'kind': kind.value},
        )

    async def list_project_members(self, project_id: UUID) -> list[ProjectMember]:
        """Members of a project with their profile email and name."""
        result = await self.conn.execute(
            text("""
                SELECT p.id AS user_id, p.email, p.full_name
                FROM project_members m
                JOIN profiles p ON p.id = m.user_id
                WHERE m.project_id = :project_id
                ORDER BY p.full_name
            """),
            {'project_id': _to_pg_uuid(project_id)},
        )
        return [ProjectMember.model_validate(dict(r._mapping)) for r in result.fetchall()]

    async def get_entity(self, entity_id: UUID, for_update: bool = False) -> TrackedEntity | None:
        where = 'id = :id'
        if for_update:
            # Lock the row first; _load_entities re-reads it inside this transaction
            await self.conn.execute(
                text('SELECT id FROM project_entities WHERE id = :id FOR UPDATE'),
                {'id': _to_pg_uuid(entity_id)},
            )
        entities = await _load_entities(self.conn, where, {'id': _to_pg_uuid(entity_id)})
        return entities[0] if entities else None

    async def insert_entity(self, entity: TrackedEntity) -> None:
        await self.conn.execute(
            text("""
                INSERT INTO project_entities (
                    id, kind, project_id, title, status, source, source_meeting_id,
                    external_id, embedding, attributes, superseded_by_id,
                    created_at, updated_at, deleted_at
                ) VALUES (
                    :id, :kind, :project_id, :title, :status, :source, :source_meeting_id,
                    :external_id, CAST(:embedding AS vector), CAST(:attributes AS jsonb),
                    :superseded_by_id, :created_at, :updated_at, :deleted_at
                )
            """),
            _entity_params(entity),
        )
        await self._write_children(entity)

    async def save_entity(self, entity: TrackedEntity) -> None:
        """Write mutable columns and append any evidence or history not yet stored."""
        await self.conn.execute(
            text("""
                UPDATE project_entities SET
                    title = :title,
                    status = :status,
                    external_id = :external_id,
                    embedding = CAST(:embedding AS vector),
                    attributes = CAST(:attributes AS jsonb),
                    superseded_by_id = :superseded_by_id,
                    updated_at = :updated_at,
                    deleted_at = :deleted_at
                WHERE id = :id
            """),
            _entity_params(entity),
        )
        await self._write_children(entity)

    async def _write_children(self, entity: TrackedEntity) -> None:
        for record in entity.evidence:
            await self.conn.execute(
                text("""
                    INSERT INTO entity_evidence (
                        entity_id, evidence_key, meeting_id, quote, speaker, timestamp, created_at
                    ) VALUES (
                        :entity_id, :evidence_key, :meeting_id, :quote, :speaker, :timestamp, :created_at
                    )
                    ON CONFLICT (entity_id, evidence_key) DO NOTHING
                """),
                {
                    'entity_id': _to_pg_uuid(entity.id),
                    'evidence_key': evidence_key(record),
                    'meeting_id': _to_pg_uuid(record.meeting_id),
                    'quote': record.quote,
                    'speaker': record.speaker,
                    'timestamp': record.timestamp,
                    'created_at': _to_pg_ts(record.created_at),
                },
            )
        for update in entity.updates:
            await self.conn.execute(
                text("""
                    INSERT INTO entity_updates (
                        id, entity_id, content, source, meeting_id,
                        created_by_user_id, evidence_quote, created_at
                    ) VALUES (
                        :id, :entity_id, :content, :source, :meeting_id,
                        :created_by_user_id, :evidence_quote, :created_at
                    )
                    ON CONFLICT (id) DO NOTHING
                """),
                {
                    'id': _to_pg_uuid(update.id),
                    'entity_id': _to_pg_uuid(entity.id),
                    'content': update.content,
                    'source': update.source,
                    'meeting_id': _to_pg_uuid(update.meeting_id),
                    'created_by_user_id': _to_pg_uuid(update.created_by_user_id),
                    'evidence_quote': update.evidence_quote,
                    'created_at': _to_pg_ts(update.created_at),
                },
            )

    async def mark_entities_deleted(self, meeting_id: UUID, at: datetime) -> int:
        """Logically delete every live entity first created by a meeting."""
        result = await self.conn.execute(
            text("""
                UPDATE project_entities
                SET deleted_at = :deleted_at, updated_at = :deleted_at
                WHERE source_meeting_id = :meeting_id AND deleted_at IS NULL
            """),
            {'meeting_id': _to_pg_uuid(meeting_id), 'deleted_at': _to_pg_ts(at)},
        )
        return result.rowcount or 0

    # -------------------------------------------------------------------------
    # Meeting
    # -------------------------------------------------------------------------

    async def save_meeting(self, meeting: Meeting | None = None) -> None:
        """Write the meeting row and append history entries not yet stored."""
        meeting = meeting or self.meeting
        if meeting is None:
            raise ValueError('No meeting in this transaction')
        await self.conn.execute(
            text("""
                UPDATE meetings SET
                    title = :title, date = :date, category = :category, status = :status,
                    transcript_text = :transcript_text,
                    content_fingerprint = :content_fingerprint, source_name = :source_name,
                    recap = CAST(:recap AS jsonb), tone = CAST(:tone AS jsonb),
                    fishbone = CAST(:fishbone AS jsonb),
                    failure_reason_code = :failure_reason_code,
                    failure_message = :failure_message,
                    processed_at = :processed_at, updated_at = :updated_at
                WHERE id = :id
            """),
            _meeting_params(meeting),
        )
        await _insert_meeting_updates(self.conn, meeting)

    # -------------------------------------------------------------------------
    # Review lock
    # -------------------------------------------------------------------------

    async def get_lock(self, meeting_id: UUID) -> ReviewLock | None:
        result = await self.conn.execute(
            text("""
                SELECT meeting_id, holder_user_id, acquired_at, expires_at
                FROM review_locks WHERE meeting_id = :meeting_id
            """),
            {'meeting_id': _to_pg_uuid(meeting_id)},
        )
        row = result.fetchone()
        return _lock_from_row(row) if row is not None else None

    async def put_lock(self, lock: ReviewLock) -> None:
        await self.conn.execute(
            text("""
                INSERT INTO review_locks (meeting_id, holder_user_id, acquired_at, expires_at)
                VALUES (:meeting_id, :holder_user_id, :acquired_at, :expires_at)
                ON CONFLICT (meeting_id) DO UPDATE SET
                    holder_user_id = EXCLUDED.holder_user_id,
                    acquired_at = EXCLUDED.acquired_at,
                    expires_at = EXCLUDED.expires_at
            """),
            {
                'meeting_id': _to_pg_uuid(lock.meeting_id),
                'holder_user_id': _to_pg_uuid(lock.holder_user_id),
                'acquired_at': _to_pg_ts(lock.acquired_at),
                'expires_at': _to_pg_ts(lock.expires_at),
            },
        )

    async def delete_lock(self, meeting_id: UUID) -> bool:
        result = await self.conn.execute(
            text('DELETE FROM review_locks WHERE meeting_id = :meeting_id'),
            {'meeting_id': _to_pg_uuid(meeting_id)},
        )
        return bool(result.rowcount)


async def _insert_meeting_updates(conn: Any, meeting: Meeting) -> None:
    for update in meeting.updates:
        await conn.execute(
            text("""
                INSERT INTO meeting_updates (
                    meeting_id, sequence, kind, from_status, to_status,
                    actor_user_id, message, reason_code, created_at
                ) VALUES (
                    :meeting_id, :sequence, :kind, :from_status, :to_status,
                    :actor_user_id, :message, :reason_code, :created_at
                )
                ON CONFLICT (meeting_id, sequence) DO NOTHING
            """),
            {
                'meeting_id': _to_pg_uuid(meeting.id),
                'sequence': update.sequence,
                'kind': update.kind.value,
                'from_status': update.from_status.value if update.from_status else None,
                'to_status': update.to_status.value if update.to_status else None,
                'actor_user_id': _to_pg_uuid(update.actor_user_id),
                'message': update.message,
                'reason_code': update.reason_code,
                'created_at': _to_pg_ts(update.created_at),
            },
        )


# =============================================================================
# Store
# =============================================================================


class MeetingStore:
    """
    PostgreSQL-backed store for the reconciliation engine.

    Every database exception leaving the store is wrapped as StorageError;
    domain errors raised by callers inside a transaction roll it back and
    propagate unchanged.
    """

    def __init__(self, postgres: PostgresClient):
        """
        Initialize the store.

        Args:
            postgres: Connected Postgres client
        """
        self.postgres = postgres

    @asynccontextmanager
    async def meeting_transaction(
        self, meeting_id: UUID, lock_project: bool = False
    ) -> AsyncIterator[StoreTransaction]:
        """
        Open a transaction holding the meeting row lock.

        Args:
            meeting_id: Meeting to lock
            lock_project: Also lock the owning project row (reconciliation)

        Raises:
            MeetingNotFoundError: No such meeting
            ProjectNotFoundError: lock_project and the project is missing
            StorageError: Database failure (transaction rolled back)
        """
        try:
            async with self.postgres.engine.begin() as conn:
                meeting = await _load_meeting(conn, meeting_id, for_update=True)
                if meeting is None:
                    raise MeetingNotFoundError(
                        'Meeting not found', context={'meeting_id': str(meeting_id)}
                    )
                tx = StoreTransaction(conn, meeting)
                if lock_project:
                    project = await tx.get_project(meeting.project_id, for_update=True)
                    if project is None:
                        raise ProjectNotFoundError(
                            'Project not found',
                            context={'project_id': str(meeting.project_id)},
                        )
                yield tx
        except SQLAlchemyError as e:
            logger.error('store.transaction_failed', meeting_id=str(meeting_id), error=str(e))
            raise wrap_storage_error(e, {'meeting_id': str(meeting_id)}) from e

    @asynccontextmanager
    async def project_transaction(self, project_id: UUID) -> AsyncIterator[StoreTransaction]:
        """
        Open a transaction holding the project row lock.

        Raises:
            ProjectNotFoundError: No such project
            StorageError: Database failure (transaction rolled back)
        """
        try:
            async with self.postgres.engine.begin() as conn:
                tx = StoreTransaction(conn)
                if await tx.get_project(project_id, for_update=True) is None:
                    raise ProjectNotFoundError(
                        'Project not found', context={'project_id': str(project_id)}
                    )
                yield tx
        except SQLAlchemyError as e:
            logger.error('store.transaction_failed', project_id=str(project_id), error=str(e))
            raise wrap_storage_error(e, {'project_id': str(project_id)}) from e

    # =========================================================================
    # Reads and single-statement writes
    # =========================================================================

    async def create_project(self, project: Project) -> Project:
        try:
            async with self.postgres.engine.begin() as conn:
                await conn.execute(
                    text('INSERT INTO projects (id, name, created_at) VALUES (:id, :name, :created_at)'),
                    {
                        'id': _to_pg_uuid(project.id),
                        'name': project.name,
                        'created_at': _to_pg_ts(project.created_at),
                    },
                )
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'project_id': str(project.id)}) from e
        return project

    async def get_project(self, project_id: UUID) -> Project | None:
        try:
            async with self.postgres.engine.begin() as conn:
                return await StoreTransaction(conn).get_project(project_id)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'project_id': str(project_id)}) from e

    async def create_meeting(self, meeting: Meeting) -> Meeting:
        """Insert a new meeting with its initial history."""
        try:
            async with self.postgres.engine.begin() as conn:
                await conn.execute(
                    text(f"""
                        INSERT INTO meetings ({_MEETING_COLUMNS})
                        VALUES (
                            :id, :project_id, :title, :date, :category, :status,
                            :transcript_text, :content_fingerprint, :source_name,
                            CAST(:recap AS jsonb), CAST(:tone AS jsonb), CAST(:fishbone AS jsonb),
                            :failure_reason_code, :failure_message, :processed_at,
                            :created_at, :updated_at
                        )
                    """),
                    _meeting_params(meeting),
                )
                await _insert_meeting_updates(conn, meeting)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'meeting_id': str(meeting.id)}) from e
        logger.info('store.meeting_created', meeting_id=str(meeting.id))
        return meeting

    async def get_meeting(self, meeting_id: UUID) -> Meeting | None:
        try:
            async with self.postgres.engine.begin() as conn:
                return await _load_meeting(conn, meeting_id)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'meeting_id': str(meeting_id)}) from e

    async def find_meeting_by_fingerprint(
        self, project_id: UUID, fingerprint: str
    ) -> Meeting | None:
        """A live (non-Deleted) meeting of the project with the same transcript fingerprint."""
        try:
            async with self.postgres.engine.begin() as conn:
                result = await conn.execute(
                    text("""
                        SELECT id FROM meetings
                        WHERE project_id = :project_id
                          AND content_fingerprint = :fingerprint
                          AND status <> :deleted
                        ORDER BY created_at
                        LIMIT 1
                    """),
                    {
                        'project_id': _to_pg_uuid(project_id),
                        'fingerprint': fingerprint,
                        'deleted': MeetingStatus.DELETED.value,
                    },
                )
                row = result.fetchone()
                if row is None:
                    return None
                return await _load_meeting(conn, row._mapping['id'])
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'project_id': str(project_id)}) from e

    async def get_entity(self, entity_id: UUID) -> TrackedEntity | None:
        try:
            async with self.postgres.engine.begin() as conn:
                return await StoreTransaction(conn).get_entity(entity_id)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'entity_id': str(entity_id)}) from e

    async def list_entities(self, kind: EntityKind, project_id: UUID) -> list[TrackedEntity]:
        try:
            async with self.postgres.engine.begin() as conn:
                return await StoreTransaction(conn).list_entities(kind, project_id)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'project_id': str(project_id)}) from e

    async def list_project_members(self, project_id: UUID) -> list[ProjectMember]:
        try:
            async with self.postgres.engine.begin() as conn:
                return await StoreTransaction(conn).list_project_members(project_id)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'project_id': str(project_id)}) from e

    async def get_lock(self, meeting_id: UUID) -> ReviewLock | None:
        try:
            async with self.postgres.engine.begin() as conn:
                return await StoreTransaction(conn).get_lock(meeting_id)
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'meeting_id': str(meeting_id)}) from e
