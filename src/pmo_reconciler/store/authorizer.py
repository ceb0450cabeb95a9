"""
Authorization checks consumed by the engine.

Authentication itself happens upstream; the engine only asks whether an
already-identified user may act on a project.
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..clients.postgres_client import PostgresClient, _to_pg_uuid
from ..errors import wrap_storage_error

ADMIN_ROLE = 'admin'


class Authorizer:
    """Interface: membership and admin checks."""

    async def is_project_member(self, user_id: UUID, project_id: UUID) -> bool:
        raise NotImplementedError

    async def is_admin(self, user_id: UUID) -> bool:
        raise NotImplementedError


class PostgresAuthorizer(Authorizer):
    """Reads project_members and profiles.global_role."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    async def is_project_member(self, user_id: UUID, project_id: UUID) -> bool:
        try:
            async with self.postgres.engine.begin() as conn:
                result = await conn.execute(
                    text("""
                        SELECT 1 FROM project_members
                        WHERE project_id = :project_id AND user_id = :user_id
                    """),
                    {'project_id': _to_pg_uuid(project_id), 'user_id': _to_pg_uuid(user_id)},
                )
                return result.fetchone() is not None
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'user_id': str(user_id)}) from e

    async def is_admin(self, user_id: UUID) -> bool:
        try:
            async with self.postgres.engine.begin() as conn:
                result = await conn.execute(
                    text('SELECT global_role FROM profiles WHERE id = :user_id'),
                    {'user_id': _to_pg_uuid(user_id)},
                )
                row = result.fetchone()
                return row is not None and row._mapping['global_role'] == ADMIN_ROLE
        except SQLAlchemyError as e:
            raise wrap_storage_error(e, {'user_id': str(user_id)}) from e
