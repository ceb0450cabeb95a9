"""
Postgres client for the meeting reconciliation engine.

Owns the SQLAlchemy 2.0 async engine (asyncpg driver) and the small
conversion helpers used when binding Python values to raw SQL parameters.
Higher-level reads and writes live in store/meeting_store.py.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse
from uuid import UUID

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = structlog.get_logger(__name__)


def _to_pg_uuid(val: UUID | str | None) -> str | None:
    """Convert UUID or string to plain string for Postgres, or None."""
    if val is None:
        return None
    return str(val)


def _to_pg_ts(val: datetime | str | None) -> datetime | None:
    """Ensure value is a datetime for asyncpg (which needs native types, not strings).

    If already a datetime, return as-is. If an ISO string, parse it.
    """
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


def _to_jsonb(val: Any) -> str | None:
    """Serialize a JSON-compatible value for a CAST(:x AS jsonb) parameter."""
    if val is None:
        return None
    return json.dumps(val, default=str)


def _from_jsonb(val: Any) -> Any:
    """asyncpg returns jsonb as text unless a codec is registered."""
    if val is None or not isinstance(val, str):
        return val
    return json.loads(val)


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Managed Postgres URLs often include ``channel_binding=require`` and
    ``sslmode=require`` which are libpq parameters. asyncpg rejects unknown
    connection params; SSL is passed through ``connect_args`` instead.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _embedding_to_pgvector(embedding: list[float] | None) -> str | None:
    """Convert embedding list to pgvector literal string, e.g. '[0.1,0.2,...]'."""
    if embedding is None:
        return None
    return '[' + ','.join(str(f) for f in embedding) + ']'


def _pgvector_to_embedding(value: str | list[float] | None) -> list[float] | None:
    """Parse a pgvector text literal ('[0.1,0.2]') back into a list of floats."""
    if value is None:
        return None
    if isinstance(value, list):
        return [float(f) for f in value]
    inner = value.strip().lstrip('[').rstrip(']')
    if not inner:
        return []
    return [float(part) for part in inner.split(',')]


class PostgresClient:
    """
    Async Postgres connection manager.

    Uses SQLAlchemy 2.0 async engine with asyncpg for raw SQL execution.
    Transactions are opened by callers with `engine.begin()`.
    """

    def __init__(self, database_url: str | None = None, ssl_required: bool = True):
        """
        Initialize with a Postgres connection URL.

        Args:
            database_url: Postgres connection URL. Should use asyncpg driver
                          (postgresql+asyncpg://...). If the URL starts with
                          'postgres://' or 'postgresql://', it will be
                          converted to use asyncpg.
            ssl_required: Pass ssl='require' to asyncpg (disable for local servers)
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url
        self._ssl_required = ssl_required

    async def connect(self, database_url: str | None = None) -> None:
        """
        Create the async engine. Idempotent: no-op if already connected.

        Args:
            database_url: Override the URL from __init__.
        """
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        url = _sanitize_url(url)

        # Normalise driver prefix for asyncpg
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql+asyncpg://', 1)
        elif url.startswith('postgresql://') and '+asyncpg' not in url:
            url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)

        connect_args: dict[str, Any] = {'prepared_statement_cache_size': 0}
        if self._ssl_required:
            connect_args['ssl'] = 'require'

        self._engine = create_async_engine(
            url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            pool_timeout=30,
            connect_args=connect_args,
        )
        logger.info('postgres_client.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_client.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresClient not connected, call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_client.connectivity_check_failed')
            return False
