"""
Tests for the PostgresClient connection manager.

Tests cover:
- Connection management (connect, close, verify_connectivity)
- URL normalisation for the asyncpg driver
- Value conversion helpers (UUID, timestamps, JSONB, pgvector)
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from pmo_reconciler.clients.postgres_client import (
    PostgresClient,
    _embedding_to_pgvector,
    _from_jsonb,
    _pgvector_to_embedding,
    _sanitize_url,
    _to_jsonb,
    _to_pg_ts,
    _to_pg_uuid,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_engine():
    """Create a mock AsyncEngine with a mock connection context manager."""
    engine = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock()

    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)

    engine.begin = MagicMock(return_value=ctx)
    engine.dispose = AsyncMock()

    return engine, conn


@pytest.fixture
def client(mock_engine):
    """Create a PostgresClient with a pre-injected mock engine."""
    engine, _ = mock_engine
    pg = PostgresClient()
    pg._engine = engine
    return pg


# =============================================================================
# Helper Function Tests
# =============================================================================


class TestHelpers:
    """Test conversion helper functions."""

    def test_to_pg_uuid_with_uuid(self):
        uid = uuid4()
        assert _to_pg_uuid(uid) == str(uid)

    def test_to_pg_uuid_with_none(self):
        assert _to_pg_uuid(None) is None

    def test_to_pg_ts_with_datetime(self):
        dt = datetime(2026, 2, 25, 12, 30)
        assert _to_pg_ts(dt) is dt

    def test_to_pg_ts_parses_string(self):
        assert _to_pg_ts('2026-02-25T12:30:00') == datetime(2026, 2, 25, 12, 30)

    def test_to_pg_ts_with_none(self):
        assert _to_pg_ts(None) is None

    def test_jsonb_round_trip(self):
        value = {'overview': 'Release plan agreed', 'highlights': ['a', 'b']}
        assert _from_jsonb(_to_jsonb(value)) == value

    def test_from_jsonb_passes_decoded_values_through(self):
        assert _from_jsonb({'a': 1}) == {'a': 1}
        assert _from_jsonb(None) is None

    def test_embedding_to_pgvector(self):
        assert _embedding_to_pgvector([0.1, 0.2, 0.3]) == '[0.1,0.2,0.3]'

    def test_embedding_to_pgvector_none(self):
        assert _embedding_to_pgvector(None) is None

    def test_pgvector_to_embedding(self):
        assert _pgvector_to_embedding('[0.5,-1,2.25]') == [0.5, -1.0, 2.25]
        assert _pgvector_to_embedding('[]') == []
        assert _pgvector_to_embedding(None) is None

    def test_sanitize_url_strips_libpq_params(self):
        url = 'postgresql://u:p@host/db?sslmode=require&channel_binding=require&application_name=pmo'
        assert _sanitize_url(url) == 'postgresql://u:p@host/db?application_name=pmo'

    def test_sanitize_url_without_query(self):
        assert _sanitize_url('postgresql://host/db') == 'postgresql://host/db'


# =============================================================================
# Connection Management Tests
# =============================================================================


class TestConnectionManagement:
    """Test connect, close, verify_connectivity."""

    @pytest.mark.asyncio
    async def test_connect_creates_engine(self):
        pg = PostgresClient()
        with patch('pmo_reconciler.clients.postgres_client.create_async_engine') as mock_create:
            mock_create.return_value = AsyncMock()
            await pg.connect('postgresql://localhost/test')
            mock_create.assert_called_once()
            assert pg._engine is not None

    @pytest.mark.asyncio
    async def test_connect_normalises_postgres_url(self):
        pg = PostgresClient()
        with patch('pmo_reconciler.clients.postgres_client.create_async_engine') as mock_create:
            mock_create.return_value = AsyncMock()
            await pg.connect('postgres://host/db?sslmode=require')

            url = mock_create.call_args[0][0]
            assert url == 'postgresql+asyncpg://host/db'

    @pytest.mark.asyncio
    async def test_ssl_passed_through_connect_args(self):
        with patch('pmo_reconciler.clients.postgres_client.create_async_engine') as mock_create:
            mock_create.return_value = AsyncMock()
            await PostgresClient().connect('postgresql://host/db')
            assert mock_create.call_args.kwargs['connect_args']['ssl'] == 'require'

            await PostgresClient(ssl_required=False).connect('postgresql://host/db')
            assert 'ssl' not in mock_create.call_args.kwargs['connect_args']

    @pytest.mark.asyncio
    async def test_connect_idempotent(self):
        pg = PostgresClient()
        with patch('pmo_reconciler.clients.postgres_client.create_async_engine') as mock_create:
            mock_create.return_value = AsyncMock()
            await pg.connect('postgresql://localhost/test')
            await pg.connect('postgresql://localhost/test')  # second call is no-op
            assert mock_create.call_count == 1

    @pytest.mark.asyncio
    async def test_connect_raises_without_url(self):
        pg = PostgresClient()
        with pytest.raises(ValueError, match='database_url is required'):
            await pg.connect()

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self, client, mock_engine):
        engine, _ = mock_engine
        await client.close()
        engine.dispose.assert_awaited_once()
        assert client._engine is None

    @pytest.mark.asyncio
    async def test_close_idempotent(self):
        pg = PostgresClient()
        await pg.close()  # should not raise

    @pytest.mark.asyncio
    async def test_verify_connectivity_success(self, client, mock_engine):
        _, conn = mock_engine
        result = await client.verify_connectivity()
        assert result is True
        conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verify_connectivity_failure(self, client, mock_engine):
        engine, _ = mock_engine
        engine.begin.side_effect = Exception('Connection refused')
        result = await client.verify_connectivity()
        assert result is False

    def test_engine_property_raises_when_not_connected(self):
        pg = PostgresClient()
        with pytest.raises(RuntimeError, match='not connected'):
            _ = pg.engine
