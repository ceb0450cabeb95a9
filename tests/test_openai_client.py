"""
Tests for the OpenAI client wrapper.

Unit tests replace the SDK client with mocks. The live tests at the bottom
hit the actual OpenAI API and are skipped unless OPENAI_API_KEY is set:
    pytest tests/test_openai_client.py -v
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from tenacity import wait_none

from pmo_reconciler.clients.openai_client import OpenAIClient
from pmo_reconciler.errors import ModelInvocationError, ModelQuotaError, ModelTransientError


def _chat_response(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _embedding_response(*vectors: list[float], order: list[int] | None = None) -> SimpleNamespace:
    indexes = order or list(range(len(vectors)))
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=vectors[i]) for i in indexes]
    )


@pytest.fixture
def client() -> OpenAIClient:
    client = OpenAIClient(api_key='sk-test', embedding_dimensions=3)
    sdk = MagicMock()
    sdk.chat.completions.create = AsyncMock()
    sdk.embeddings.create = AsyncMock()
    sdk.close = AsyncMock()
    client._client = sdk
    return client


class TestConfiguration:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv('OPENAI_API_KEY', raising=False)

        with pytest.raises(ValueError, match='OPENAI_API_KEY'):
            OpenAIClient()

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv('OPENAI_CHAT_MODEL', raising=False)
        monkeypatch.delenv('OPENAI_EMBEDDING_DIMENSIONS', raising=False)

        client = OpenAIClient(api_key='sk-test')

        assert client.chat_model == 'gpt-4.1-mini'
        assert client.embedding_dimensions == 1536


class TestChatCompletionJson:
    @pytest.mark.asyncio
    async def test_returns_parsed_object(self, client):
        payload = {'schema_version': 'pmo_tool.v1', 'action_items': []}
        client._client.chat.completions.create.return_value = _chat_response(json.dumps(payload))

        result = await client.chat_completion_json([{'role': 'user', 'content': 'hi'}])

        assert result == payload
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs['response_format'] == {'type': 'json_object'}
        assert kwargs['temperature'] == 0.0
        assert kwargs['model'] == client.chat_model

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, client):
        client._client.chat.completions.create.return_value = _chat_response('not json {')

        with pytest.raises(ModelInvocationError, match='not valid JSON'):
            await client.chat_completion_json([{'role': 'user', 'content': 'hi'}])

    @pytest.mark.asyncio
    async def test_non_object_json_raises(self, client):
        client._client.chat.completions.create.return_value = _chat_response('[1, 2]')

        with pytest.raises(ModelInvocationError, match='JSON object'):
            await client.chat_completion_json([{'role': 'user', 'content': 'hi'}])

    @pytest.mark.asyncio
    async def test_quota_error_not_retried(self, client):
        client._client.chat.completions.create.side_effect = Exception('insufficient_quota')

        with pytest.raises(ModelQuotaError):
            await client.chat_completion_json([{'role': 'user', 'content': 'hi'}])

        assert client._client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, client):
        create = client._client.chat.completions.create
        create.side_effect = [Exception('Rate limit exceeded'), _chat_response('{"ok": true}')]
        call = OpenAIClient.chat_completion_json.retry_with(wait=wait_none())

        result = await call(client, [{'role': 'user', 'content': 'hi'}])

        assert result == {'ok': True}
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, client):
        create = client._client.chat.completions.create
        create.side_effect = Exception('Rate limit exceeded')
        call = OpenAIClient.chat_completion_json.retry_with(wait=wait_none())

        with pytest.raises(ModelTransientError):
            await call(client, [{'role': 'user', 'content': 'hi'}])

        assert create.await_count == 3


class TestEmbeddings:
    @pytest.mark.asyncio
    async def test_batch_preserves_input_order(self, client):
        client._client.embeddings.create.return_value = _embedding_response(
            [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], order=[1, 0]
        )

        vectors = await client.create_embeddings_batch(['first  text', 'second\ntext'])

        assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        kwargs = client._client.embeddings.create.call_args.kwargs
        assert kwargs['input'] == ['first text', 'second text']
        assert kwargs['dimensions'] == 3

    @pytest.mark.asyncio
    async def test_empty_batch_skips_call(self, client):
        assert await client.create_embeddings_batch([]) == []
        client._client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_embedding(self, client):
        client._client.embeddings.create.return_value = _embedding_response([0.5, 0.5, 0.0])

        assert await client.create_embedding('Fix login bug') == [0.5, 0.5, 0.0]

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self, client):
        client._client.embeddings.create.side_effect = Exception('connection refused')

        result = await client.health_check()

        assert result == {'healthy': False, 'error': 'connection refused'}


# =============================================================================
# Live tests
# =============================================================================


class TestOpenAILive:
    """Test OpenAI API connectivity."""

    @pytest.mark.asyncio
    async def test_health_check(self, openai_api_key: str):
        """Verify we can connect to OpenAI API."""
        client = OpenAIClient(api_key=openai_api_key)
        try:
            result = await client.health_check()
            assert result['healthy'] is True
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_batch_embeddings(self, openai_api_key: str):
        """Test creating multiple embeddings in a batch."""
        client = OpenAIClient(api_key=openai_api_key)
        try:
            embeddings = await client.create_embeddings_batch(
                ['Send the rollout checklist by Friday', 'Book the security review']
            )
            assert len(embeddings) == 2
            assert all(len(e) == client.embedding_dimensions for e in embeddings)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_json_completion(self, openai_api_key: str):
        """Test a JSON-mode completion."""
        client = OpenAIClient(api_key=openai_api_key)
        try:
            result = await client.chat_completion_json(
                [
                    {'role': 'system', 'content': 'Reply with a JSON object.'},
                    {'role': 'user', 'content': 'Return {"status": "ok"}.'},
                ]
            )
            assert result.get('status') == 'ok'
        finally:
            await client.close()
