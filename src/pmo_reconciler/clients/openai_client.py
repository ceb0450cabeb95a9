"""
OpenAI client wrapper for the meeting reconciliation engine.

Handles:
- JSON-mode chat completions for meeting extraction
- Embeddings generation (single and batch) for duplicate detection
- Retry logic with exponential backoff on retryable failures
- Mapping of SDK exceptions into the ModelInvocationError family
"""

import json
import os
from typing import Any

from openai import AsyncOpenAI
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import ModelInvocationError, ProviderError, wrap_openai_error


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


_retry_policy = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


class OpenAIClient:
    """
    Async OpenAI client with JSON extraction and embedding support.

    Configuration via environment variables:
    - OPENAI_API_KEY: Required API key
    - OPENAI_CHAT_MODEL: Chat model (default: gpt-4.1-mini)
    - OPENAI_EMBEDDING_MODEL: Embedding model (default: text-embedding-3-small)
    - OPENAI_EMBEDDING_DIMENSIONS: Embedding dimensions (default: 1536)
    - OPENAI_TIMEOUT_SECONDS: Per-request timeout (default: 120)
    """

    def __init__(
        self,
        api_key: str | None = None,
        chat_model: str | None = None,
        embedding_model: str | None = None,
        embedding_dimensions: int | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            chat_model: Model for chat completions (defaults to OPENAI_CHAT_MODEL or gpt-4.1-mini)
            embedding_model: Model for embeddings (defaults to OPENAI_EMBEDDING_MODEL or text-embedding-3-small)
            embedding_dimensions: Embedding vector dimensions (defaults to OPENAI_EMBEDDING_DIMENSIONS or 1536)
            timeout_seconds: Request timeout (defaults to OPENAI_TIMEOUT_SECONDS or 120)
        """
        self.api_key = api_key or os.getenv('OPENAI_API_KEY')
        if not self.api_key:
            raise ValueError('OPENAI_API_KEY environment variable is required')

        self.chat_model = chat_model or os.getenv('OPENAI_CHAT_MODEL', 'gpt-4.1-mini')
        self.embedding_model = embedding_model or os.getenv(
            'OPENAI_EMBEDDING_MODEL', 'text-embedding-3-small'
        )
        self.embedding_dimensions = embedding_dimensions or int(
            os.getenv('OPENAI_EMBEDDING_DIMENSIONS', '1536')
        )
        self.timeout_seconds = timeout_seconds or float(
            os.getenv('OPENAI_TIMEOUT_SECONDS', '120')
        )

        self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_seconds)

    @_retry_policy
    async def chat_completion_json(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        """
        Get a chat completion constrained to a JSON object.

        The returned dict is the raw model payload; it is not validated here.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Override the default chat model
            temperature: Sampling temperature (0.0 for deterministic)

        Returns:
            Parsed JSON object from the assistant's response

        Raises:
            ModelInvocationError: Call failed or the response was not a JSON object
        """
        try:
            response = await self._client.chat.completions.create(
                model=model or self.chat_model,
                messages=messages,  # type: ignore
                temperature=temperature,
                response_format={'type': 'json_object'},
            )
        except Exception as e:
            raise wrap_openai_error(e, {'operation': 'chat_completion_json'}) from e

        content = response.choices[0].message.content or ''
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise ModelInvocationError(
                'Model response was not valid JSON',
                context={'operation': 'chat_completion_json', 'error': str(e)},
            ) from e
        if not isinstance(payload, dict):
            raise ModelInvocationError(
                'Model response was not a JSON object',
                context={'operation': 'chat_completion_json'},
            )
        return payload

    @_retry_policy
    async def create_embedding(self, text: str) -> list[float]:
        """
        Create an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats
        """
        # Clean the text - remove newlines, extra whitespace
        cleaned_text = ' '.join(text.split())

        try:
            response = await self._client.embeddings.create(
                model=self.embedding_model,
                input=cleaned_text,
                dimensions=self.embedding_dimensions,
            )
        except Exception as e:
            raise wrap_openai_error(e, {'operation': 'create_embedding'}) from e
        return response.data[0].embedding

    @_retry_policy
    async def create_embeddings_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Create embeddings for multiple texts in a single API call.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors (same order as input)
        """
        if not texts:
            return []

        cleaned_texts = [' '.join(t.split()) for t in texts]

        try:
            response = await self._client.embeddings.create(
                model=self.embedding_model,
                input=cleaned_texts,
                dimensions=self.embedding_dimensions,
            )
        except Exception as e:
            raise wrap_openai_error(e, {'operation': 'create_embeddings_batch'}) from e

        # Sort by index to ensure order matches input
        sorted_embeddings = sorted(response.data, key=lambda x: x.index)
        return [e.embedding for e in sorted_embeddings]

    async def health_check(self) -> dict[str, bool | str]:
        """
        Verify API connectivity with a minimal request.

        Returns:
            Dict with 'healthy' bool and optional 'error' message
        """
        try:
            await self._client.embeddings.create(
                model=self.embedding_model,
                input='health check',
                dimensions=self.embedding_dimensions,
            )
            return {
                'healthy': True,
                'chat_model': self.chat_model,
                'embedding_model': self.embedding_model,
            }
        except Exception as e:
            return {'healthy': False, 'error': str(e)}

    async def close(self):
        """Close the client connection."""
        await self._client.close()
