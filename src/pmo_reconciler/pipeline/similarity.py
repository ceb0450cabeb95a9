"""
Similarity Service: embeddings and scores for duplicate detection.

Scores are the raw cosine similarity clamped to [0, 1], so the threshold
compares directly against cosine. When no embedding provider is configured,
or the provider fails, embed_many() raises EmbeddingUnavailableError and
callers skip duplicate detection rather than failing the run.
"""

import numpy as np

from ..clients.openai_client import OpenAIClient
from ..config import config
from ..errors import EmbeddingUnavailableError, ProviderError
from ..logging import get_logger

logger = get_logger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Plain cosine similarity in [-1, 1]; 0.0 for empty or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)
    norms = np.linalg.norm(a_arr) * np.linalg.norm(b_arr)
    if norms == 0.0:
        return 0.0
    return float(np.dot(a_arr, b_arr) / norms)


class SimilarityService:
    """
    Embedding-backed similarity for entity text.

    Usage:
        service = SimilarityService(openai_client)
        vectors = await service.embed_many(["Fix login bug", "Book venue"])
        score = service.similarity(vectors[0], vectors[1])
    """

    def __init__(
        self,
        openai_client: OpenAIClient | None = None,
        threshold: float | None = None,
    ):
        """
        Initialize the service.

        Args:
            openai_client: Embedding provider; None runs in degraded mode
            threshold: Duplicate threshold (defaults to config.SIMILARITY_THRESHOLD)
        """
        self.openai = openai_client
        self.threshold = threshold if threshold is not None else config.SIMILARITY_THRESHOLD

    @property
    def available(self) -> bool:
        return self.openai is not None

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """
        Compute vectors for entity texts in one provider call; all-or-nothing.

        Raises:
            EmbeddingUnavailableError: Empty text, no provider, or provider failure
        """
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise EmbeddingUnavailableError('Cannot embed empty text')
        if self.openai is None:
            raise EmbeddingUnavailableError('No embedding provider configured')
        try:
            return await self.openai.create_embeddings_batch(texts)
        except ProviderError as e:
            logger.warning('similarity.embed_failed', error=str(e), count=len(texts))
            raise EmbeddingUnavailableError(
                'Embedding provider failed', context={'error': str(e)}
            ) from e

    @staticmethod
    def similarity(a: list[float], b: list[float]) -> float:
        """Cosine similarity clamped to [0, 1]."""
        return min(1.0, max(0.0, cosine_similarity(a, b)))
