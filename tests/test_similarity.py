"""
Tests for the Similarity Service.
"""

import pytest

from fakes import FakeEmbeddingClient, vector

from pmo_reconciler.config import config
from pmo_reconciler.errors import EmbeddingUnavailableError, ModelTimeoutError
from pmo_reconciler.pipeline.similarity import SimilarityService, cosine_similarity


class TestScores:
    def test_identical_vectors_score_one(self):
        assert SimilarityService.similarity(vector(1, 0), vector(1, 0)) == pytest.approx(1.0)

    def test_score_is_raw_cosine(self):
        assert SimilarityService.similarity(vector(1, 0), vector(0.8, 0.6)) == pytest.approx(0.8)
        assert SimilarityService.similarity(vector(1, 0), vector(0.72, 0.694)) == pytest.approx(
            0.72, abs=1e-3
        )

    def test_orthogonal_vectors_score_zero(self):
        assert SimilarityService.similarity(vector(1, 0), vector(0, 1)) == pytest.approx(0.0)

    def test_negative_cosine_clamped_to_zero(self):
        assert cosine_similarity(vector(1, 0), vector(-1, 0)) == pytest.approx(-1.0)
        assert SimilarityService.similarity(vector(1, 0), vector(-1, 0)) == 0.0

    def test_unnormalized_vectors(self):
        assert SimilarityService.similarity([3.0, 0.0], [4.0, 0.0]) == pytest.approx(1.0)

    def test_degenerate_vectors(self):
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0

    def test_default_threshold(self):
        assert SimilarityService(None).threshold == config.SIMILARITY_THRESHOLD
        assert SimilarityService(None, threshold=0.9).threshold == 0.9


class TestEmbedding:
    @pytest.mark.asyncio
    async def test_embed_many_uses_batch_call(self):
        client = FakeEmbeddingClient({'Fix': vector(1, 0)})
        service = SimilarityService(client)

        vectors = await service.embed_many(['Fix login bug', 'Book venue'])

        assert vectors[0] == vector(1, 0)
        assert client.calls == [['Fix login bug', 'Book venue']]

    @pytest.mark.asyncio
    async def test_no_provider_is_degraded(self):
        service = SimilarityService(None)

        assert service.available is False
        with pytest.raises(EmbeddingUnavailableError):
            await service.embed_many(['Fix login bug'])

    @pytest.mark.asyncio
    async def test_provider_failure_becomes_unavailable(self):
        client = FakeEmbeddingClient(fail=ModelTimeoutError('timed out'))
        service = SimilarityService(client)

        with pytest.raises(EmbeddingUnavailableError) as exc_info:
            await service.embed_many(['Fix login bug'])

        assert exc_info.value.reason_code.value == 'embedding_unavailable'
        assert isinstance(exc_info.value.__cause__, ModelTimeoutError)

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_provider_call(self):
        client = FakeEmbeddingClient()
        service = SimilarityService(client)

        with pytest.raises(EmbeddingUnavailableError):
            await service.embed_many(['Fix login bug', '   '])

        assert client.calls == []

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await SimilarityService(None).embed_many([]) == []
