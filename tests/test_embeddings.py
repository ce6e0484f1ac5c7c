"""Tests for the embedding generator and its cache."""

import pytest

from conftest import DIMENSIONS, FakeEmbeddingBackend, word_vector
from tm_pretranslator.config import EmbeddingConfig
from tm_pretranslator.exceptions import (
    EmbeddingDimensionError,
    InvalidCredentialsError,
    RetrievalDegradation,
    TransientProviderError,
    ValidationError,
)
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator, normalize_text
from tm_pretranslator.translator.retry import RetryPolicy

NO_WAIT = RetryPolicy(max_attempts=2, timeout_seconds=None, backoff=lambda attempt: 0)


class FlakyBackend(FakeEmbeddingBackend):
    """Fails the first call with a transient error."""

    async def embed(self, texts):
        self.calls.append(list(texts))
        if len(self.calls) == 1:
            raise TransientProviderError("503 from upstream", status_code=503)
        return [word_vector(t) for t in texts]


class TestNormalizeText:
    def test_trims_and_lowercases(self):
        assert normalize_text("  Substation Repair ") == "substation repair"


class TestEmbed:
    """Tests for EmbeddingGenerator.embed."""

    @pytest.mark.asyncio
    async def test_returns_vector_of_configured_dimension(self, embedder):
        vector = await embedder.embed("Install the cable")
        assert len(vector) == DIMENSIONS

    @pytest.mark.asyncio
    async def test_cache_hit_skips_backend(self, embedder, embedding_backend):
        first = await embedder.embed("Install the cable")
        second = await embedder.embed("  install THE cable ")

        assert first == second
        assert len(embedding_backend.calls) == 1
        stats = embedder.cache_stats()
        assert stats["size"] == 1
        assert stats["hits"] == 1

    @pytest.mark.asyncio
    async def test_use_cache_false_calls_backend(self, embedder, embedding_backend):
        await embedder.embed("Install the cable")
        await embedder.embed("Install the cable", use_cache=False)
        assert len(embedding_backend.calls) == 2

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, embedder):
        with pytest.raises(ValidationError):
            await embedder.embed("   ")

    @pytest.mark.asyncio
    async def test_without_backend_degrades(self, app_config):
        generator = EmbeddingGenerator(app_config.embedding)
        assert not generator.is_available()
        with pytest.raises(RetrievalDegradation):
            await generator.embed("text")

    @pytest.mark.asyncio
    async def test_wrong_dimension_rejected(self):
        generator = EmbeddingGenerator(
            EmbeddingConfig(api_key="", dimensions=DIMENSIONS),
            backend=FakeEmbeddingBackend(dimensions=DIMENSIONS + 1),
            retry_policy=NO_WAIT,
        )
        with pytest.raises(EmbeddingDimensionError):
            await generator.embed("text")

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, app_config):
        backend = FlakyBackend()
        generator = EmbeddingGenerator(app_config.embedding, backend=backend, retry_policy=NO_WAIT)

        vector = await generator.embed("text")

        assert len(vector) == DIMENSIONS
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_credentials_error_not_retried(self, app_config):
        backend = FakeEmbeddingBackend(error=InvalidCredentialsError("bad key", status_code=401))
        generator = EmbeddingGenerator(app_config.embedding, backend=backend, retry_policy=NO_WAIT)

        with pytest.raises(InvalidCredentialsError):
            await generator.embed("text")
        assert len(backend.calls) == 1

    def test_default_policy_backs_off_exponentially(self, app_config):
        policy = EmbeddingGenerator(app_config.embedding, backend=FakeEmbeddingBackend()).retry_policy

        assert policy.max_attempts == 3
        assert [policy.backoff(n) for n in (1, 2)] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_backend_bugs_propagate(self, app_config):
        backend = FakeEmbeddingBackend(error=AttributeError("no data"))
        generator = EmbeddingGenerator(app_config.embedding, backend=backend, retry_policy=NO_WAIT)

        with pytest.raises(AttributeError):
            await generator.embed("text")
        assert len(backend.calls) == 1


class TestEmbedBatch:
    """Tests for EmbeddingGenerator.embed_batch."""

    @pytest.mark.asyncio
    async def test_deduplicates_and_keeps_order(self, embedder, embedding_backend):
        vectors = await embedder.embed_batch(["Pump", "Cable", "pump "])

        assert vectors[0] == vectors[2]
        assert vectors[1] == word_vector("cable")
        assert embedding_backend.calls == [["pump", "cable"]]

    @pytest.mark.asyncio
    async def test_cached_texts_not_resent(self, embedder, embedding_backend):
        await embedder.embed("pump")
        await embedder.embed_batch(["pump", "cable"])
        assert embedding_backend.calls[-1] == ["cable"]

    @pytest.mark.asyncio
    async def test_chunks_by_batch_size(self):
        backend = FakeEmbeddingBackend()
        generator = EmbeddingGenerator(
            EmbeddingConfig(api_key="", dimensions=DIMENSIONS, batch_size=2),
            backend=backend,
            retry_policy=NO_WAIT,
        )
        await generator.embed_batch(["a", "b", "c", "d", "e"])
        assert [len(call) for call in backend.calls] == [2, 2, 1]


class TestCacheManagement:
    @pytest.mark.asyncio
    async def test_clear_cache(self, embedder):
        await embedder.embed("pump")
        embedder.clear_cache()
        assert embedder.cache_stats()["size"] == 0

    def test_cache_bounds_from_config(self, embedder):
        stats = embedder.cache_stats()
        assert stats["max_size"] == 10000
        assert stats["ttl_seconds"] == 7 * 24 * 3600

    def test_model_info(self, embedder):
        info = embedder.model_info()
        assert info["model"] == "text-embedding-3-small"
        assert info["dimensions"] == DIMENSIONS
        assert info["available"] is True
