"""Text embeddings with a bounded, time-limited cache."""

import threading
from typing import Optional, Protocol

import structlog
from cachetools import TTLCache

from tm_pretranslator.config import EmbeddingConfig, get_config, get_effective_embedding_credentials
from tm_pretranslator.exceptions import (
    EmbeddingDimensionError,
    ProviderError,
    RetrievalDegradation,
    ValidationError,
)
from tm_pretranslator.translator.retry import RetryPolicy, classify_error, exponential_backoff

logger = structlog.get_logger()


def normalize_text(text: str) -> str:
    """Cache key form of a text: trimmed and lowercased."""
    return text.strip().lower()


class EmbeddingBackend(Protocol):
    """Turns texts into vectors. Implementations may raise ProviderError."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        ...


class OpenAIEmbeddingBackend:
    """Embeddings through the OpenAI embeddings endpoint."""

    def __init__(self, api_key: str, base_url: str, model: str, dimensions: int):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.dimensions = dimensions
        self._client = None

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def embed(self, texts: list[str]) -> list[list[float]]:
        kwargs = {}
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions
        try:
            response = await self.client.embeddings.create(model=self.model, input=texts, **kwargs)
        except Exception as e:
            error = classify_error(e)
            if error is e:
                raise
            raise error from e
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]


class EmbeddingGenerator:
    """Embeds texts, caching vectors by normalized text.

    The cache is shared by TM search and glossary recall, which may run
    concurrently, so every cache access holds ``_lock``.
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        backend: Optional[EmbeddingBackend] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the generator.

        Args:
            config: Embedding configuration, uses global config if None
            backend: Vector source; defaults to OpenAI when an API key is set
            retry_policy: Policy wrapping backend calls
        """
        self.config = config or get_config().embedding

        if backend is None:
            api_key, base_url = get_effective_embedding_credentials(get_config())
            api_key = self.config.api_key or api_key
            if api_key:
                backend = OpenAIEmbeddingBackend(
                    api_key=api_key,
                    base_url=self.config.base_url or base_url,
                    model=self.config.model,
                    dimensions=self.config.dimensions,
                )
        self.backend = backend
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3, timeout_seconds=30.0, backoff=exponential_backoff(1.0)
        )

        self._cache: TTLCache = TTLCache(
            maxsize=self.config.cache_max_size, ttl=self.config.cache_ttl_seconds
        )
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def is_available(self) -> bool:
        return self.backend is not None

    def _check(self, vector: list[float]) -> list[float]:
        if len(vector) != self.config.dimensions:
            raise EmbeddingDimensionError(self.config.dimensions, len(vector))
        return vector

    def _cached(self, key: str) -> Optional[list[float]]:
        with self._lock:
            vector = self._cache.get(key)
            if vector is None:
                self._misses += 1
            else:
                self._hits += 1
            return vector

    def _store(self, key: str, vector: list[float]) -> None:
        with self._lock:
            self._cache[key] = vector

    async def _call_backend(self, texts: list[str]) -> list[list[float]]:
        if self.backend is None:
            raise RetrievalDegradation("Embedding generator not configured (no API key)")
        try:
            vectors = await self.retry_policy.run(lambda: self.backend.embed(texts), "embed")
        except ProviderError as e:
            logger.warning("embedding_failed", count=len(texts), error=str(e))
            raise
        if len(vectors) != len(texts):
            raise ProviderError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return [self._check(list(v)) for v in vectors]

    async def embed(self, text: str, use_cache: bool = True) -> list[float]:
        """Embed one text.

        Raises:
            ValidationError: If the text is empty
            RetrievalDegradation: If no backend is configured
            ProviderError: If the backend call fails
            EmbeddingDimensionError: If the backend returns a wrong-sized vector
        """
        key = normalize_text(text)
        if not key:
            raise ValidationError("Cannot embed empty text")

        if use_cache:
            cached = self._cached(key)
            if cached is not None:
                return cached

        vector = (await self._call_backend([key]))[0]
        if use_cache:
            self._store(key, vector)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts; duplicates and cached texts are not re-sent.

        Returns vectors in input order.
        """
        keys = [normalize_text(t) for t in texts]
        if any(not k for k in keys):
            raise ValidationError("Cannot embed empty text")

        resolved: dict[str, list[float]] = {}
        missing: list[str] = []
        for key in dict.fromkeys(keys):
            cached = self._cached(key)
            if cached is None:
                missing.append(key)
            else:
                resolved[key] = cached

        size = max(1, self.config.batch_size)
        for start in range(0, len(missing), size):
            chunk = missing[start : start + size]
            for key, vector in zip(chunk, await self._call_backend(chunk)):
                self._store(key, vector)
                resolved[key] = vector

        logger.debug("embed_batch", requested=len(texts), generated=len(missing))
        return [resolved[k] for k in keys]

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def cache_stats(self) -> dict:
        """Cache size, bounds and hit counters."""
        with self._lock:
            return {
                "size": len(self._cache),
                "max_size": self._cache.maxsize,
                "ttl_seconds": self._cache.ttl,
                "hits": self._hits,
                "misses": self._misses,
            }

    def model_info(self) -> dict:
        return {
            "model": self.config.model,
            "dimensions": self.config.dimensions,
            "available": self.is_available(),
        }
