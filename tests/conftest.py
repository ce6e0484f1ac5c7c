"""Pytest configuration and fixtures."""

import hashlib
import os
from typing import Optional

import pytest
from dotenv import load_dotenv

from tm_pretranslator.config import (
    AppConfig,
    CriticLLMConfig,
    EmbeddingConfig,
    LLMConfig,
    TranslatorLLMConfig,
    set_config,
)
from tm_pretranslator.models import Document, Segment, SegmentStatus, TranslationUnit
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.storage.memory import InMemoryStore
from tm_pretranslator.translator.prompts import BatchContext, BatchItem
from tm_pretranslator.translator.provider import BatchResult, CriticResult, ProviderResponse
from tm_pretranslator.translator.retry import RetryPolicy

# Load .env at import time for pytest
load_dotenv()

DIMENSIONS = 16


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")


@pytest.fixture(scope="session")
def openai_api_available():
    """Check if OpenAI API is available for testing."""
    api_key = os.getenv("OPENAI_API_KEY", "")
    return bool(api_key) and not api_key.startswith("sk-your")


@pytest.fixture(autouse=True)
def app_config():
    """Offline configuration: no API keys, small embeddings."""
    config = AppConfig(
        llm=LLMConfig(api_key=""),
        embedding=EmbeddingConfig(api_key="", dimensions=DIMENSIONS),
        translator_llm=TranslatorLLMConfig(api_key=""),
        critic_llm=CriticLLMConfig(api_key=""),
    )
    set_config(config)
    return config


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def word_vector(text: str, dimensions: int = DIMENSIONS) -> list[float]:
    """Deterministic bag-of-words vector: texts sharing words point the same way."""
    vector = [0.0] * dimensions
    for word in text.lower().split():
        digest = hashlib.md5(word.strip(".,!?").encode("utf-8")).hexdigest()
        vector[int(digest, 16) % dimensions] += 1.0
    return vector


class FakeEmbeddingBackend:
    """Embedding backend that counts calls and can be told to fail."""

    def __init__(self, dimensions: int = DIMENSIONS, error: Optional[Exception] = None):
        self.dimensions = dimensions
        self.error = error
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [word_vector(t, self.dimensions) for t in texts]


class FakeProvider:
    """Translation provider that prefixes the source text.

    ``fail_batches`` lists the 1-based batch numbers that raise ``error``.
    """

    def __init__(
        self,
        prefix: str = "AI:",
        error: Optional[Exception] = None,
        fail_batches: Optional[set[int]] = None,
    ):
        self.prefix = prefix
        self.error = error
        self.fail_batches = fail_batches
        self.batches: list[list[BatchItem]] = []
        self.contexts: list[BatchContext] = []

    def _maybe_fail(self) -> None:
        if self.error is None:
            return
        if self.fail_batches is None or len(self.batches) in self.fail_batches:
            raise self.error

    async def complete(self, system_prompt, user_prompt, temperature=None, max_tokens=None, model=None):
        return ProviderResponse(text="ok")

    async def translate_batch(self, items: list[BatchItem], context: BatchContext) -> BatchResult:
        self.batches.append(list(items))
        self.contexts.append(context)
        self._maybe_fail()
        return BatchResult(
            translations={item.segment_id: f"{self.prefix} {item.source_text}" for item in items}
        )

    async def translate_with_critic(self, item: BatchItem, context: BatchContext) -> CriticResult:
        self.batches.append([item])
        self.contexts.append(context)
        self._maybe_fail()
        text = f"{self.prefix} {item.source_text}"
        return CriticResult(target_text=text, confidence=0.95, draft=text, fixed=True)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embedding_backend():
    return FakeEmbeddingBackend()


@pytest.fixture
def embedder(app_config, embedding_backend):
    return EmbeddingGenerator(
        app_config.embedding,
        backend=embedding_backend,
        retry_policy=RetryPolicy(max_attempts=2, timeout_seconds=None, backoff=lambda attempt: 0),
    )


def add_document(
    store: InMemoryStore,
    texts: list[str],
    source_locale: str = "en-US",
    target_locale: str = "ru-RU",
    project_id: Optional[str] = "p1",
    **document_fields,
) -> tuple[Document, list[Segment]]:
    """Create a document with one NEW segment per text."""
    document = Document(
        name="manual.docx",
        project_id=project_id,
        source_locale=source_locale,
        target_locale=target_locale,
        **document_fields,
    )
    segments = [
        Segment(document_id=document.id, index=i, source_text=text, status=SegmentStatus.NEW)
        for i, text in enumerate(texts)
    ]
    store.add_document(document, segments)
    return document, segments


def add_unit(
    store: InMemoryStore,
    source: str,
    target: str,
    source_locale: str = "en-US",
    target_locale: str = "ru-RU",
    project_id: Optional[str] = None,
    **fields,
) -> TranslationUnit:
    unit = TranslationUnit(
        source_text=source,
        target_text=target,
        source_locale=source_locale,
        target_locale=target_locale,
        project_id=project_id,
        **fields,
    )
    store.add_units([unit])
    return unit
