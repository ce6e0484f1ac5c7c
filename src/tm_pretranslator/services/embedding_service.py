"""Embedding backfill for translation memory entries and glossary terms.

Entries imported in bulk, or added while no embedding backend was
configured, carry no vector and are invisible to vector search and
glossary recall until backfilled.
"""

from typing import Callable, Optional, Sequence

import structlog
from pydantic import BaseModel

from tm_pretranslator.config import get_config
from tm_pretranslator.exceptions import PretranslatorError, RetrievalDegradation
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.storage.memory import InMemoryStore

logger = structlog.get_logger()


class BackfillReport(BaseModel):
    """Outcome of one backfill run."""

    units_embedded: int = 0
    units_failed: int = 0
    units_skipped: int = 0
    terms_embedded: int = 0
    terms_failed: int = 0
    terms_skipped: int = 0

    @property
    def failed(self) -> int:
        return self.units_failed + self.terms_failed


def needs_embedding(embedding: Optional[list[float]], dimensions: int) -> bool:
    """Missing vectors and vectors of another model's size are (re)generated."""
    return not embedding or len(embedding) != dimensions


async def _embed_records(
    kind: str,
    records: Sequence,
    text_of: Callable,
    save: Callable[[str, list[float]], None],
    embedder: EmbeddingGenerator,
    batch_size: int,
) -> tuple[int, int, int]:
    """Embed ``records`` batch by batch. Returns (embedded, failed, skipped)."""
    embedded = failed = 0
    pending = [r for r in records if text_of(r).strip()]
    skipped = len(records) - len(pending)

    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        try:
            vectors = await embedder.embed_batch([text_of(r) for r in batch])
        except PretranslatorError as e:
            # One bad batch must not stop the run
            failed += len(batch)
            logger.warning("backfill_batch_failed", kind=kind, start=start, size=len(batch), error=str(e))
            continue
        for record, vector in zip(batch, vectors):
            save(record.id, vector)
        embedded += len(batch)
        logger.info("backfill_progress", kind=kind, done=start + len(batch), total=len(pending))

    return embedded, failed, skipped


async def backfill_embeddings(
    store: InMemoryStore,
    embedder: EmbeddingGenerator,
    batch_size: Optional[int] = None,
    force: bool = False,
) -> BackfillReport:
    """Generate embeddings for TM entries and glossary terms that lack one.

    Args:
        store: Record store holding both corpora
        embedder: Embedding generator; must have a backend
        batch_size: Records per embedding step (default: EMBEDDING_BACKFILL_BATCH_SIZE)
        force: Re-embed records that already have a vector

    Returns:
        Counts of embedded, failed and skipped records per corpus

    Raises:
        RetrievalDegradation: No embedding backend is configured
    """
    if not embedder.is_available():
        raise RetrievalDegradation("Embedding generator not configured (no API key)")

    size = max(1, batch_size or get_config().embedding.backfill_batch_size)
    dimensions = embedder.config.dimensions

    units = [
        u for u in store.list_all_units() if force or needs_embedding(u.embedding, dimensions)
    ]
    terms = [
        t for t in store.list_all_terms() if force or needs_embedding(t.embedding, dimensions)
    ]
    logger.info("backfill_started", units=len(units), terms=len(terms), force=force)

    report = BackfillReport()
    report.units_embedded, report.units_failed, report.units_skipped = await _embed_records(
        "unit", units, lambda u: u.source_text, store.set_embedding, embedder, size
    )
    report.terms_embedded, report.terms_failed, report.terms_skipped = await _embed_records(
        "term", terms, lambda t: t.source_term, store.set_term_embedding, embedder, size
    )

    logger.info("backfill_finished", **report.model_dump())
    return report
