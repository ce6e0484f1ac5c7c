"""Segment confirmation: a human-approved translation feeds the TM."""

from typing import Optional

import structlog

from tm_pretranslator.exceptions import PretranslatorError, ValidationError
from tm_pretranslator.models import Segment, SegmentStatus
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.retrieval.hybrid import HybridRanker
from tm_pretranslator.storage.memory import InMemoryStore

logger = structlog.get_logger()


class SegmentService:
    """Confirms segments and keeps the translation memory in sync."""

    def __init__(
        self,
        store: InMemoryStore,
        ranker: Optional[HybridRanker] = None,
        embedder: Optional[EmbeddingGenerator] = None,
    ) -> None:
        self.store = store
        self.ranker = ranker
        self.embedder = embedder

    async def confirm(self, segment_id: str, target_text: str) -> Segment:
        """Mark a segment confirmed and store its translation in the TM.

        The TM entry gets an embedding when a generator is available;
        embedding failures are logged and never fail the confirmation.

        Raises:
            ValidationError: Unknown segment or document, or empty target
        """
        segment = self.store.get_segment(segment_id)
        if segment is None:
            raise ValidationError(f"Segment not found: {segment_id}")
        if not target_text or not target_text.strip():
            raise ValidationError("Confirmed translation must not be empty")
        document = self.store.get_document(segment.document_id)
        if document is None:
            raise ValidationError(f"Document not found: {segment.document_id}")

        confirmed = segment.model_copy(
            update={"target_final": target_text, "status": SegmentStatus.CONFIRMED}
        )
        self.store.save_segments([confirmed])

        unit = self.store.upsert_unit(
            source_text=segment.source_text,
            target_text=target_text,
            source_locale=document.source_locale,
            target_locale=document.target_locale,
            project_id=document.project_id,
            match_rate=1.0,
        )

        if self.embedder is not None and self.embedder.is_available():
            try:
                embedding = await self.embedder.embed(segment.source_text)
                self.store.set_embedding(unit.id, embedding)
            except PretranslatorError as e:
                logger.warning("confirm_embedding_failed", unit_id=unit.id, error=str(e))

        if self.ranker is not None:
            self.ranker.clear_cache()

        logger.info("segment_confirmed", segment_id=segment_id, unit_id=unit.id)
        return confirmed
