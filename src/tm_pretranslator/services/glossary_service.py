"""GlossaryService: glossary writes that keep term embeddings in sync."""

from collections import defaultdict
from typing import Optional

import structlog

from tm_pretranslator.config import get_config
from tm_pretranslator.exceptions import PretranslatorError, ProviderError
from tm_pretranslator.models import GlossaryTerm
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.storage.memory import InMemoryStore
from tm_pretranslator.translator.prompts import BatchContext, BatchItem
from tm_pretranslator.translator.provider import TranslationProvider

logger = structlog.get_logger()


def is_untranslated(term: GlossaryTerm) -> bool:
    """A blank target, or one that just repeats the source term."""
    target = term.target_term.strip()
    return not target or target.lower() == term.source_term.strip().lower()


class GlossaryService:
    """Add and repair glossary terms.

    New terms are embedded right away when a generator is available, so
    vector recall sees them without a backfill run. Embedding failures are
    logged and never fail the write.
    """

    def __init__(self, store: InMemoryStore, embedder: Optional[EmbeddingGenerator] = None) -> None:
        self.store = store
        self.embedder = embedder

    async def add_term(self, term: GlossaryTerm) -> GlossaryTerm:
        """Store a term and embed its source text."""
        added = self.store.add_term(term)
        if self.embedder is None or not self.embedder.is_available():
            return added

        try:
            embedding = await self.embedder.embed(added.source_term)
        except PretranslatorError as e:
            logger.warning("term_embedding_failed", term_id=added.id, error=str(e))
            return added
        self.store.set_term_embedding(added.id, embedding)
        return added.model_copy(update={"embedding": embedding})

    async def resolve_untranslated(
        self,
        provider: TranslationProvider,
        project_id: Optional[str] = None,
    ) -> list[GlossaryTerm]:
        """Ask the provider for terms whose target only repeats the source.

        Args:
            provider: Translation provider
            project_id: Limit to this project and global terms (None = all terms)

        Returns:
            The terms whose translation was updated
        """
        terms = self.store.list_terms(project_id) if project_id else self.store.list_all_terms()
        pending = [
            t
            for t in terms
            if is_untranslated(t) and t.source_locale.lower() != t.target_locale.lower()
        ]
        if not pending:
            return []

        by_pair: dict[tuple[str, str], list[GlossaryTerm]] = defaultdict(list)
        for term in pending:
            by_pair[(term.source_locale, term.target_locale)].append(term)

        size = max(1, get_config().pretranslate.ai_batch_size)
        updated: list[GlossaryTerm] = []
        for (source_locale, target_locale), group in by_pair.items():
            context = BatchContext(
                source_locale=source_locale,
                target_locale=target_locale,
                guidelines=["Each segment is a single terminology entry. Translate it as a term."],
            )
            for start in range(0, len(group), size):
                batch = group[start : start + size]
                items = [BatchItem(segment_id=t.id, source_text=t.source_term) for t in batch]
                try:
                    result = await provider.translate_batch(items, context)
                except (ProviderError, ValueError) as e:
                    logger.warning("term_translation_failed", terms=len(batch), error=str(e))
                    continue

                for term in batch:
                    translation = (result.translations.get(term.id) or "").strip()
                    candidate = term.model_copy(update={"target_term": translation})
                    if is_untranslated(candidate):
                        continue
                    saved = self.store.update_translation(term.id, translation)
                    if saved is not None:
                        updated.append(saved)

        logger.info("untranslated_terms_resolved", pending=len(pending), updated=len(updated))
        return updated
