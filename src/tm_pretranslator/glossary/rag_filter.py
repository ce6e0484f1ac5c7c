"""Glossary retrieval for generation context.

Two stages keep the prompt small and relevant:

1. Recall: the terms most similar to the text by embedding (top 50 at
   cosine >= 0.6), or the newest 200 terms when embeddings are unavailable.
2. Confirmation: locale direction, context rules and a literal or
   morphological occurrence of the term in the text.
"""

from typing import Optional

import structlog

from tm_pretranslator.config import GlossaryConfig, get_config
from tm_pretranslator.exceptions import ProviderError, RetrievalDegradation
from tm_pretranslator.glossary.stemming import matches_with_variations
from tm_pretranslator.models import ContextRules, DocumentContext, GlossaryHit, GlossaryTerm
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.retrieval.vector import VectorSearcher
from tm_pretranslator.storage.base import GlossaryStore
from tm_pretranslator.utils.locale import locales_match

logger = structlog.get_logger()


def _contains_either(current: list[str], wanted: str) -> bool:
    wanted = wanted.strip().lower()
    if not wanted:
        return False
    return any(ctx in wanted or wanted in ctx for ctx in current)


def matches_context(rules: Optional[ContextRules], context: DocumentContext) -> bool:
    """Check a term's context rules against the current document.

    Values are compared as lowercase substrings in either direction, so
    "energy" matches a "Power & Energy" domain.
    """
    if rules is None or rules.is_empty():
        return True

    domain_client = [
        v.lower() for v in (context.project_domain, context.project_client) if v
    ]
    current = domain_client + ([context.document_type.lower()] if context.document_type else [])

    if any(_contains_either(current, value) for value in rules.exclude_from):
        return False
    if rules.use_only_in and not any(_contains_either(current, v) for v in rules.use_only_in):
        return False
    if rules.document_types:
        if not context.document_type:
            return False
        doc_type = [context.document_type.lower()]
        if not any(_contains_either(doc_type, t) for t in rules.document_types):
            return False
    if rules.requires and not all(_contains_either(domain_client, r) for r in rules.requires):
        return False
    return True


def orient_term(term: GlossaryTerm, source_locale: str, target_locale: str) -> Optional[GlossaryHit]:
    """Express a term in the document's direction.

    Returns the term as-is for a matching locale pair, with term and
    translation swapped for the reversed pair, and None otherwise.
    """
    if locales_match(source_locale, term.source_locale) and locales_match(
        target_locale, term.target_locale
    ):
        return GlossaryHit(
            term=term.source_term,
            translation=term.target_term,
            forbidden=term.forbidden,
            notes=term.notes,
        )
    if locales_match(source_locale, term.target_locale) and locales_match(
        target_locale, term.source_locale
    ):
        return GlossaryHit(
            term=term.target_term,
            translation=term.source_term,
            forbidden=term.forbidden,
            notes=term.notes,
        )
    return None


class GlossaryRagFilter:
    """Selects the glossary terms that actually occur in a source text."""

    def __init__(
        self,
        store: GlossaryStore,
        embedder: Optional[EmbeddingGenerator] = None,
        config: Optional[GlossaryConfig] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or get_config().glossary
        self.vector = VectorSearcher()

    async def recall(
        self,
        source_text: str,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
    ) -> list[GlossaryTerm]:
        """Candidate terms, most relevant first."""
        terms = self.store.list_terms(project_id)
        if not terms:
            return []

        candidates: list[GlossaryTerm] = []
        try:
            if self.embedder is None or not self.embedder.is_available():
                raise RetrievalDegradation("No embedding generator configured")
            embedding = await self.embedder.embed(source_text)
            in_direction = [
                t for t in terms if orient_term(t, source_locale, target_locale) is not None
            ]
            hits = self.vector.search(
                embedding,
                in_direction,
                self.config.recall_min_similarity,
                self.config.recall_limit,
            )
            candidates = [term for term, _ in hits]
        except (RetrievalDegradation, ProviderError) as e:
            logger.warning("glossary_recall_degraded", error=str(e))

        if not candidates:
            candidates = terms[: self.config.fallback_limit]
            logger.debug("glossary_recall_fallback", candidates=len(candidates))
        return candidates

    async def find_relevant_terms(
        self,
        source_text: str,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
        context: Optional[DocumentContext] = None,
    ) -> list[GlossaryHit]:
        """Glossary hits for ``source_text``, in recall order.

        Args:
            source_text: Segment text, or the concatenated text of a batch
            source_locale: Document source locale
            target_locale: Document target locale
            project_id: Project scope (global terms are always included)
            context: Domain/client/document type for context rules

        Returns:
            Terms oriented to the document direction that occur in the text
        """
        if not source_text or not source_text.strip():
            return []
        context = context or DocumentContext()

        candidates = await self.recall(source_text, source_locale, target_locale, project_id)

        oriented: list[tuple[GlossaryHit, ContextRules]] = []
        for term in candidates:
            hit = orient_term(term, source_locale, target_locale)
            if hit is not None:
                oriented.append((hit, term.context_rules))

        in_context = [hit for hit, rules in oriented if matches_context(rules, context)]

        seen: set[tuple[str, str]] = set()
        results: list[GlossaryHit] = []
        for hit in in_context:
            key = (hit.term.lower(), hit.translation.lower())
            if key in seen:
                continue
            if matches_with_variations(hit.term, source_text, source_locale):
                seen.add(key)
                results.append(hit)

        logger.debug(
            "glossary_filtered",
            recalled=len(candidates),
            oriented=len(oriented),
            in_context=len(in_context),
            matched=len(results),
        )
        return results
