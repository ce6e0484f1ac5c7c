"""Glossary term selection for generation context."""

from tm_pretranslator.glossary.rag_filter import GlossaryRagFilter, matches_context, orient_term
from tm_pretranslator.glossary.stemming import matches_with_variations, simple_stem

__all__ = [
    "GlossaryRagFilter",
    "matches_context",
    "matches_with_variations",
    "orient_term",
    "simple_stem",
]
