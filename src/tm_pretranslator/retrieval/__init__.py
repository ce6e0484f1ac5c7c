"""Translation memory retrieval: fuzzy, vector and hybrid search."""

from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.retrieval.fuzzy import FuzzyMatcher, fuzzy_score
from tm_pretranslator.retrieval.hybrid import HybridRanker, SearchOptions
from tm_pretranslator.retrieval.vector import VectorSearcher, cosine_similarity

__all__ = [
    "EmbeddingGenerator",
    "FuzzyMatcher",
    "HybridRanker",
    "SearchOptions",
    "VectorSearcher",
    "cosine_similarity",
    "fuzzy_score",
]
