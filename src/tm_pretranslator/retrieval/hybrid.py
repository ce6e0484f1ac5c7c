"""Hybrid (fuzzy + vector) translation memory search."""

import threading
from typing import Optional

import structlog
from cachetools import TTLCache
from pydantic import BaseModel, Field

from tm_pretranslator.config import RetrievalConfig, get_config
from tm_pretranslator.exceptions import ProviderError, RetrievalDegradation
from tm_pretranslator.models import MatchCandidate, MatchMethod, SearchMode, TranslationUnit
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.retrieval.fuzzy import FuzzyMatcher, Prefilter, rank_key
from tm_pretranslator.retrieval.vector import VectorSearcher
from tm_pretranslator.storage.base import TranslationMemoryStore

logger = structlog.get_logger()


class SearchOptions(BaseModel):
    """Parameters of one TM search. Unset values come from RetrievalConfig."""

    source_locale: str
    target_locale: str
    project_id: Optional[str] = None
    limit: Optional[int] = None
    min_score: Optional[int] = Field(default=None, ge=0, le=100)
    vector_similarity: Optional[int] = Field(
        default=None, ge=0, le=100, description="Vector similarity floor on a 0-100 scale"
    )
    mode: SearchMode = SearchMode.BASIC
    use_vector_search: Optional[bool] = Field(
        default=None, description="None enables vectors in extended mode only"
    )


def merge_candidates(
    fuzzy: list[MatchCandidate],
    vector: list[MatchCandidate],
    limit: int,
) -> list[MatchCandidate]:
    """Merge fuzzy and vector results into one ranked, de-duplicated list.

    An id found by both searches is emitted once, tagged ``hybrid``, with
    the higher of the two scores.
    """
    merged: dict[str, MatchCandidate] = {c.id: c for c in vector}
    for candidate in fuzzy:
        existing = merged.get(candidate.id)
        if existing is None:
            merged[candidate.id] = candidate
            continue
        best = candidate if candidate.score >= existing.score else existing
        merged[candidate.id] = best.model_copy(update={"method": MatchMethod.HYBRID})
    return sorted(merged.values(), key=rank_key)[:limit]


class HybridRanker:
    """Searches the translation memory with edit distance and embeddings.

    ``basic`` mode returns directly applicable suggestions; ``extended``
    mode adds vector search with relaxed pre-filters and is meant for
    building generation context.
    """

    def __init__(
        self,
        store: TranslationMemoryStore,
        embedder: Optional[EmbeddingGenerator] = None,
        config: Optional[RetrievalConfig] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or get_config().retrieval
        self.fuzzy = FuzzyMatcher()
        self.vector = VectorSearcher()
        self._cache: TTLCache = TTLCache(
            maxsize=self.config.search_cache_size, ttl=self.config.search_cache_ttl_seconds
        )
        self._cache_lock = threading.Lock()

    def _prefilter(self, mode: SearchMode) -> Prefilter:
        if mode == SearchMode.EXTENDED:
            return Prefilter(self.config.extended_length_threshold, self.config.extended_word_overlap)
        return Prefilter(self.config.basic_length_threshold, self.config.basic_word_overlap)

    def _clamp_limit(self, limit: Optional[int]) -> int:
        value = self.config.default_limit if limit is None else limit
        return max(1, min(self.config.max_limit, value))

    @staticmethod
    def _cache_key(query: str, options: SearchOptions, limit: int, min_score: int, vector: bool) -> str:
        # Raw query text: scores are case and whitespace sensitive
        scope = options.project_id or "global"
        return (
            f"{scope}:{options.source_locale}:{options.target_locale}:{options.mode.value}:"
            f"{limit}:{min_score}:{options.vector_similarity}:{int(vector)}:{query}"
        )

    def clear_cache(self) -> None:
        """Drop cached results, e.g. after the corpus changed."""
        with self._cache_lock:
            self._cache.clear()

    async def search(self, query: str, options: SearchOptions) -> list[MatchCandidate]:
        """Find TM candidates for ``query``, best first.

        Args:
            query: Source text to look up
            options: Locale pair, scope, thresholds and mode

        Returns:
            At most ``limit`` candidates with unique ids
        """
        limit = self._clamp_limit(options.limit)
        min_score = (
            self.config.default_min_score if options.min_score is None else options.min_score
        )
        use_vector = (
            options.mode == SearchMode.EXTENDED
            if options.use_vector_search is None
            else options.use_vector_search
        )

        key = self._cache_key(query, options, limit, min_score, use_vector)
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return [c.model_copy() for c in cached]

        units = self.store.list_units(options.source_locale, options.target_locale, options.project_id)
        fuzzy_matches = self.fuzzy.search(
            query, units, min_score=min_score, prefilter=self._prefilter(options.mode)
        )

        vector_matches: list[MatchCandidate] = []
        if use_vector and units and query.strip():
            vector_matches = await self._vector_search(query, units, options, limit)

        results = merge_candidates(fuzzy_matches, vector_matches, limit)
        logger.debug(
            "tm_search",
            mode=options.mode.value,
            fuzzy=len(fuzzy_matches),
            vector=len(vector_matches),
            returned=len(results),
            top_score=results[0].score if results else None,
        )

        with self._cache_lock:
            self._cache[key] = results
        return [c.model_copy() for c in results]

    async def _vector_search(
        self,
        query: str,
        units: list[TranslationUnit],
        options: SearchOptions,
        limit: int,
    ) -> list[MatchCandidate]:
        similarity = (
            self.config.default_vector_similarity
            if options.vector_similarity is None
            else options.vector_similarity
        )
        try:
            if self.embedder is None or not self.embedder.is_available():
                raise RetrievalDegradation("No embedding generator configured")
            embedding = await self.embedder.embed(query)
        except (RetrievalDegradation, ProviderError) as e:
            logger.warning("vector_search_degraded", error=str(e))
            return []

        hits = self.vector.search(embedding, units, similarity / 100, limit * 2)
        return [
            MatchCandidate.from_unit(unit, max(0, min(100, round(sim * 100))), MatchMethod.VECTOR)
            for unit, sim in hits
        ]

    async def find_exact(
        self,
        query: str,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
    ) -> Optional[MatchCandidate]:
        """Return a 100% match for ``query``, if the corpus has one."""
        matches = await self.search(
            query,
            SearchOptions(
                source_locale=source_locale,
                target_locale=target_locale,
                project_id=project_id,
                limit=1,
                min_score=100,
                use_vector_search=False,
            ),
        )
        if matches and matches[0].score == 100:
            return matches[0]
        return None
