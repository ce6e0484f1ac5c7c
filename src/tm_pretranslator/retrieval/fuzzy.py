"""Edit-distance similarity over translation memory source texts."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog
from rapidfuzz.distance import Levenshtein

from tm_pretranslator.models import MatchCandidate, MatchMethod, MatchScope, TranslationUnit

logger = structlog.get_logger()

_NON_WORD = re.compile(r"[^\w]+", re.UNICODE)


def fuzzy_score(query: str, candidate: str) -> int:
    """Similarity of two strings on a 0-100 scale.

    ``round(100 * (1 - distance / max(len(query), len(candidate))))`` with
    character-level Levenshtein distance. Two empty strings score 100 and
    only identical strings do.

    Example:
        fuzzy_score("Hello world", "Hello world!")  # -> 92
    """
    longest = max(len(query), len(candidate))
    if longest == 0:
        return 100
    distance = Levenshtein.distance(query, candidate)
    score = round(100 * (1 - distance / longest))
    if score == 100 and distance > 0:
        # Very long strings can round up; 100 is reserved for equality.
        return 99
    return score


def _words(text: str) -> list[str]:
    words = (_NON_WORD.sub("", w).lower() for w in text.split())
    return [w for w in words if w]


@dataclass(frozen=True)
class Prefilter:
    """Cheap checks that skip hopeless candidates before edit distance.

    Attributes:
        length_threshold: Max relative length difference
            ``abs(len(a) - len(b)) / max(len(a), len(b))``.
        word_overlap: Min share of words the two texts have in common.
    """

    length_threshold: float
    word_overlap: float

    def passes(self, query: str, candidate: str) -> bool:
        if query == candidate:
            return True
        longest = max(len(query), len(candidate))
        if longest and abs(len(query) - len(candidate)) / longest > self.length_threshold:
            return False
        query_words = _words(query)
        candidate_words = set(_words(candidate))
        common = sum(1 for w in query_words if w in candidate_words)
        ratio = common / max(len(query_words), len(candidate_words), 1)
        return ratio >= self.word_overlap


def rank_key(candidate: MatchCandidate) -> tuple:
    """Sort key: score desc, newest first, project scope before global."""
    return (
        -candidate.score,
        -candidate.created_at.timestamp(),
        0 if candidate.scope == MatchScope.PROJECT else 1,
    )


class FuzzyMatcher:
    """Scores TM entries against a query with normalized edit distance."""

    def search(
        self,
        query: str,
        units: Iterable[TranslationUnit],
        min_score: int = 0,
        limit: Optional[int] = None,
        prefilter: Optional[Prefilter] = None,
    ) -> list[MatchCandidate]:
        """Return candidates scoring at least ``min_score``, best first.

        Args:
            query: Source text to match
            units: Scoped TM entries to score
            min_score: Score floor (0-100); 100 means exact matches only
            limit: Max candidates to return (None = all)
            prefilter: Optional cheap pre-filter applied before scoring

        Returns:
            Candidates tagged ``fuzzy``, sorted by score then recency
        """
        matches: list[MatchCandidate] = []
        skipped = 0
        for unit in units:
            if min_score >= 100 and unit.source_text != query:
                continue
            if prefilter is not None and not prefilter.passes(query, unit.source_text):
                skipped += 1
                continue
            score = fuzzy_score(query, unit.source_text)
            if score >= min_score:
                matches.append(MatchCandidate.from_unit(unit, score, MatchMethod.FUZZY))

        matches.sort(key=rank_key)
        if skipped:
            logger.debug("fuzzy_prefiltered", skipped=skipped, kept=len(matches))
        return matches[:limit] if limit is not None else matches
