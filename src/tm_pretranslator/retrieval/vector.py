"""Cosine-similarity ranking over stored embeddings."""

from typing import Optional, Protocol, Sequence, TypeVar

import numpy as np
import structlog

from tm_pretranslator.exceptions import EmbeddingDimensionError

logger = structlog.get_logger()


class Embedded(Protocol):
    """Anything carrying an optional embedding (TM entries, glossary terms)."""

    embedding: Optional[list[float]]


T = TypeVar("T", bound=Embedded)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity ``1 - cosine_distance`` of two vectors.

    Raises:
        EmbeddingDimensionError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise EmbeddingDimensionError(len(a), len(b))
    vec1 = np.asarray(a, dtype=np.float64)
    vec2 = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(vec1) * np.linalg.norm(vec2))
    if norm == 0.0:
        return 0.0
    return float(np.dot(vec1, vec2) / norm)


class VectorSearcher:
    """Ranks embedded records by cosine similarity to a query vector."""

    def search(
        self,
        query_embedding: Optional[Sequence[float]],
        items: Sequence[T],
        min_similarity: float,
        limit: int,
    ) -> list[tuple[T, float]]:
        """Return ``(item, similarity)`` pairs, most similar first.

        Records without an embedding are skipped. A missing query vector
        yields an empty list so callers can fall back to fuzzy search.

        Raises:
            EmbeddingDimensionError: If a stored vector has another dimension
        """
        if query_embedding is None or limit <= 0:
            return []

        embedded = [item for item in items if item.embedding]
        if not embedded:
            return []

        dim = len(query_embedding)
        for item in embedded:
            if len(item.embedding) != dim:
                raise EmbeddingDimensionError(dim, len(item.embedding))

        query = np.asarray(query_embedding, dtype=np.float64)
        matrix = np.asarray([item.embedding for item in embedded], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        # Stable sort keeps store order (newest first) among equal scores
        order = np.argsort(-scores, kind="stable")
        results: list[tuple[T, float]] = []
        for idx in order:
            similarity = float(scores[idx])
            if similarity < min_similarity:
                break
            results.append((embedded[idx], similarity))
            if len(results) >= limit:
                break
        return results
