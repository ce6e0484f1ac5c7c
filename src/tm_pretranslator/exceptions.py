"""Error taxonomy for retrieval, generation and pretranslation jobs.

Callers can catch ``PretranslatorError`` to handle every expected failure,
or a specific subclass to react to one condition (for example backing off
on ``RateLimitedError``).
"""

from typing import Optional


class PretranslatorError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(PretranslatorError, ValueError):
    """Unknown document or segment, or an invalid argument.

    Raised before any job is created.
    """


class JobNotFoundError(ValidationError):
    """No pretranslation job is registered for the document."""


class RetrievalDegradation(PretranslatorError):
    """Embedding generator or vector search is unavailable.

    Never fatal: the ranker falls back to fuzzy-only search and the
    glossary filter to unfiltered recall.
    """


class EmbeddingDimensionError(PretranslatorError, ValueError):
    """Two vectors of different dimensions were compared."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")


class ProviderError(PretranslatorError):
    """A translation or embedding provider call failed."""

    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidCredentialsError(ProviderError):
    """API key missing, invalid or not authorized. Not retried."""


class RateLimitedError(ProviderError):
    """Rate limit or quota exceeded. Not retried; back off and try later."""


class TransientProviderError(ProviderError):
    """Network failure, timeout or server error. Retried within the policy budget."""

    retryable = True


class ProviderTimeoutError(TransientProviderError):
    """The call did not finish within the configured timeout."""


class CancellationSignal(PretranslatorError):
    """Raised at a checkpoint after the job was cancelled.

    Unwinds scanning/processing so that buffered writes get flushed and
    the job resolves as cancelled with partial results.
    """


class PersistenceError(PretranslatorError):
    """Writing to the durable store failed."""
