"""Retry policy and error classification for provider calls."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from tm_pretranslator.exceptions import (
    InvalidCredentialsError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    TransientProviderError,
)

logger = structlog.get_logger()

T = TypeVar("T")


def linear_backoff(base_seconds: float = 0.3) -> Callable[[int], float]:
    """Delay of ``base * attempt`` seconds after the given failed attempt."""
    return lambda attempt: base_seconds * attempt


def exponential_backoff(base_seconds: float = 1.0) -> Callable[[int], float]:
    """Delay of ``base * 2**(attempt - 1)`` seconds: 1, 2, 4..."""
    return lambda attempt: base_seconds * (2 ** (attempt - 1))


def is_retryable(error: BaseException) -> bool:
    """Only transient provider failures (timeouts, 5xx, network) are retried."""
    return isinstance(error, ProviderError) and error.retryable


def classify_error(error: BaseException) -> BaseException:
    """Map an openai/httpx exception onto the provider error taxonomy.

    Errors that do not come from the provider (bugs, bad arguments) are
    returned unchanged so they propagate instead of becoming fallbacks.
    """
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return ProviderTimeoutError("Provider call timed out")

    import openai

    message = str(error)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return InvalidCredentialsError(
            "Invalid API key or insufficient permissions. Check OPENAI_API_KEY.",
            status_code=getattr(error, "status_code", None),
        )
    if isinstance(error, openai.RateLimitError):
        return RateLimitedError(
            f"Rate limit or quota exceeded, retry later: {message}", status_code=429
        )
    if isinstance(error, openai.APITimeoutError):
        return ProviderTimeoutError(f"Provider request timed out: {message}")
    if isinstance(error, openai.APIConnectionError):
        return TransientProviderError(f"Provider connection failed: {message}")
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if status in (401, 403):
            return InvalidCredentialsError(message, status_code=status)
        if status == 429:
            return RateLimitedError(message, status_code=status)
        if status >= 500:
            return TransientProviderError(f"Provider server error: {message}", status_code=status)
        return ProviderError(message, status_code=status)
    if isinstance(error, openai.OpenAIError):
        return ProviderError(message)
    return error


@dataclass(frozen=True)
class RetryPolicy:
    """How a provider call is bounded and retried.

    Attributes:
        max_attempts: Total attempts including the first one
        timeout_seconds: Upper bound for a single attempt (None = no bound)
        backoff: Seconds to wait after failed attempt N (1-based)
        retryable: Predicate deciding whether a classified error is retried
    """

    max_attempts: int = 2
    timeout_seconds: Optional[float] = 90.0
    backoff: Callable[[int], float] = field(default_factory=linear_backoff)
    retryable: Callable[[BaseException], bool] = is_retryable

    async def run(self, call: Callable[[], Awaitable[T]], operation: str = "provider_call") -> T:
        """Await ``call()`` under this policy.

        Raises:
            ProviderError: The classified error of the last attempt, or the
                first non-retryable one
            Exception: Errors unrelated to the provider, unchanged and not retried
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if self.timeout_seconds:
                    return await asyncio.wait_for(call(), timeout=self.timeout_seconds)
                return await call()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = classify_error(e)
                if attempt >= self.max_attempts or not self.retryable(error):
                    if error is e:
                        raise
                    raise error from e
                delay = self.backoff(attempt)
                logger.warning(
                    "provider_retry",
                    operation=operation,
                    attempt=attempt,
                    delay=delay,
                    error=str(error),
                )
                await asyncio.sleep(delay)
