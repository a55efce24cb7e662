"""Retry utilities for handling transient API failures.

Provides a decorator for retrying async operations with capped exponential
backoff. Only failures classified as transient are retried: rate limits,
server errors, and a fixed set of network errors. Client errors fail fast so
that a bad request is reported once instead of three times.

Key Exports:
    async_retry: Decorator for adding retry logic to async functions.
    is_retryable: Default classification used by async_retry.

Example:
    >>> from asana_sync.utils.retry import async_retry
    >>>
    >>> @async_retry(max_attempts=3)
    ... async def update_task(gid: str, data: dict) -> dict:
    ...     return await client.put(f"/tasks/{gid}", json={"data": data})

Backoff Formula:
    delay = min(initial_delay * backoff_factor ** (attempt - 1), max_delay)
    With the defaults: 1s, 2s (the third attempt is the last one).
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from asana_sync.exceptions import ExternalServiceError

log = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3
INITIAL_DELAY = 1.0
BACKOFF_FACTOR = 2.0
MAX_DELAY = 10.0


def is_retryable(error: BaseException) -> bool:
    """Classify an exception as transient or permanent.

    Args:
        error: The exception raised by the wrapped operation

    Returns:
        True for ExternalServiceError instances that report a 429, a 5xx, or
        a retryable network error code. Unknown errors are not retried.
    """
    if isinstance(error, ExternalServiceError):
        return error.is_retryable
    return False


def async_retry(
    max_attempts: int = MAX_ATTEMPTS,
    initial_delay: float = INITIAL_DELAY,
    backoff_factor: float = BACKOFF_FACTOR,
    max_delay: float = MAX_DELAY,
    retry_if: Callable[[BaseException], bool] = is_retryable,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with capped exponential backoff.

    Args:
        max_attempts: Maximum number of attempts before giving up.
        initial_delay: Delay in seconds before the second attempt.
        backoff_factor: Multiplier applied to the delay after every attempt.
        max_delay: Upper bound for a single delay.
        retry_if: Predicate deciding whether an exception is worth retrying.
            Exceptions it rejects propagate immediately.

    Returns:
        A decorator function that wraps async functions with retry logic.

    Raises:
        The last caught exception once attempts are exhausted, or the first
        exception rejected by ``retry_if``.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not retry_if(e):
                        log.debug(
                            "retry_skipped_non_retryable",
                            function=func.__name__,
                            error=str(e),
                        )
                        raise

                    if attempt == max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    delay = min(initial_delay * backoff_factor ** (attempt - 1), max_delay)
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator
