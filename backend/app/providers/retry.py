"""Retry strategy for email delivery.

Exponential backoff with jitter for transient provider failures.

WHY JITTER:
- Many users requesting codes right after an outage should not retry
  in lockstep
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from app.providers.errors import RateLimitError, TransientError

__all__ = ["with_retries"]

if TYPE_CHECKING:
    from app.providers.config import ProviderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_JITTER_FRACTION = 0.1


def _backoff_seconds(attempt: int, config: "ProviderConfig") -> float:
    """Delay before retry number ``attempt + 1``, capped at the max delay."""
    base_delay = config.retry_base_delay_ms * (2**attempt)
    jitter = random.uniform(0, base_delay * _JITTER_FRACTION)  # nosec B311
    return min(base_delay + jitter, config.retry_max_delay_ms) / 1000


async def with_retries(
    func: Callable[[], Awaitable[T]],
    config: "ProviderConfig",
    retryable_errors: tuple[type[Exception], ...] = (TransientError, RateLimitError),
    *,
    operation: str = "send",
) -> T:
    """Execute an async call, retrying retryable errors with backoff.

    Args:
        func: Async function to execute (no arguments).
        config: Provider configuration with retry settings.
        retryable_errors: Error types that trigger a retry.
        operation: Name used in retry log lines.

    Returns:
        Result from the first successful call.

    Raises:
        TransientError: If all retries exhausted due to transient failures.
        RateLimitError: If all retries exhausted due to rate limiting.
        RuntimeError: If the retry loop exits without error or result.

    Note:
        A RateLimitError carrying retry_after_seconds is honoured (up to the
        configured max delay) instead of the exponential schedule.
    """
    last_error: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except retryable_errors as e:
            last_error = e

            if attempt == config.max_retries:
                break

            if isinstance(e, RateLimitError) and e.retry_after_seconds:
                delay = min(e.retry_after_seconds, config.retry_max_delay_ms / 1000)
            else:
                delay = _backoff_seconds(attempt, config)

            logger.warning(
                "Email %s failed (attempt %d/%d): %s. Retrying in %.2fs",
                operation,
                attempt + 1,
                config.max_retries + 1,
                e,
                delay,
            )

            await asyncio.sleep(delay)

    if last_error is not None:
        raise last_error
    raise RuntimeError("Retry loop exited without error or result")
