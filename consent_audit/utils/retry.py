"""
Retry utility with exponential backoff for handling transient failures.
Used for whole-session retries when the browser dies mid-experiment
and for the single navigation retry of the quick scan path.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from consent_audit.utils import errors, logger

log = logger.create_logger("Retry")

T = TypeVar("T")


def is_retryable_session_error(error: BaseException) -> bool:
    """Retry only when the browser session itself was destroyed."""
    return errors.is_session_destroyed(error)


def is_navigation_timeout(error: BaseException) -> bool:
    """Retry only when the page never settled."""
    return isinstance(error, errors.NavigationTimeout)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 1,
    initial_delay_ms: int = 1000,
    max_delay_ms: int = 10000,
    backoff_multiplier: float = 2.0,
    retry_if: Callable[[BaseException], bool] = is_retryable_session_error,
    context: str | None = None,
) -> T:
    """
    Execute an async function with automatic retry on transient failures.
    Uses exponential backoff with jitter; *retry_if* decides which
    errors are transient.
    """
    last_error: BaseException | None = None
    delay = initial_delay_ms

    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as error:
            last_error = error

            if not retry_if(error):
                raise

            if attempt >= max_retries:
                log.warn(
                    "All retry attempts exhausted",
                    {
                        "context": context,
                        "attempts": attempt + 1,
                        "error": str(error),
                    },
                )
                raise

            jitter = delay * 0.2 * (random.random() * 2 - 1)
            delay_with_jitter = min(round(delay + jitter), max_delay_ms)

            log.warn(
                "Retrying after transient error",
                {
                    "context": context,
                    "attempt": attempt + 1,
                    "maxRetries": max_retries,
                    "delayMs": delay_with_jitter,
                    "error": str(error)[:100],
                },
            )

            await asyncio.sleep(delay_with_jitter / 1000)
            delay = min(int(delay * backoff_multiplier), max_delay_ms)

    # Should never reach here, but satisfy type checker
    raise last_error  # type: ignore[misc]
