"""Bounded retry with backoff for indexer steps."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryCancelled(Exception):
    """The stop signal was raised while waiting to retry."""


@dataclass
class RetryPolicy:
    """Exponential backoff policy.

    ``max_attempts = None`` retries until the operation succeeds or the
    stop signal is raised.
    """

    max_attempts: int | None = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


def always_retry(error: Exception) -> bool:
    return True


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
    is_retryable: Callable[[Exception], bool] = always_retry,
    stop_event: asyncio.Event | None = None,
    on_failure: Callable[[Exception, int], None] | None = None,
) -> T:
    """Run an operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory
        policy: Retry policy
        description: Operation label for logs
        is_retryable: Classifies errors; non-retryable errors propagate at once
        stop_event: Aborts waiting between attempts when set
        on_failure: Called with each failure and its attempt number

    Returns:
        Result of the first successful attempt

    Raises:
        RetryCancelled: If ``stop_event`` is set while waiting
        Exception: The last error once attempts are exhausted
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if on_failure:
                on_failure(e, attempt)

            if not is_retryable(e):
                raise
            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise

            delay = policy.delay(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}), retrying in {delay:.1f}s: {e}"
            )

        if stop_event is None:
            await asyncio.sleep(delay)
        elif await wait_for_stop(stop_event, delay):
            raise RetryCancelled(f"{description} cancelled by stop signal")


async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """Sleep up to ``timeout`` seconds.

    Returns:
        True if the stop signal was raised during the wait
    """
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return stop_event.is_set()
