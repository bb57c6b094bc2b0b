"""
Retry policies.

Two independent policies live here:

- ``with_retry``: short in-call retry for transport hiccups.
- ``queue_backoff``: the delay before a failed upload queue entry is due again.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` until it succeeds.

    The operation runs at most ``max_attempts + 1`` times. Between attempts
    ``base_delay * 2**attempt`` seconds pass. Exceptions outside ``retry_on``
    propagate at once; after the last attempt the last error is re-raised.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Number of retries after the first attempt
        base_delay: Delay before the first retry, in seconds
        retry_on: Exception types worth retrying
        sleep: Awaitable sleep (injectable for tests)
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(f"Attempt {attempt + 1} failed ({e}); retrying in {delay:.1f}s")
            await sleep(delay)
            attempt += 1


def queue_backoff(retry_count: int) -> timedelta:
    """Delay before a queue entry that has failed ``retry_count`` times is due again."""
    return timedelta(seconds=2 ** retry_count)
