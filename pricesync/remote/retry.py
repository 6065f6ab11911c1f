"""Retry helper for remote store calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pricesync.remote.errors import RemoteIOError, TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def linear_delay(base_delay: float) -> Callable[[int], float]:
    """Delay of attempt * base_delay seconds after a failed attempt."""
    return lambda attempt: attempt * base_delay


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (TransientRemoteError, asyncio.TimeoutError))


async def retry_async(
    call: Callable[[], Awaitable[T]],
    *,
    operation: str,
    collection: str,
    max_attempts: int = 3,
    delay: Optional[Callable[[int], float]] = None,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    timeout: Optional[float] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Run ``call`` until it succeeds or attempts run out.

    Each attempt is bounded by ``timeout``. Errors rejected by
    ``is_retryable`` propagate immediately; retryable errors are retried
    after ``delay(attempt)`` seconds and, once attempts are exhausted,
    surface as RemoteIOError carrying the last message.

    Args:
        call: Zero-argument coroutine factory
        operation: Operation name for logs and errors (fetch, create, update)
        collection: Collection name for logs and errors
        max_attempts: Total attempts, including the first
        delay: Seconds to wait after failed attempt N (defaults to N * 1.0)
        is_retryable: Predicate selecting retryable errors
        timeout: Per-attempt timeout in seconds
        on_retry: Hook invoked before each retry
    """
    delay = delay or linear_delay(1.0)
    last_error = "no attempts made"

    for attempt in range(1, max_attempts + 1):
        try:
            if timeout is not None:
                return await asyncio.wait_for(call(), timeout=timeout)
            return await call()
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = str(e) or type(e).__name__

            if attempt >= max_attempts:
                break

            wait = delay(attempt)
            logger.warning(
                f"{operation} {collection}: {last_error}, retrying in {wait:.1f}s "
                f"(attempt {attempt}/{max_attempts})"
            )
            if on_retry is not None:
                on_retry(attempt, e)
            await asyncio.sleep(wait)

    raise RemoteIOError(operation, collection, max_attempts, last_error)
