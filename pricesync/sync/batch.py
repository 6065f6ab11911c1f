"""Chunked, concurrency-bounded execution of independent remote writes.

Items are split into sequential chunks. Inside a chunk at most
``max_concurrency`` operations are in flight at once. A failing item is
recorded and never stops its siblings or later chunks.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from pricesync.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[T, R]):
    """Result of one item, at its original index."""

    index: int
    item: T
    success: bool
    value: Optional[R] = None
    error: Optional[str] = None


@dataclass
class BatchError(Generic[T]):
    """A captured item failure."""

    index: int
    item: T
    message: str


async def run_batch(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[R]],
    batch_size: Optional[int] = None,
    max_concurrency: Optional[int] = None,
    pause_seconds: Optional[float] = None,
    label: str = "batch",
) -> Tuple[List[BatchOutcome[T, R]], List[BatchError[T]]]:
    """
    Run ``operation`` over every item.

    Args:
        items: Work items
        operation: Coroutine function applied to one item
        batch_size: Items per sequential chunk (defaults to config)
        max_concurrency: In-flight operations within a chunk (defaults to config)
        pause_seconds: Pause between chunks (defaults to config)
        label: Name used in log lines

    Returns:
        (outcomes, errors): one outcome per item in original order, and the
        failures with their index and message
    """
    batch_size = max(1, batch_size or settings.sync_batch_size)
    max_concurrency = max(1, max_concurrency or settings.sync_max_concurrency)
    if pause_seconds is None:
        pause_seconds = settings.sync_batch_pause_seconds

    outcomes: List[BatchOutcome[T, R]] = []
    errors: List[BatchError[T]] = []
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(index: int, item: T) -> BatchOutcome[T, R]:
        async with semaphore:
            try:
                value = await operation(item)
                return BatchOutcome(index=index, item=item, success=True, value=value)
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.warning(f"{label}: item {index} failed: {message}")
                return BatchOutcome(index=index, item=item, success=False, error=message)

    total_chunks = (len(items) + batch_size - 1) // batch_size
    for chunk_number, start in enumerate(range(0, len(items), batch_size), start=1):
        chunk = items[start:start + batch_size]
        chunk_outcomes = await asyncio.gather(
            *(run_one(start + offset, item) for offset, item in enumerate(chunk))
        )

        for outcome in chunk_outcomes:
            outcomes.append(outcome)
            if not outcome.success:
                errors.append(BatchError(index=outcome.index, item=outcome.item, message=outcome.error))

        logger.debug(f"{label}: chunk {chunk_number}/{total_chunks} done")

        if pause_seconds > 0 and chunk_number < total_chunks:
            await asyncio.sleep(pause_seconds)

    if items:
        logger.info(
            f"{label}: {len(items) - len(errors)}/{len(items)} succeeded, {len(errors)} failed"
        )
    return outcomes, errors


def successful_values(outcomes: List[BatchOutcome[Any, R]]) -> List[R]:
    """Values of the successful outcomes, in original order."""
    return [outcome.value for outcome in outcomes if outcome.success]
