"""Bounded fan-out over a list of items.

A fixed pool of worker coroutines pulls the next unclaimed index from
a shared cursor. Results land in a pre-sized slot per index, so the
output order always matches the input order regardless of which
mapper finishes first.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def map_with_concurrency(
    items: Sequence[T],
    max_concurrency: int,
    mapper: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """Apply *mapper* to every item with at most *max_concurrency* in flight.

    No item is retried here. If a mapper raises, the remaining workers
    are cancelled and the exception propagates to the caller.
    """
    items = list(items)
    if not items:
        return []

    worker_count = max(1, min(len(items), max_concurrency))
    results: list[R | None] = [None] * len(items)
    cursor = 0

    async def _worker() -> None:
        nonlocal cursor
        while cursor < len(items):
            # Claim and advance with no await in between.
            current = cursor
            cursor += 1
            results[current] = await mapper(items[current], current)

    logger.debug(
        "map_with_concurrency: %d item(s), %d worker(s)",
        len(items), worker_count,
    )
    workers = [asyncio.create_task(_worker()) for _ in range(worker_count)]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]
