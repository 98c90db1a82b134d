"""Bounded concurrent fan-out for per-place batch work."""

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """
    Run ``fn`` over ``items`` with at most ``concurrency`` calls in flight.

    Results come back in input order. ``fn`` is expected to handle its own
    per-item errors; an exception that escapes it propagates to the caller.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_with_semaphore(item: T) -> R:
        async with semaphore:
            return await fn(item)

    return list(await asyncio.gather(*(run_with_semaphore(item) for item in items)))
