"""Bounded worker pool over asyncio tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_bounded(
    items: Sequence[T],
    max_concurrency: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """Run `worker(item, index)` for every item, at most `max_concurrency` at once.

    result[i] always belongs to items[i], whatever order the calls finish in.
    An exception from `worker` propagates; callers that need per-item
    isolation catch inside the worker.
    """
    if not items:
        return []

    queue: asyncio.Queue[int] = asyncio.Queue()
    for index in range(len(items)):
        queue.put_nowait(index)
    results: list[R | None] = [None] * len(items)

    async def run_worker() -> None:
        while True:
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[index] = await worker(items[index], index)

    concurrency = min(max(1, max_concurrency), len(items))
    await asyncio.gather(*(run_worker() for _ in range(concurrency)))
    return results  # type: ignore[return-value]
