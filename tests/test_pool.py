"""Tests for map_bounded."""

import asyncio

import pytest

from blaze_tracker.pool import map_bounded


async def test_empty_input():
    async def worker(item, index):
        raise AssertionError("not called")

    assert await map_bounded([], 4, worker) == []


async def test_results_follow_input_order():
    delays = [0.03, 0.0, 0.02, 0.01]

    async def worker(delay, index):
        await asyncio.sleep(delay)
        return index

    assert await map_bounded(delays, 4, worker) == [0, 1, 2, 3]


@pytest.mark.parametrize("limit", [1, 2, 3])
async def test_concurrency_never_exceeds_limit(limit):
    running = 0
    peak = 0

    async def worker(item, index):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return item * 2

    results = await map_bounded(list(range(7)), limit, worker)
    assert results == [i * 2 for i in range(7)]
    assert peak == limit


async def test_limit_below_one_runs_sequentially():
    order = []

    async def worker(item, index):
        order.append(item)
        await asyncio.sleep(0)
        return item

    await map_bounded(["a", "b", "c"], 0, worker)
    assert order == ["a", "b", "c"]


async def test_worker_exception_propagates():
    async def worker(item, index):
        if item == "bad":
            raise ValueError("boom")
        return item

    with pytest.raises(ValueError, match="boom"):
        await map_bounded(["ok", "bad"], 2, worker)
