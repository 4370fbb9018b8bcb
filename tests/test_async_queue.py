"""
Unit tests for the AsyncQueue FIFO primitive and timing helpers.
"""

import asyncio
import time

import pytest

from shardline.utils.async_queue import AsyncQueue
from shardline.utils.timing import delay, sleep_until


class TestAsyncQueue:

    @pytest.mark.asyncio
    async def test_first_caller_runs_immediately(self):
        queue = AsyncQueue()
        await asyncio.wait_for(queue.wait(), timeout=0.1)
        assert queue.remaining == 1
        queue.shift()
        assert queue.remaining == 0

    @pytest.mark.asyncio
    async def test_strict_fifo_and_mutual_exclusion(self):
        queue = AsyncQueue()
        order = []
        active = 0
        max_active = 0

        async def worker(n):
            nonlocal active, max_active
            await queue.wait()
            try:
                active += 1
                max_active = max(max_active, active)
                order.append(n)
                await asyncio.sleep(0.005)
            finally:
                active -= 1
                queue.shift()

        await asyncio.gather(*(worker(n) for n in range(8)))

        assert order == list(range(8))
        assert max_active == 1
        assert queue.remaining == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_skipped(self):
        queue = AsyncQueue()
        await queue.wait()

        reached = []

        async def waiter(n):
            await queue.wait()
            reached.append(n)
            queue.shift()

        first = asyncio.create_task(waiter(1))
        second = asyncio.create_task(waiter(2))
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)

        queue.shift()
        await asyncio.wait_for(second, timeout=0.5)

        assert reached == [2]
        assert queue.remaining == 0


class TestTiming:

    @pytest.mark.asyncio
    async def test_delay_non_positive_returns_immediately(self):
        start = time.monotonic()
        assert await delay(-5) is True
        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_sleep_until_waits_for_deadline(self):
        deadline = time.time() + 0.05
        await sleep_until(deadline)
        assert time.time() >= deadline - 0.005
