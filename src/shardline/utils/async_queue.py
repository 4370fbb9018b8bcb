"""FIFO mutual exclusion for coroutines.

Usage:
    queue = AsyncQueue()
    await queue.wait()
    try:
        ...  # exactly one caller runs here at a time
    finally:
        queue.shift()
"""

import asyncio
from collections import deque
from typing import Deque, Optional


class AsyncQueue:
    """Hands out a single slot to waiters in strict arrival order.

    Unlike asyncio.Lock, release is explicit (``shift``) and the next waiter
    is chosen at release time, so ordering never depends on scheduler timing.
    """

    def __init__(self):
        self._waiters: Deque[asyncio.Future] = deque()
        self._busy = False

    @property
    def remaining(self) -> int:
        """Number of callers either running or waiting."""
        return len(self._waiters) + (1 if self._busy else 0)

    async def wait(self) -> None:
        """Wait for this caller's turn."""
        if not self._busy and not self._waiters:
            self._busy = True
            return

        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        try:
            await future
        except asyncio.CancelledError:
            # Cancelled after being handed the slot: pass it on
            if future.done() and not future.cancelled():
                self.shift()
            elif future in self._waiters:
                self._waiters.remove(future)
            raise

    def shift(self) -> None:
        """Release the slot to the next waiter, if any."""
        nxt: Optional[asyncio.Future] = None
        while self._waiters:
            candidate = self._waiters.popleft()
            if not candidate.done():
                nxt = candidate
                break

        if nxt is None:
            self._busy = False
            return

        # Slot stays busy, ownership moves to the next waiter
        nxt.set_result(None)
