"""Scheduled wakeup helpers.

Quota deadlines come from server headers as epoch timestamps, so everything
here works on wall-clock seconds rather than the loop's monotonic clock.
"""

import asyncio
import time


def now() -> float:
    """Current wall-clock time in epoch seconds."""
    return time.time()


async def delay(seconds: float) -> bool:
    """Suspend the calling task for ``seconds``. Non-positive values yield once."""
    await asyncio.sleep(max(0.0, seconds))
    return True


async def sleep_until(deadline: float) -> bool:
    """Suspend until the epoch timestamp ``deadline`` has passed."""
    return await delay(deadline - now())
