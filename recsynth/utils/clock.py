"""Time source shared by the throttle, retry loop, cache store and scheduler."""

import asyncio
import time


class Clock:
    """Wall-clock time plus a cooperative sleep.

    Components take a Clock instead of calling time/asyncio directly so tests
    can substitute a manual clock and never really sleep.
    """

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
