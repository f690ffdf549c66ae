"""Process-wide spacing of outbound generation calls."""
import asyncio
from typing import Optional

from recsynth.utils.clock import Clock
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)


class ThrottleState:
    """Enforces a minimum interval between any two outbound dispatches, regardless of key.

    Construct one per process and share it with every GenerationClient.
    """

    def __init__(self, min_interval: float = 2.0, clock: Optional[Clock] = None):
        self.min_interval = min_interval
        self.clock = clock or Clock()
        self.last_request_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def remaining(self) -> float:
        if self.last_request_at is None:
            return 0.0
        return max(0.0, self.min_interval - (self.clock.now() - self.last_request_at))

    async def wait_turn(self) -> float:
        """Suspend until the interval has elapsed, then stamp the dispatch time.

        Callers queue on the lock, so dispatches leave one at a time.
        Returns the time spent waiting on the interval.
        """
        async with self._lock:
            wait = self.remaining()
            if wait > 0:
                logger.info("Throttling generation request, waiting %.2fs", wait)
                await self.clock.sleep(wait)
            self.last_request_at = self.clock.now()
            return wait
