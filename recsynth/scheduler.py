"""Deferred, low-priority regeneration of cached recommendation sets.

Pending refreshes live in an explicit due-queue keyed by request key (one
entry per key; scheduling again replaces it). `run_due` drains whatever is due
on the event loop; in the service it is ticked by an APScheduler
AsyncIOScheduler interval job, so no dedicated thread is involved.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from recsynth.utils.clock import Clock
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

TICK_JOB_ID = "recommendation_refresh_tick"


class RefreshTrigger(str, Enum):
    CACHE_REFRESH = "cache_refresh"
    PERIODIC = "periodic"


class RefreshPriority(str, Enum):
    LOW = "low"
    HIGH = "high"


@dataclass
class ScheduledRefresh:
    key: str
    due_at: float
    trigger: RefreshTrigger
    priority: RefreshPriority
    context: Any = None
    scheduled_at: float = 0.0


@dataclass
class SchedulerMetrics:
    scheduled: int = 0
    replaced: int = 0
    cancelled: int = 0
    dispatched: int = 0
    dropped_busy: int = 0
    failed: int = 0
    completed: int = 0
    by_trigger: Dict[str, int] = field(default_factory=dict)


Runner = Callable[[ScheduledRefresh], Awaitable[Any]]
BusyCheck = Callable[[str], bool]


class BackgroundScheduler:
    def __init__(self, clock: Optional[Clock] = None, runner: Optional[Runner] = None, is_busy: Optional[BusyCheck] = None):
        self.clock = clock or Clock()
        self.runner = runner
        self.is_busy = is_busy
        self.metrics = SchedulerMetrics()
        self._queue: Dict[str, ScheduledRefresh] = {}
        self._active: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def bind(self, runner: Runner, is_busy: Optional[BusyCheck] = None) -> None:
        """Set the coroutine that performs a refresh and the foreground in-flight check."""
        self.runner = runner
        if is_busy is not None:
            self.is_busy = is_busy

    def schedule(
        self,
        key: str,
        context: Any,
        delay: float,
        trigger: RefreshTrigger = RefreshTrigger.PERIODIC,
        priority: RefreshPriority = RefreshPriority.LOW,
    ) -> ScheduledRefresh:
        """Queue a refresh for key after `delay` seconds, replacing any pending one for key."""
        now = self.clock.now()
        item = ScheduledRefresh(
            key=key,
            due_at=now + max(0.0, delay),
            trigger=RefreshTrigger(trigger),
            priority=RefreshPriority(priority),
            context=context,
            scheduled_at=now,
        )
        if key in self._queue:
            self.metrics.replaced += 1
            logger.debug("Replacing pending %s refresh for %s", self._queue[key].trigger.value, key)
        else:
            self.metrics.scheduled += 1
        self._queue[key] = item
        logger.info(
            "Scheduled %s refresh for %s in %.0fs (priority=%s)",
            item.trigger.value, key, delay, item.priority.value,
        )
        return item

    def cancel(self, key: str) -> bool:
        removed = self._queue.pop(key, None)
        if removed is not None:
            self.metrics.cancelled += 1
            logger.info("Cancelled pending refresh for %s", key)
        return removed is not None

    def cancel_matching(self, prefix: str) -> int:
        keys = [k for k in self._queue if k.startswith(prefix)]
        for k in keys:
            self.cancel(k)
        return len(keys)

    def pending(self, key: str) -> Optional[ScheduledRefresh]:
        return self._queue.get(key)

    def pending_count(self) -> int:
        return len(self._queue)

    def due(self) -> List[ScheduledRefresh]:
        """Due items, high priority first, then earliest due time."""
        now = self.clock.now()
        items = [item for item in self._queue.values() if item.due_at <= now]
        return sorted(items, key=lambda i: (i.priority != RefreshPriority.HIGH, i.due_at))

    def _busy(self, key: str) -> bool:
        if key in self._active:
            return True
        return bool(self.is_busy and self.is_busy(key))

    async def run_due(self) -> List[str]:
        """Dispatch every due refresh as a task; returns the keys dispatched.

        A due refresh whose key already has a generation in flight is dropped,
        not re-queued.
        """
        if self.runner is None:
            return []
        dispatched = []
        for item in self.due():
            self._queue.pop(item.key, None)
            if self._busy(item.key):
                self.metrics.dropped_busy += 1
                logger.info("Dropping %s refresh for %s: generation already in flight", item.trigger.value, item.key)
                continue
            self._active.add(item.key)
            task = asyncio.create_task(self._run(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            self.metrics.dispatched += 1
            self.metrics.by_trigger[item.trigger.value] = self.metrics.by_trigger.get(item.trigger.value, 0) + 1
            dispatched.append(item.key)
        return dispatched

    async def _run(self, item: ScheduledRefresh) -> None:
        try:
            logger.info("Starting background refresh for %s (%s)", item.key, item.trigger.value)
            await self.runner(item)
            self.metrics.completed += 1
        except Exception as e:
            self.metrics.failed += 1
            logger.error("Background refresh for %s failed: %s", item.key, repr(e), exc_info=True)
        finally:
            self._active.discard(item.key)

    async def drain(self) -> None:
        """Wait for every dispatched refresh task to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def attach(self, aps_scheduler: AsyncIOScheduler, interval_seconds: float = 1.0) -> None:
        """Register the drain tick as an interval job on an AsyncIOScheduler."""
        aps_scheduler.add_job(
            self.run_due,
            "interval",
            seconds=interval_seconds,
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Background refresh tick registered (every %ss)", interval_seconds)
