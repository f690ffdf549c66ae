"""Unit tests for recsynth.scheduler.BackgroundScheduler."""
from unittest.mock import MagicMock

import pytest

from recsynth.scheduler import TICK_JOB_ID, BackgroundScheduler, RefreshPriority, RefreshTrigger


class RecordingRunner:
    def __init__(self, fail: bool = False):
        self.ran = []
        self.fail = fail

    async def __call__(self, item):
        self.ran.append(item.key)
        if self.fail:
            raise RuntimeError("refresh exploded")


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def scheduler(clock, runner):
    return BackgroundScheduler(clock=clock, runner=runner, is_busy=lambda key: False)


class TestSchedule:
    """Tests for schedule, coalescing and cancel."""

    def test_schedule_sets_due_time(self, scheduler, clock):
        item = scheduler.schedule("k1", ("u", {}), delay=45 * 60)

        assert item.due_at == clock.now() + 45 * 60
        assert item.trigger == RefreshTrigger.PERIODIC
        assert item.priority == RefreshPriority.LOW
        assert scheduler.pending("k1") is item

    def test_rescheduling_same_key_replaces_pending(self, scheduler, clock):
        # Arrange
        scheduler.schedule("k1", None, delay=45 * 60, trigger=RefreshTrigger.PERIODIC)

        # Act
        scheduler.schedule("k1", None, delay=1, trigger=RefreshTrigger.CACHE_REFRESH)

        # Assert
        assert scheduler.pending_count() == 1
        assert scheduler.pending("k1").trigger == RefreshTrigger.CACHE_REFRESH
        assert scheduler.pending("k1").due_at == clock.now() + 1
        assert scheduler.metrics.replaced == 1

    def test_cancel(self, scheduler):
        scheduler.schedule("k1", None, delay=1)

        assert scheduler.cancel("k1") is True
        assert scheduler.cancel("k1") is False
        assert scheduler.pending_count() == 0

    def test_cancel_matching_prefix(self, scheduler):
        scheduler.schedule("rec:v1:alice:a", None, delay=1)
        scheduler.schedule("rec:v1:alice:b", None, delay=1)
        scheduler.schedule("rec:v1:bob:a", None, delay=1)

        assert scheduler.cancel_matching("rec:v1:alice:") == 2
        assert scheduler.pending("rec:v1:bob:a") is not None

    def test_due_orders_high_priority_first(self, scheduler, clock):
        scheduler.schedule("early-low", None, delay=0, priority=RefreshPriority.LOW)
        clock.advance(1)
        scheduler.schedule("late-high", None, delay=0, priority=RefreshPriority.HIGH)
        scheduler.schedule("not-due", None, delay=60)

        assert [i.key for i in scheduler.due()] == ["late-high", "early-low"]


class TestRunDue:
    """Tests for run_due dispatching."""

    @pytest.mark.asyncio
    async def test_nothing_runs_before_due(self, scheduler, runner, clock):
        scheduler.schedule("k1", None, delay=1)
        clock.advance(0.5)

        assert await scheduler.run_due() == []
        assert runner.ran == []

    @pytest.mark.asyncio
    async def test_due_item_runs_once(self, scheduler, runner, clock):
        # Arrange
        scheduler.schedule("k1", None, delay=1)
        clock.advance(1)

        # Act
        dispatched = await scheduler.run_due()
        await scheduler.drain()
        again = await scheduler.run_due()

        # Assert
        assert dispatched == ["k1"]
        assert again == []
        assert runner.ran == ["k1"]
        assert scheduler.metrics.completed == 1
        assert scheduler.metrics.by_trigger == {"periodic": 1}

    @pytest.mark.asyncio
    async def test_cancelled_item_never_runs(self, scheduler, runner, clock):
        scheduler.schedule("k1", None, delay=1)
        scheduler.cancel("k1")
        clock.advance(5)

        await scheduler.run_due()
        await scheduler.drain()

        assert runner.ran == []

    @pytest.mark.asyncio
    async def test_item_dropped_when_generation_in_flight(self, clock, runner):
        """Test that a due refresh is dropped, not re-queued, when its key is busy."""
        scheduler = BackgroundScheduler(clock=clock, runner=runner, is_busy=lambda key: key == "k1")
        scheduler.schedule("k1", None, delay=0)
        scheduler.schedule("k2", None, delay=0)

        dispatched = await scheduler.run_due()
        await scheduler.drain()

        assert dispatched == ["k2"]
        assert runner.ran == ["k2"]
        assert scheduler.pending("k1") is None
        assert scheduler.metrics.dropped_busy == 1

    @pytest.mark.asyncio
    async def test_runner_failure_is_contained(self, clock):
        scheduler = BackgroundScheduler(clock=clock, runner=RecordingRunner(fail=True))
        scheduler.schedule("k1", None, delay=0)

        await scheduler.run_due()
        await scheduler.drain()

        assert scheduler.metrics.failed == 1
        assert scheduler.metrics.completed == 0

    @pytest.mark.asyncio
    async def test_unbound_scheduler_dispatches_nothing(self, clock):
        scheduler = BackgroundScheduler(clock=clock)
        scheduler.schedule("k1", None, delay=0)

        assert await scheduler.run_due() == []
        assert scheduler.pending_count() == 1


class TestAttach:
    def test_attach_registers_interval_tick(self, scheduler):
        aps = MagicMock()

        scheduler.attach(aps, interval_seconds=1.0)

        aps.add_job.assert_called_once_with(
            scheduler.run_due,
            "interval",
            seconds=1.0,
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
