import asyncio
import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from recsynth.bootstrap import Engine, build_engine
from recsynth.config.settings import settings
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)


async def sweep_users(engine: Engine) -> int:
    """Schedule a periodic refresh for every user with rated history. Returns the count scheduled."""
    try:
        users = engine.history.list_users_with_history()
    except Exception as e:
        logger.error("Failed to list users for refresh sweep: %s", repr(e), exc_info=True)
        return 0
    for user_id in users:
        engine.orchestrator.schedule_periodic(user_id)
    logger.info("Refresh sweep scheduled %s users", len(users))
    return len(users)


async def run_worker(sweep_hours: float = 6) -> None:
    """ Warm the shared backing store with Background-tier entries.
    Sweeps all users every `sweep_hours` hours; due refreshes are drained by the tick job.
    """
    logger.info("Initializing refresh worker...")
    engine = build_engine(settings)
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_users,
        "interval",
        args=[engine],
        hours=sweep_hours,
        next_run_time=datetime.datetime.now(),
        id="refresh_sweep_job",
        replace_existing=True,
    )
    engine.scheduler.attach(scheduler, interval_seconds=settings.SCHEDULER_TICK_SECONDS)

    logger.info("Starting refresh worker (sweep every %s hours)...", sweep_hours)
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await engine.scheduler.drain()


if __name__ == "__main__":
    try:
        asyncio.run(run_worker(sweep_hours=settings.WORKER_SWEEP_HOURS))
    except (KeyboardInterrupt, SystemExit):
        logger.info("Refresh worker stopped.")
