from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from recsynth.api import router
from recsynth.bootstrap import build_engine
from recsynth.config.settings import settings
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler: build the engine once and tick background refreshes on the event loop."""
    engine = build_engine(settings)
    app.state.engine = engine  # type: ignore[attr-defined]

    aps = AsyncIOScheduler()
    engine.scheduler.attach(aps, interval_seconds=settings.SCHEDULER_TICK_SECONDS)
    aps.start()
    logger.info("Background refresh scheduler started")
    try:
        yield
    finally:
        aps.shutdown(wait=False)
        await engine.scheduler.drain()
        logger.info("Background refresh scheduler stopped")


app = FastAPI(title="Recsynth", lifespan=lifespan)
app.include_router(router)
