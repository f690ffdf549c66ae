"""Process-wide construction of the recommendation engine."""
from dataclasses import dataclass
from typing import Optional

from pymongo.database import Database

from recsynth.cache.store import TieredCacheStore
from recsynth.config.settings import Settings, settings as default_settings
from recsynth.dao.cache_backend import MongoCacheBackend
from recsynth.dao.history import WatchHistoryDAO
from recsynth.db import RECOMMENDATION_CACHE_COLLECTION, WATCH_HISTORY_COLLECTION, connect, ensure_indexes
from recsynth.generation.client import GenerationClient, InFlightRegistry, Transport
from recsynth.generation.throttle import ThrottleState
from recsynth.process.quality import QualityAssessor
from recsynth.process.recommendation import HistoryProvider, RecommendationOrchestrator
from recsynth.scheduler import BackgroundScheduler
from recsynth.utils.clock import Clock
from recsynth.utils.logger import get_logger
from recsynth.utils.openai_client import OpenAIChatTransport, get_openai_client

logger = get_logger(__name__)


@dataclass
class Engine:
    settings: Settings
    clock: Clock
    throttle: ThrottleState
    in_flight: InFlightRegistry
    store: TieredCacheStore
    client: GenerationClient
    assessor: QualityAssessor
    scheduler: BackgroundScheduler
    history: HistoryProvider
    orchestrator: RecommendationOrchestrator


def build_engine(
    config: Optional[Settings] = None,
    db: Optional[Database] = None,
    transport: Optional[Transport] = None,
    clock: Optional[Clock] = None,
    history: Optional[HistoryProvider] = None,
    persist: bool = True,
) -> Engine:
    """Wire every shared component exactly once.

    The throttle, in-flight registry and cache store must be shared by every
    load in the process, so call this once and keep the result (e.g. on
    FastAPI's app.state).
    """
    config = config or default_settings
    clock = clock or Clock()

    if db is None and (persist or history is None):
        db = connect(config.MONGODB_URI, config.MONGODB_DB_NAME)
        ensure_indexes(db)

    backing = MongoCacheBackend(db[RECOMMENDATION_CACHE_COLLECTION]) if persist and db is not None else None
    if history is None:
        history = WatchHistoryDAO(db[WATCH_HISTORY_COLLECTION], cache_ttl=config.HISTORY_CACHE_TTL_SECONDS)

    if transport is None:
        transport = OpenAIChatTransport(
            client=get_openai_client(
                api_key=config.OPENAI_API_KEY,
                base_url=config.OPENAI_API_BASE_URL,
                timeout=config.OPENAI_TIMEOUT_SECONDS,
            ),
            model=config.OPENAI_MODEL,
            max_tokens=config.OPENAI_MAX_TOKENS,
            temperature=config.OPENAI_TEMPERATURE,
        )

    throttle = ThrottleState(min_interval=config.THROTTLE_INTERVAL_SECONDS, clock=clock)
    in_flight = InFlightRegistry()
    store = TieredCacheStore(
        backing=backing,
        clock=clock,
        hot_ttl=config.hot_ttl_seconds,
        background_ttl=config.background_ttl_seconds,
        max_memory_entries=config.HOT_CACHE_MAX_ENTRIES,
    )
    client = GenerationClient(
        transport,
        throttle,
        in_flight=in_flight,
        clock=clock,
        max_retries=config.MAX_RETRIES,
        backoff_base=config.BACKOFF_BASE_SECONDS,
        recommend_count=config.RECOMMEND_COUNT,
    )
    assessor = QualityAssessor(expected_per_list=config.RECOMMEND_COUNT)
    scheduler = BackgroundScheduler(clock=clock)
    orchestrator = RecommendationOrchestrator(
        store,
        client,
        scheduler,
        history,
        assessor=assessor,
        clock=clock,
        stale_after=config.stale_after_seconds,
        cache_refresh_delay=config.CACHE_REFRESH_DELAY_SECONDS,
        periodic_refresh_delay=config.periodic_refresh_delay_seconds,
        min_background_quality=config.MIN_BACKGROUND_QUALITY,
    )
    logger.info(
        "Recommendation engine ready (model=%s, persist=%s, hot_ttl=%ss, background_ttl=%ss)",
        config.OPENAI_MODEL, backing is not None, int(config.hot_ttl_seconds), int(config.background_ttl_seconds),
    )
    return Engine(
        settings=config,
        clock=clock,
        throttle=throttle,
        in_flight=in_flight,
        store=store,
        client=client,
        assessor=assessor,
        scheduler=scheduler,
        history=history,
        orchestrator=orchestrator,
    )
