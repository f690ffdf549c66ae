"""Recommendation orchestration: cache tiers, generation, fallback and refresh scheduling."""
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, Union

from recsynth.cache.keys import derive_key, user_key_prefix
from recsynth.cache.store import TieredCacheStore
from recsynth.generation.client import GenerationClient
from recsynth.generation.errors import EmptyWatchHistoryError, GenerationError, GenerationErrorKind
from recsynth.process.quality import QualityAssessor
from recsynth.scheduler import BackgroundScheduler, RefreshPriority, RefreshTrigger, ScheduledRefresh
from recsynth.schemas.api import CacheStats, LoadError, LoadingState, LoadResult
from recsynth.schemas.recommendations import (
    CacheEntry,
    CacheTier,
    RecommendationFilters,
    RecommendationSet,
    WatchHistorySummary,
)
from recsynth.utils.clock import Clock
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

STALE_AFTER_SECONDS = 30 * 60
CACHE_REFRESH_DELAY_SECONDS = 1.0
PERIODIC_REFRESH_DELAY_SECONDS = 45 * 60

FiltersLike = Union[RecommendationFilters, Mapping[str, Any], None]


class HistoryProvider(Protocol):
    def get_summary(self, user_id: str, filters: Optional[RecommendationFilters] = None) -> WatchHistorySummary:
        ...


class RecommendationOrchestrator:
    """The only entry point the UI collaborator uses.

    `load` walks Hot tier -> Background tier -> generation, and on generation
    failure serves the most recent expired entry marked stale. Foreground
    generations land in the Hot tier; scheduler-triggered ones land in the
    Background tier.
    """

    def __init__(
        self,
        store: TieredCacheStore,
        client: GenerationClient,
        scheduler: BackgroundScheduler,
        history: HistoryProvider,
        assessor: Optional[QualityAssessor] = None,
        clock: Optional[Clock] = None,
        stale_after: float = STALE_AFTER_SECONDS,
        cache_refresh_delay: float = CACHE_REFRESH_DELAY_SECONDS,
        periodic_refresh_delay: float = PERIODIC_REFRESH_DELAY_SECONDS,
        min_background_quality: float = 0.25,
    ):
        self.store = store
        self.client = client
        self.scheduler = scheduler
        self.history = history
        self.assessor = assessor or QualityAssessor()
        self.clock = clock or store.clock
        self.stale_after = stale_after
        self.cache_refresh_delay = cache_refresh_delay
        self.periodic_refresh_delay = periodic_refresh_delay
        self.min_background_quality = min_background_quality
        self.states: Dict[str, LoadingState] = {}
        self._load_seq = 0
        self._latest_load: Dict[str, Tuple[int, str]] = {}
        scheduler.bind(self._run_scheduled, is_busy=client.in_flight.is_in_flight)

    # state tracking

    def state_for(self, user_id: str) -> LoadingState:
        return self.states.get(user_id, LoadingState.IDLE)

    def _set_state(self, user_id: str, state: LoadingState, background: bool) -> None:
        if not background:
            self.states[user_id] = state

    def _begin(self, user_id: str, key: str) -> int:
        self._load_seq += 1
        self._latest_load[user_id] = (self._load_seq, key)
        return self._load_seq

    def _is_superseded(self, user_id: str, token: Optional[int], key: str) -> bool:
        if token is None:
            return False
        seq, latest_key = self._latest_load.get(user_id, (token, key))
        return seq != token and latest_key != key

    def cache_stats(self) -> CacheStats:
        stats = self.store.snapshot_stats()
        stats.generations = self.client.generations
        stats.pending_refreshes = self.scheduler.pending_count()
        return stats

    def _result(
        self,
        user_id: str,
        key: str,
        token: Optional[int],
        state: LoadingState,
        source: str,
        recommendations: Optional[RecommendationSet] = None,
        stale: bool = False,
        error: Optional[LoadError] = None,
        degraded_reason: Optional[LoadError] = None,
    ) -> LoadResult:
        return LoadResult(
            recommendations=recommendations,
            loading_state=state,
            stale=stale,
            superseded=self._is_superseded(user_id, token, key),
            source=source,
            cache_stats=self.cache_stats().model_dump_with_rate(),
            error=error,
            degraded_reason=degraded_reason,
        )

    # public API

    async def load(
        self,
        user_id: str,
        filters: FiltersLike = None,
        force: bool = False,
        background: bool = False,
    ) -> LoadResult:
        """Return recommendations for the user and filters.

        Raises EmptyWatchHistoryError when the user has no rated items. A
        foreground generation failure is returned as a classified error in the
        LoadResult; a background one is re-raised so the scheduler records it.
        """
        normalized = filters if isinstance(filters, RecommendationFilters) else RecommendationFilters.model_validate(dict(filters or {}))
        canonical = normalized.canonical()
        key = derive_key(user_id, canonical)
        token = None if background else self._begin(user_id, key)
        self._set_state(user_id, LoadingState.LOADING, background)

        if not force:
            hot = self.store.get(key, CacheTier.HOT)
            if hot is not None and hot.payload.total:
                self._set_state(user_id, LoadingState.CACHE_HIT, background)
                self._maybe_schedule_cache_refresh(hot, user_id, canonical)
                logger.info("Hot cache hit for %s (age=%.0fs)", key, hot.age(self.clock.now()))
                return self._result(user_id, key, token, LoadingState.CACHE_HIT, "hot_cache", hot.payload)

            warm = self.store.get(key, CacheTier.BACKGROUND)
            if warm is not None and warm.payload.total:
                if warm.payload.quality >= self.min_background_quality:
                    self._set_state(user_id, LoadingState.BACKGROUND_CACHE_HIT, background)
                    logger.info("Background cache hit for %s (quality=%.2f)", key, warm.payload.quality)
                    return self._result(
                        user_id, key, token, LoadingState.BACKGROUND_CACHE_HIT, "background_cache", warm.payload
                    )
                logger.info(
                    "Background entry for %s below quality threshold (%.2f < %.2f), regenerating",
                    key, warm.payload.quality, self.min_background_quality,
                )

        self._set_state(user_id, LoadingState.API_GENERATION, background)
        started_at = self.clock.now()
        summary = self.history.get_summary(user_id, normalized)
        if summary.is_empty():
            self._set_state(user_id, LoadingState.ERROR, background)
            raise EmptyWatchHistoryError(
                "No rated movies or TV series found. Rate some items in your watchlist first."
            )

        try:
            recs = await self.client.generate(summary, key, max_results=normalized.max_results)
        except GenerationError as e:
            return self._handle_failure(e, user_id, key, token, background)

        payload = self._finalize(recs, normalized, canonical)
        if not payload.total:
            error = GenerationError(
                GenerationErrorKind.MALFORMED_RESPONSE,
                f"no suggestions left after applying media_type={normalized.media_type}",
            )
            return self._handle_failure(error, user_id, key, token, background)

        tier = CacheTier.BACKGROUND if background else CacheTier.HOT
        self.store.set(key, payload, tier, created_at=started_at)

        if not background:
            self.scheduler.schedule(
                key,
                (user_id, canonical),
                delay=self.periodic_refresh_delay,
                trigger=RefreshTrigger.PERIODIC,
                priority=RefreshPriority.LOW,
            )
        self._set_state(user_id, LoadingState.COMPLETE, background)
        logger.info(
            "Generated recommendations for %s into %s tier (quality=%.2f, %.0fms)",
            key, tier.value, payload.quality, payload.generation_time_ms,
        )
        return self._result(
            user_id, key, token, LoadingState.COMPLETE,
            "background_generation" if background else "generation", payload,
        )

    async def refresh(self, user_id: str, filters: FiltersLike = None) -> LoadResult:
        return await self.load(user_id, filters, force=True)

    def cancel_background(self, user_id: str) -> int:
        """Drop every pending background refresh for the user."""
        cancelled = self.scheduler.cancel_matching(user_key_prefix(user_id))
        logger.info("Cancelled %s background refreshes for %s", cancelled, user_id)
        return cancelled

    def schedule_periodic(self, user_id: str, filters: FiltersLike = None, delay: float = 0.0) -> ScheduledRefresh:
        normalized = filters if isinstance(filters, RecommendationFilters) else RecommendationFilters.model_validate(dict(filters or {}))
        canonical = normalized.canonical()
        return self.scheduler.schedule(
            derive_key(user_id, canonical),
            (user_id, canonical),
            delay=delay,
            trigger=RefreshTrigger.PERIODIC,
            priority=RefreshPriority.LOW,
        )

    # internals

    def _finalize(self, recs: RecommendationSet, filters: RecommendationFilters, canonical: Dict[str, Any]) -> RecommendationSet:
        update: Dict[str, Any] = {"source_filters": canonical}
        lists = 2
        if filters.media_type == "movie":
            update["tv_series"] = []
            lists = 1
        elif filters.media_type == "tv":
            update["movies"] = []
            lists = 1
        # the client may hand the same set to several waiters, so never mutate it
        payload = recs.model_copy(update=update)
        payload.quality = self.assessor.assess(payload, lists=lists)
        return payload

    def _maybe_schedule_cache_refresh(self, hot: CacheEntry, user_id: str, canonical: Dict[str, Any]) -> None:
        now = self.clock.now()
        if hot.age(now) <= self.stale_after:
            return
        warm = self.store.peek(hot.key, CacheTier.BACKGROUND)
        if warm is not None and warm.created_at > hot.created_at and warm.is_fresh(now):
            logger.debug("Skipping refresh for %s: newer background entry exists", hot.key)
            return
        self.scheduler.schedule(
            hot.key,
            (user_id, canonical),
            delay=self.cache_refresh_delay,
            trigger=RefreshTrigger.CACHE_REFRESH,
            priority=RefreshPriority.LOW,
        )

    def _handle_failure(
        self, error: GenerationError, user_id: str, key: str, token: Optional[int], background: bool
    ) -> LoadResult:
        reason = LoadError(kind=error.kind.value, message=error.user_message)
        if not background:
            fallback = self.store.get_stale_fallback(key)
            if fallback is not None:
                self._set_state(user_id, LoadingState.COMPLETE, background)
                logger.warning(
                    "Serving stale %s entry for %s after %s", fallback.tier.value, key, error.kind.value
                )
                return self._result(
                    user_id, key, token, LoadingState.COMPLETE, "stale_fallback",
                    fallback.payload, stale=True, degraded_reason=reason,
                )

        if background:
            # the scheduler logs and counts it
            raise error
        self._set_state(user_id, LoadingState.ERROR, background)
        logger.error("Recommendation load for %s failed with %s", key, error.kind.value)
        return self._result(user_id, key, token, LoadingState.ERROR, "none", error=reason)

    async def _run_scheduled(self, item: ScheduledRefresh) -> LoadResult:
        user_id, filters = item.context
        return await self.load(user_id, filters, force=True, background=True)
