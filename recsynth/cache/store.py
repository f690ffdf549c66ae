"""Two-tier (hot + background) recommendation cache with a persistent backing layer.

Reads go memory first, then the backing store (promoting hits into memory).
Writes land in memory and are mirrored to the backing store under a
tier-qualified key. Expired entries are never purged: they are reported as
misses but remain available to `get_stale_fallback` until overwritten.
"""
from typing import Optional

from cachetools import LRUCache
from pydantic import ValidationError

from recsynth.dao.cache_backend import BackingStore
from recsynth.schemas.api import CacheStats
from recsynth.schemas.recommendations import CacheEntry, CacheTier, RecommendationSet
from recsynth.utils.clock import Clock
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

HOT_TTL_SECONDS = 60 * 60
BACKGROUND_TTL_SECONDS = 120 * 60
BACKGROUND_SUFFIX = "#background"


class TieredCacheStore:
    def __init__(
        self,
        backing: Optional[BackingStore] = None,
        clock: Optional[Clock] = None,
        hot_ttl: float = HOT_TTL_SECONDS,
        background_ttl: float = BACKGROUND_TTL_SECONDS,
        max_memory_entries: int = 512,
    ):
        self.backing = backing
        self.clock = clock or Clock()
        self.ttls = {CacheTier.HOT: hot_ttl, CacheTier.BACKGROUND: background_ttl}
        # bounded in memory; the backing store re-supplies anything evicted here
        self.memory: LRUCache = LRUCache(maxsize=max_memory_entries)
        self.stats = CacheStats()

    @staticmethod
    def tier_key(key: str, tier: CacheTier) -> str:
        return key + BACKGROUND_SUFFIX if tier == CacheTier.BACKGROUND else key

    def default_ttl(self, tier: CacheTier) -> float:
        return self.ttls[tier]

    def _load(self, key: str, tier: CacheTier, count: bool = False) -> Optional[CacheEntry]:
        tkey = self.tier_key(key, tier)
        entry = self.memory.get(tkey)
        if entry is not None:
            if count:
                self.stats.memory_hits += 1
            return entry

        if self.backing is None:
            return None
        try:
            raw = self.backing.get(tkey)
        except Exception as e:
            logger.warning("Backing store read failed for %s: %s", tkey, repr(e), exc_info=True)
            return None
        if not raw:
            return None
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache document %s: %s", tkey, repr(e))
            return None

        self.memory[tkey] = entry
        if count:
            self.stats.backing_hits += 1
        logger.debug("Promoted %s from backing store into memory", tkey)
        return entry

    def get(self, key: str, tier: CacheTier) -> Optional[CacheEntry]:
        """Return the entry if present and fresh, else None (a miss).

        An expired entry counts as a miss here but is kept for the stale fallback.
        """
        self.stats.lookups += 1
        entry = self._load(key, tier, count=True)
        now = self.clock.now()
        if entry is None or not entry.is_fresh(now):
            self.stats.misses += 1
            if entry is not None:
                logger.info(
                    "Cache entry %s (%s) expired %.0fs ago",
                    key, tier.value, entry.age(now) - entry.ttl,
                )
            return None

        if tier == CacheTier.HOT:
            self.stats.hot_hits += 1
        else:
            self.stats.background_hits += 1
        return entry

    def peek(self, key: str, tier: CacheTier) -> Optional[CacheEntry]:
        """Return the entry regardless of freshness, without touching hit/miss stats."""
        return self._load(key, tier)

    def get_stale_fallback(self, key: str) -> Optional[CacheEntry]:
        """Most recent non-empty entry for key ignoring TTL; Hot tier takes precedence over Background."""
        for tier in (CacheTier.HOT, CacheTier.BACKGROUND):
            entry = self._load(key, tier)
            if entry is not None and entry.payload.total:
                self.stats.stale_served += 1
                return entry
        return None

    def set(
        self,
        key: str,
        payload: RecommendationSet,
        tier: CacheTier,
        ttl: Optional[float] = None,
        created_at: Optional[float] = None,
    ) -> bool:
        """Write an entry to memory and mirror it to the backing store.

        Last write wins by `created_at`: a write older than the entry already
        stored for the same tier-qualified key is rejected and False is returned.
        """
        if ttl is None:
            ttl = self.default_ttl(tier)
        if created_at is None:
            created_at = self.clock.now()

        existing = self._load(key, tier)
        if existing is not None and existing.created_at > created_at:
            self.stats.rejected_writes += 1
            logger.warning(
                "Rejected out-of-order cache write for %s (%s): existing=%.3f incoming=%.3f",
                key, tier.value, existing.created_at, created_at,
            )
            return False

        entry = CacheEntry(key=key, payload=payload, created_at=created_at, ttl=ttl, tier=tier)
        tkey = self.tier_key(key, tier)
        self.memory[tkey] = entry

        if self.backing is not None:
            try:
                self.backing.set(
                    tkey,
                    entry.model_dump(mode="json"),
                    {"tier": tier.value, "ttl": ttl, "created_at": created_at},
                )
            except Exception as e:
                # memory still holds the entry; persistence is best effort
                logger.warning("Backing store write failed for %s: %s", tkey, repr(e), exc_info=True)

        logger.info(
            "Cached %s in %s tier (ttl=%ss, items=%s)", key, tier.value, int(ttl), payload.total
        )
        return True

    def clear_memory(self) -> None:
        self.memory.clear()
        logger.info("In-memory recommendation cache cleared")

    def snapshot_stats(self) -> CacheStats:
        stats = self.stats.model_copy()
        stats.memory_size = len(self.memory)
        return stats
