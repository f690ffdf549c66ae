import copy
import time
from typing import List, Optional

from cachetools import TTLCache
from pymongo.collection import Collection

from recsynth.schemas.recommendations import RecommendationFilters, WatchedItem, WatchHistorySummary
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

# stored media_type values that mean "tv"
_TV_ALIASES = {"tv", "series", "show"}


def _normalize_media_type(value) -> Optional[str]:
    v = str(value or "").lower()
    if v == "movie":
        return "movie"
    if v in _TV_ALIASES:
        return "tv"
    return None


class WatchHistoryDAO:
    """Reads a user's rated watch history from Mongo.

    Reads are cached in-process per (user_id, media_type, min_rating); call
    `clear_history_cache` after the history changes.
    """

    def __init__(self, collection: Collection, cache_ttl: int = 300, cache_size: int = 256):
        self.collection = collection
        self._cache = TTLCache(maxsize=cache_size, ttl=cache_ttl)

    def get_rated_history(self, user_id: str, media_type: Optional[str] = None, min_rating: Optional[float] = None) -> List[dict]:
        """Return the user's rated items (rating > 0, and >= min_rating when given), deduplicated."""
        cache_key = (user_id, media_type or "all", min_rating)
        cached = self._cache.get(cache_key)
        if cached is not None:
            # return a deep copy to prevent accidental mutation of cached data
            return copy.deepcopy(cached)

        start = time.time()
        query = {"user_id": user_id, "user_rating": {"$gt": 0}}
        if min_rating is not None:
            query["user_rating"]["$gte"] = min_rating
        history = list(self.collection.find(query, {"_id": 0}))

        # deduplicate based on (imdb_id or title, media_type) - the collection may hold duplicates
        seen = set()
        deduplicated = []
        for item in history:
            mtype = _normalize_media_type(item.get("media_type"))
            if mtype is None or not item.get("title"):
                continue
            if media_type and media_type != "all" and mtype != media_type:
                continue
            key = ((item.get("imdb_id") or item.get("title")).lower(), mtype)
            if key in seen:
                continue
            seen.add(key)
            item["media_type"] = mtype
            deduplicated.append(item)
        if len(history) != len(deduplicated):
            logger.debug("Filtered %d of %d watch history rows for %s", len(history) - len(deduplicated), len(history), user_id)

        logger.info(
            "Watch history retrieved for %s. items=%s db_time=%.3fs",
            user_id, len(deduplicated), time.time() - start,
        )
        self._cache[cache_key] = copy.deepcopy(deduplicated)
        return deduplicated

    def get_summary(self, user_id: str, filters: Optional[RecommendationFilters] = None) -> WatchHistorySummary:
        filters = filters or RecommendationFilters()
        rows = self.get_rated_history(user_id, media_type=filters.media_type, min_rating=filters.min_rating)
        summary = WatchHistorySummary()
        for row in rows:
            item = WatchedItem(
                title=row["title"],
                imdb_id=row.get("imdb_id"),
                rating=float(row["user_rating"]),
                status=row.get("status"),
                date_watched=str(row["date_watched"]) if row.get("date_watched") else None,
            )
            if row["media_type"] == "movie":
                summary.movies.append(item)
            else:
                summary.tv_series.append(item)
        return summary

    def list_users_with_history(self) -> List[str]:
        return [u for u in self.collection.distinct("user_id", {"user_rating": {"$gt": 0}}) if u]

    def clear_history_cache(self) -> bool:
        """Clear the in-memory watch history cache. Returns True on success."""
        try:
            self._cache.clear()
            logger.info("Watch history cache cleared via clear_history_cache()")
            return True
        except Exception as e:
            logger.warning("Failed to clear history cache: %s", repr(e))
            return False
