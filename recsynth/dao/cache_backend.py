"""Durable key/value layer behind the tiered recommendation cache."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from pymongo.collection import Collection

from recsynth.utils.logger import get_logger

logger = get_logger(__name__)


class BackingStore(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, key: str, value: Dict[str, Any], ttl_meta: Dict[str, Any]) -> None:
        ...


class MongoCacheBackend:
    """Stores one document per tier-qualified cache key in Mongo.

    Documents are upserted and never deleted; `expires_at` is a hint for
    operators, not a Mongo TTL index, because expired entries back the stale fallback.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        doc = self.collection.find_one({"_id": key}, {"_id": 0, "entry": 1})
        if not doc:
            return None
        return doc.get("entry")

    def set(self, key: str, value: Dict[str, Any], ttl_meta: Dict[str, Any]) -> None:
        created_at = ttl_meta.get("created_at")
        ttl = ttl_meta.get("ttl")
        expires_at = None
        if created_at is not None and ttl is not None:
            expires_at = datetime.fromtimestamp(created_at + ttl, tz=timezone.utc)
        self.collection.update_one(
            {"_id": key},
            {
                "$set": {
                    "entry": value,
                    "tier": ttl_meta.get("tier"),
                    "ttl_seconds": ttl,
                    "expires_at": expires_at,
                }
            },
            upsert=True,
        )
        logger.debug("Persisted cache entry %s (tier=%s)", key, ttl_meta.get("tier"))
