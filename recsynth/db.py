from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from recsynth.config.settings import settings
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

WATCH_HISTORY_COLLECTION = "watch_history"
RECOMMENDATION_CACHE_COLLECTION = "recommendation_cache"


def connect(uri: str | None = None, db_name: str | None = None) -> Database:
    """Create the process-wide Mongo client and return the configured database.

    MongoClient connects lazily, so this never blocks on the server.
    """
    client = MongoClient(uri or settings.MONGODB_URI, tz_aware=True)
    return client.get_database(db_name or settings.MONGODB_DB_NAME)


def ensure_indexes(db: Database) -> None:
    try:
        db[WATCH_HISTORY_COLLECTION].create_index(
            [("user_id", ASCENDING), ("media_type", ASCENDING)]
        )
    except Exception as e:
        logger.warning("Failed to ensure Mongo indexes: %s", repr(e), exc_info=True)
