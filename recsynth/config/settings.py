import os

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.env")),
        extra="allow"
    )

    OPENAI_API_KEY: str = ""
    OPENAI_API_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4.1-nano"
    OPENAI_TIMEOUT_SECONDS: float = 60.0
    OPENAI_MAX_TOKENS: int = 2000
    OPENAI_TEMPERATURE: float = 0.7
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "recsynth"
    LOG_LEVEL: str = "INFO"

    # cache tiers
    HOT_TTL_MINUTES: float = 60
    BACKGROUND_TTL_MINUTES: float = 120
    STALE_AFTER_MINUTES: float = 30
    HOT_CACHE_MAX_ENTRIES: int = 512
    HISTORY_CACHE_TTL_SECONDS: int = 300

    # outbound generation calls
    THROTTLE_INTERVAL_SECONDS: float = 2.0
    MAX_RETRIES: int = 3
    BACKOFF_BASE_SECONDS: float = 2.0
    RECOMMEND_COUNT: int = 10

    # background refresh
    CACHE_REFRESH_DELAY_SECONDS: float = 1.0
    PERIODIC_REFRESH_DELAY_MINUTES: float = 45
    SCHEDULER_TICK_SECONDS: float = 1.0
    MIN_BACKGROUND_QUALITY: float = 0.25
    WORKER_SWEEP_HOURS: float = 6

    @property
    def hot_ttl_seconds(self) -> float:
        return self.HOT_TTL_MINUTES * 60

    @property
    def background_ttl_seconds(self) -> float:
        return self.BACKGROUND_TTL_MINUTES * 60

    @property
    def stale_after_seconds(self) -> float:
        return self.STALE_AFTER_MINUTES * 60

    @property
    def periodic_refresh_delay_seconds(self) -> float:
        return self.PERIODIC_REFRESH_DELAY_MINUTES * 60


settings = Settings()
