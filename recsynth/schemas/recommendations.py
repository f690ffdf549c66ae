"""Pydantic schemas for watch history, generated recommendation sets and cache entries."""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Suggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    external_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("external_id", "imdbID", "imdb_id")
    )
    reason: str = ""

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("external_id", mode="before")
    @classmethod
    def blank_id_is_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("reason", mode="before")
    @classmethod
    def reason_as_text(cls, v):
        return "" if v is None else str(v).strip()


class RecommendationSet(BaseModel):
    movies: List[Suggestion] = Field(default_factory=list)
    tv_series: List[Suggestion] = Field(default_factory=list)
    generation_time_ms: float = 0.0
    quality: float = 0.0
    source_filters: Dict[str, Any] = Field(default_factory=dict)
    # suggestions discarded by response validation
    dropped_items: int = 0

    @property
    def total(self) -> int:
        return len(self.movies) + len(self.tv_series)


class CacheTier(str, Enum):
    HOT = "hot"
    BACKGROUND = "background"


class CacheEntry(BaseModel):
    key: str
    payload: RecommendationSet
    created_at: float
    ttl: float
    tier: CacheTier

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl


class WatchedItem(BaseModel):
    title: str
    imdb_id: Optional[str] = None
    rating: float
    status: Optional[str] = None
    date_watched: Optional[str] = None


class WatchHistorySummary(BaseModel):
    """Rated watch history, split by media type, that a generation prompt is built from."""

    movies: List[WatchedItem] = Field(default_factory=list)
    tv_series: List[WatchedItem] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.movies) + len(self.tv_series)

    def is_empty(self) -> bool:
        return self.total == 0


class RecommendationFilters(BaseModel):
    """Known filters; unknown keys are kept so they still distinguish cache keys."""

    model_config = ConfigDict(extra="allow")

    media_type: Literal["movie", "tv", "all"] = "all"
    min_rating: Optional[float] = None
    max_results: Optional[int] = None

    @field_validator("media_type", mode="before")
    @classmethod
    def normalize_media_type(cls, v):
        return str(v).lower() if v is not None else "all"

    @field_validator("max_results")
    @classmethod
    def clamp_max_results(cls, v):
        # ensure max_results is within reasonable bounds
        if v is None:
            return None
        return max(1, min(20, int(v)))

    def canonical(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
