from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from recsynth.schemas.recommendations import RecommendationSet


class LoadingState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CACHE_HIT = "cache_hit"
    BACKGROUND_CACHE_HIT = "background_cache_hit"
    API_GENERATION = "api_generation"
    COMPLETE = "complete"
    ERROR = "error"


class CacheStats(BaseModel):
    lookups: int = 0
    hot_hits: int = 0
    background_hits: int = 0
    misses: int = 0
    memory_hits: int = 0
    backing_hits: int = 0
    stale_served: int = 0
    generations: int = 0
    rejected_writes: int = 0
    memory_size: int = 0
    pending_refreshes: int = 0

    @property
    def hit_rate(self) -> float:
        if not self.lookups:
            return 0.0
        return (self.hot_hits + self.background_hits) / self.lookups

    def model_dump_with_rate(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["hit_rate"] = round(self.hit_rate, 4)
        return data


class LoadError(BaseModel):
    kind: str
    message: str


class LoadResult(BaseModel):
    """What the UI collaborator receives from a load or refresh."""

    recommendations: Optional[RecommendationSet] = None
    loading_state: LoadingState = LoadingState.IDLE
    stale: bool = False
    superseded: bool = False
    source: str = "none"
    cache_stats: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[LoadError] = None
    # set when a failed generation was answered from an expired entry
    degraded_reason: Optional[LoadError] = None


class LoadRequest(BaseModel):
    """Body for /recommendations/{user_id}/load."""

    filters: Dict[str, Any] = Field(default_factory=dict)
    force: bool = False


class RefreshRequest(BaseModel):
    """Body for /recommendations/{user_id}/refresh."""

    filters: Dict[str, Any] = Field(default_factory=dict)


class CancelScheduledResponse(BaseModel):
    user_id: str
    cancelled: int
