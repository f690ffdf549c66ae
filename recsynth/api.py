from fastapi import APIRouter, HTTPException, Request

from recsynth.generation.errors import EmptyWatchHistoryError, GenerationErrorKind
from recsynth.process.recommendation import RecommendationOrchestrator
from recsynth.schemas.api import (
    CancelScheduledResponse,
    LoadingState,
    LoadRequest,
    LoadResult,
    RefreshRequest,
)
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

# error kinds the caller cannot fix by retrying later
_BAD_GATEWAY_KINDS = {GenerationErrorKind.AUTH_INVALID.value, GenerationErrorKind.MALFORMED_RESPONSE.value}


def _orchestrator(request: Request) -> RecommendationOrchestrator:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="recommendation engine not initialised")
    return engine.orchestrator


def _raise_for_error(result: LoadResult) -> LoadResult:
    if result.loading_state != LoadingState.ERROR or result.error is None:
        return result
    status = 502 if result.error.kind in _BAD_GATEWAY_KINDS else 503
    raise HTTPException(status_code=status, detail=result.error.model_dump())


@router.get("/health")
def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "ok", "service": "recsynth"}


@router.post("/recommendations/{user_id}/load", response_model=LoadResult)
async def load_recommendations(user_id: str, payload: LoadRequest, request: Request):
    """Cached-or-generated recommendations for the user and filters.

    Expects JSON body of type LoadRequest. A degraded answer (expired entry
    served after a generation failure) is a 200 with `stale` set.
    """
    orchestrator = _orchestrator(request)
    try:
        result = await orchestrator.load(user_id, payload.filters, force=payload.force)
    except EmptyWatchHistoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("load_recommendations error: %s", repr(e), exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return _raise_for_error(result)


@router.post("/recommendations/{user_id}/refresh", response_model=LoadResult)
async def refresh_recommendations(user_id: str, payload: RefreshRequest, request: Request):
    """Bypass both cache tiers and regenerate."""
    orchestrator = _orchestrator(request)
    try:
        result = await orchestrator.refresh(user_id, payload.filters)
    except EmptyWatchHistoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("refresh_recommendations error: %s", repr(e), exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return _raise_for_error(result)


@router.get("/recommendations/stats")
def cache_stats(request: Request):
    orchestrator = _orchestrator(request)
    stats = orchestrator.cache_stats().model_dump_with_rate()
    stats["scheduler"] = vars(orchestrator.scheduler.metrics).copy()
    return stats


@router.delete("/recommendations/{user_id}/scheduled", response_model=CancelScheduledResponse)
def cancel_scheduled(user_id: str, request: Request):
    """Cancel every pending background refresh for the user."""
    cancelled = _orchestrator(request).cancel_background(user_id)
    return CancelScheduledResponse(user_id=user_id, cancelled=cancelled)
