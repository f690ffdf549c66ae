"""Client for the external recommendation generation service.

Per call, in order: in-flight dedupe by request key, throttle, dispatch with
retry/backoff, response validation, failure classification.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from recsynth.generation.errors import GenerationError, classify_exception
from recsynth.generation.parser import parse_recommendations
from recsynth.generation.throttle import ThrottleState
from recsynth.schemas.recommendations import RecommendationSet, WatchHistorySummary
from recsynth.utils.clock import Clock
from recsynth.utils.logger import get_logger
from recsynth.utils.prompt_registry import PromptRegistry

logger = get_logger(__name__)

Transport = Callable[[List[Dict[str, Any]]], Awaitable[str]]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, GenerationError) and exc.retryable


def _consume_exception(future: asyncio.Future) -> None:
    # mark the error as retrieved even when no second caller attached
    if not future.cancelled():
        future.exception()


class InFlightRegistry:
    """At most one pending generation per request key; later callers share its future."""

    def __init__(self):
        self._pending: Dict[str, asyncio.Future] = {}

    def get(self, key: str) -> Optional[asyncio.Future]:
        return self._pending.get(key)

    def is_in_flight(self, key: str) -> bool:
        return key in self._pending

    def register(self, key: str, future: asyncio.Future) -> None:
        self._pending[key] = future

    def release(self, key: str, future: asyncio.Future) -> None:
        if self._pending.get(key) is future:
            del self._pending[key]

    def __len__(self) -> int:
        return len(self._pending)


class GenerationClient:
    def __init__(
        self,
        transport: Transport,
        throttle: ThrottleState,
        in_flight: Optional[InFlightRegistry] = None,
        clock: Optional[Clock] = None,
        prompt_registry: Optional[PromptRegistry] = None,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        recommend_count: int = 10,
    ):
        self.transport = transport
        self.throttle = throttle
        self.in_flight = in_flight if in_flight is not None else InFlightRegistry()
        self.clock = clock or throttle.clock
        self.prompt_registry = prompt_registry or PromptRegistry()
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.recommend_count = recommend_count
        # successful dispatches; callers that attached to an in-flight call are not counted
        self.generations = 0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based): base ** attempt, i.e. 2s, 4s, 8s."""
        return self.backoff_base ** attempt

    def build_messages(self, summary: WatchHistorySummary, recommend_count: Optional[int] = None) -> List[Dict[str, str]]:
        count = recommend_count or self.recommend_count
        system_prompt = self.prompt_registry.render("recommend/system", 1)
        user_prompt = self.prompt_registry.render(
            "recommend/watch_history_recommender",
            1,
            movies=summary.movies,
            tv_series=summary.tv_series,
            recommend_count=count,
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    async def generate(
        self, summary: WatchHistorySummary, key: str, max_results: Optional[int] = None
    ) -> RecommendationSet:
        """Generate a recommendation set for `summary`, sharing any in-flight call for `key`.

        The dispatch runs in its own task, so cancelling any one caller (the
        first included) leaves the generation running for the others.

        Raises GenerationError once retries are exhausted or on a non-retryable failure.
        """
        pending = self.in_flight.get(key)
        if pending is not None:
            logger.info("Attaching to in-flight generation for %s", key)
        else:
            pending = asyncio.get_running_loop().create_task(
                self._generate_with_retries(summary, key, max_results)
            )
            pending.add_done_callback(_consume_exception)
            pending.add_done_callback(lambda task: self.in_flight.release(key, task))
            self.in_flight.register(key, pending)
        return await asyncio.shield(pending)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff_delay(retry_state.attempt_number)

    def _log_retry(self, key: str):
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                "Generation for %s failed with %s, retrying in %.1fs (retry %s/%s)",
                key, error.kind.value, retry_state.next_action.sleep,
                retry_state.attempt_number, self.max_retries,
            )
        return before_sleep

    async def _attempt(
        self, messages: List[Dict[str, Any]], key: str, max_results: Optional[int], attempt: int
    ) -> RecommendationSet:
        await self.throttle.wait_turn()
        logger.info("Dispatching generation for %s (attempt %s/%s)", key, attempt, self.max_retries + 1)
        try:
            text = await self.transport(messages)
        except Exception as e:
            error = classify_exception(e)
        else:
            parsed = parse_recommendations(text, max_results=max_results)
            if parsed.ok:
                return parsed.recommendations
            error = parsed.error
        error.attempts = attempt
        raise error

    async def _generate_with_retries(
        self, summary: WatchHistorySummary, key: str, max_results: Optional[int]
    ) -> RecommendationSet:
        messages = self.build_messages(summary, recommend_count=max_results)
        started = self.clock.now()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            sleep=self.clock.sleep,
            before_sleep=self._log_retry(key),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    recs = await self._attempt(messages, key, max_results, attempt.retry_state.attempt_number)
        except GenerationError as e:
            if e.retryable:
                logger.error("Generation for %s failed after %s attempts: %s", key, e.attempts, e)
            else:
                logger.error("Generation for %s failed (non-retryable): %s", key, e)
            raise

        recs.generation_time_ms = round((self.clock.now() - started) * 1000, 3)
        self.generations += 1
        logger.info(
            "Generated %s movies and %s series for %s in %.0fms",
            len(recs.movies), len(recs.tv_series), key, recs.generation_time_ms,
        )
        return recs
