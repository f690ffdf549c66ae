"""Schema-validating parse of the recommendation service's JSON reply.

Parsing never raises. It returns a ParseResult holding either a
RecommendationSet or a MalformedResponse error. Each array is validated on its
own: a missing or non-list array becomes empty, and a bad item is dropped
without discarding its siblings. A reply with no usable suggestion at all is
malformed.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from recsynth.generation.errors import GenerationError, GenerationErrorKind
from recsynth.schemas.recommendations import RecommendationSet, Suggestion
from recsynth.utils.logger import get_logger

logger = get_logger(__name__)

ARRAY_FIELDS = ("movies", "tv_series")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class ParseResult:
    recommendations: Optional[RecommendationSet] = None
    error: Optional[GenerationError] = None
    # array fields that were absent or not a list and defaulted to empty
    defaulted_fields: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.recommendations is not None

    @classmethod
    def failure(cls, detail: str) -> "ParseResult":
        return cls(error=GenerationError(GenerationErrorKind.MALFORMED_RESPONSE, detail))


def _extract_json_object(text: str) -> str:
    # models sometimes wrap the JSON in markdown fences or prose
    match = _JSON_OBJECT.search(text)
    return match.group(0) if match else text


def _validate_items(items: List[Any]) -> Tuple[List[Suggestion], int]:
    valid: List[Suggestion] = []
    dropped = 0
    for item in items:
        if not isinstance(item, dict):
            dropped += 1
            continue
        try:
            valid.append(Suggestion.model_validate(item))
        except ValidationError:
            dropped += 1
    return valid, dropped


def parse_recommendations(text: Optional[str], max_results: Optional[int] = None) -> ParseResult:
    if not text or not text.strip():
        return ParseResult.failure("empty response body")

    try:
        data = json.loads(_extract_json_object(text))
    except json.JSONDecodeError as e:
        return ParseResult.failure(f"invalid JSON: {e.msg}")

    if not isinstance(data, dict):
        return ParseResult.failure(f"expected a JSON object, got {type(data).__name__}")

    lists = {}
    defaulted = []
    dropped_total = 0
    for name in ARRAY_FIELDS:
        raw = data.get(name)
        if not isinstance(raw, list):
            defaulted.append(name)
            lists[name] = []
            continue
        valid, dropped = _validate_items(raw)
        dropped_total += dropped
        lists[name] = valid[:max_results] if max_results else valid

    if len(defaulted) == len(ARRAY_FIELDS):
        return ParseResult.failure("response has neither a 'movies' nor a 'tv_series' array")

    if not lists["movies"] and not lists["tv_series"]:
        return ParseResult.failure(f"no usable suggestions in response (dropped_items={dropped_total})")

    if defaulted or dropped_total:
        logger.warning(
            "Partial recommendation response: defaulted=%s dropped_items=%s", defaulted, dropped_total
        )

    recs = RecommendationSet(
        movies=lists["movies"], tv_series=lists["tv_series"], dropped_items=dropped_total
    )
    return ParseResult(recommendations=recs, defaulted_fields=defaulted)
