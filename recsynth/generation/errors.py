"""Failure taxonomy for calls to the external recommendation service."""
import json
from enum import Enum
from typing import Optional

import httpx
import openai


class GenerationErrorKind(str, Enum):
    AUTH_INVALID = "AuthInvalid"
    RATE_LIMITED = "RateLimited"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    NETWORK_ERROR = "NetworkError"
    MALFORMED_RESPONSE = "MalformedResponse"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_RETRYABLE = {
    GenerationErrorKind.RATE_LIMITED,
    GenerationErrorKind.SERVICE_UNAVAILABLE,
    GenerationErrorKind.NETWORK_ERROR,
}

_MESSAGES = {
    GenerationErrorKind.AUTH_INVALID: "recommendation service credentials are invalid",
    GenerationErrorKind.RATE_LIMITED: "recommendation service is busy, please try again in a moment",
    GenerationErrorKind.SERVICE_UNAVAILABLE: "service temporarily unavailable",
    GenerationErrorKind.NETWORK_ERROR: "could not reach the recommendation service",
    GenerationErrorKind.MALFORMED_RESPONSE: "recommendation service returned an unreadable response",
}


class GenerationError(Exception):
    """A classified generation failure; `str()` carries diagnostics, `user_message` does not."""

    def __init__(
        self,
        kind: GenerationErrorKind,
        detail: str = "",
        status_code: Optional[int] = None,
        attempts: int = 0,
    ):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @property
    def user_message(self) -> str:
        return self.kind.message


class EmptyWatchHistoryError(ValueError):
    """The user has no rated movies or series to build recommendations from."""


def kind_for_status(status_code: int) -> GenerationErrorKind:
    if status_code in (401, 403):
        return GenerationErrorKind.AUTH_INVALID
    if status_code == 429:
        return GenerationErrorKind.RATE_LIMITED
    if status_code >= 500:
        return GenerationErrorKind.SERVICE_UNAVAILABLE
    # any other 4xx means the request itself was rejected; retrying will not help
    return GenerationErrorKind.MALFORMED_RESPONSE


def classify_exception(exc: BaseException) -> GenerationError:
    """Map an SDK/transport exception onto a GenerationError."""
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, openai.APIStatusError):
        return GenerationError(kind_for_status(exc.status_code), repr(exc), status_code=exc.status_code)
    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError)):
        return GenerationError(GenerationErrorKind.NETWORK_ERROR, repr(exc))
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return GenerationError(kind_for_status(code), repr(exc), status_code=code)
    if isinstance(exc, (json.JSONDecodeError, ValueError, TypeError, KeyError, IndexError)):
        return GenerationError(GenerationErrorKind.MALFORMED_RESPONSE, repr(exc))
    return GenerationError(GenerationErrorKind.NETWORK_ERROR, repr(exc))
