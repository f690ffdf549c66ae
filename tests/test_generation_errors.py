"""Unit tests for recsynth.generation.errors."""
import json

import httpx
import openai
import pytest

from recsynth.generation.errors import (
    GenerationError,
    GenerationErrorKind,
    classify_exception,
    kind_for_status,
)

from tests.fakes import OPENAI_URL, connection_error, status_error


class TestKindForStatus:
    @pytest.mark.parametrize(
        "status,kind",
        [
            (401, GenerationErrorKind.AUTH_INVALID),
            (403, GenerationErrorKind.AUTH_INVALID),
            (429, GenerationErrorKind.RATE_LIMITED),
            (500, GenerationErrorKind.SERVICE_UNAVAILABLE),
            (503, GenerationErrorKind.SERVICE_UNAVAILABLE),
            (400, GenerationErrorKind.MALFORMED_RESPONSE),
            (404, GenerationErrorKind.MALFORMED_RESPONSE),
        ],
    )
    def test_status_mapping(self, status, kind):
        assert kind_for_status(status) == kind


class TestClassifyException:
    """Tests for classify_exception."""

    def test_authentication_error(self):
        error = classify_exception(status_error(openai.AuthenticationError, 401))

        assert error.kind == GenerationErrorKind.AUTH_INVALID
        assert error.status_code == 401
        assert not error.retryable

    def test_rate_limit_error(self):
        error = classify_exception(status_error(openai.RateLimitError, 429))

        assert error.kind == GenerationErrorKind.RATE_LIMITED
        assert error.retryable

    def test_server_error(self):
        error = classify_exception(status_error(openai.InternalServerError, 503))

        assert error.kind == GenerationErrorKind.SERVICE_UNAVAILABLE
        assert error.user_message == "service temporarily unavailable"

    def test_connection_and_timeout_errors(self):
        timeout = openai.APITimeoutError(request=httpx.Request("POST", OPENAI_URL))

        assert classify_exception(connection_error()).kind == GenerationErrorKind.NETWORK_ERROR
        assert classify_exception(timeout).kind == GenerationErrorKind.NETWORK_ERROR

    def test_httpx_errors(self):
        request = httpx.Request("POST", OPENAI_URL)
        response = httpx.Response(502, request=request)
        status = httpx.HTTPStatusError("bad gateway", request=request, response=response)

        assert classify_exception(httpx.ConnectError("refused")).kind == GenerationErrorKind.NETWORK_ERROR
        assert classify_exception(status).kind == GenerationErrorKind.SERVICE_UNAVAILABLE

    def test_decode_error_is_malformed(self):
        with pytest.raises(json.JSONDecodeError) as excinfo:
            json.loads("{")

        assert classify_exception(excinfo.value).kind == GenerationErrorKind.MALFORMED_RESPONSE

    def test_generation_error_passes_through(self):
        original = GenerationError(GenerationErrorKind.RATE_LIMITED, "slow down")

        assert classify_exception(original) is original

    def test_unknown_exception_is_network_error(self):
        assert classify_exception(RuntimeError("boom")).kind == GenerationErrorKind.NETWORK_ERROR


class TestGenerationError:
    def test_user_message_hides_detail(self):
        error = GenerationError(GenerationErrorKind.AUTH_INVALID, "sk-abc rejected", status_code=401)

        assert "sk-abc" not in error.user_message
        assert "sk-abc" in str(error)

    def test_retryable_kinds(self):
        retryable = {k for k in GenerationErrorKind if k.retryable}

        assert retryable == {
            GenerationErrorKind.RATE_LIMITED,
            GenerationErrorKind.SERVICE_UNAVAILABLE,
            GenerationErrorKind.NETWORK_ERROR,
        }
