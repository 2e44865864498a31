from __future__ import annotations

import asyncio
import json

import httpx

from snapsolve.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    AuthenticationMissingError,
    MalformedResponseError,
    NoInputImagesError,
    OperationCanceledError,
    PreconditionFailedError,
    build_error_details,
    classify_error,
    extract_http_status_code,
    friendly_message,
    is_retryable_error_code,
)


class HttpError(RuntimeError):
    def __init__(self, status_code: int, message: str = "http error") -> None:
        super().__init__(message)
        self.status_code = status_code


def _gemini_status_error(status_code: int, message: str) -> httpx.HTTPStatusError:
    request = httpx.Request(
        "POST",
        "https://generativelanguage.googleapis.com/v1beta/models/m:generateContent",
    )
    response = httpx.Response(
        status_code, json={"error": {"message": message}}, request=request
    )
    return httpx.HTTPStatusError("request failed", request=request, response=response)


def test_cancellation_is_classified_first() -> None:
    class CanceledWithStatus(OperationCanceledError):
        status_code = 500

    assert classify_error(OperationCanceledError("x")) == "CANCELED"
    assert classify_error(asyncio.CancelledError()) == "CANCELED"
    assert classify_error(CanceledWithStatus("x")) == "CANCELED"


def test_typed_errors_map_to_their_codes() -> None:
    assert classify_error(AuthenticationMissingError("x")) == "AUTHENTICATION_MISSING"
    assert classify_error(PreconditionFailedError("x")) == "PRECONDITION_FAILED"
    assert classify_error(NoInputImagesError("x")) == "PRECONDITION_FAILED"
    assert classify_error(MalformedResponseError("x")) == "MALFORMED_UPSTREAM_RESPONSE"
    assert (
        classify_error(json.JSONDecodeError("msg", "{}", 0))
        == "MALFORMED_UPSTREAM_RESPONSE"
    )


def test_http_status_mapping() -> None:
    assert classify_error(HttpError(401)) == "AUTHENTICATION_INVALID"
    assert classify_error(HttpError(403)) == "AUTHENTICATION_INVALID"
    assert classify_error(HttpError(429)) == "RATE_LIMITED"
    assert classify_error(HttpError(500)) == "UPSTREAM_SERVER_ERROR"
    assert classify_error(HttpError(503)) == "UPSTREAM_SERVER_ERROR"
    assert classify_error(HttpError(404)) == "UNKNOWN_ERROR"


def test_gemini_bad_request_with_invalid_key_is_authentication_failure() -> None:
    invalid_key = _gemini_status_error(
        400, "API key not valid. Please pass a valid API key."
    )
    other_bad_request = _gemini_status_error(400, "Invalid JSON payload received.")

    assert classify_error(invalid_key) == "AUTHENTICATION_INVALID"
    assert classify_error(other_bad_request) == "UNKNOWN_ERROR"
    assert classify_error(_gemini_status_error(429, "quota")) == "RATE_LIMITED"


def test_transport_failures_are_upstream_server_errors() -> None:
    assert classify_error(httpx.ConnectTimeout("timed out")) == "UPSTREAM_SERVER_ERROR"
    assert classify_error(httpx.ConnectError("refused")) == "UPSTREAM_SERVER_ERROR"
    assert classify_error(TimeoutError("timeout")) == "UPSTREAM_SERVER_ERROR"
    assert classify_error(ConnectionResetError("reset")) == "UPSTREAM_SERVER_ERROR"

    class APIConnectionError(Exception):
        pass

    assert classify_error(APIConnectionError("boom")) == "UPSTREAM_SERVER_ERROR"


def test_unknown_errors_fall_through() -> None:
    class WeirdError(Exception):
        pass

    assert classify_error(WeirdError("boom")) == "UNKNOWN_ERROR"
    assert classify_error(KeyError("missing")) == "UNKNOWN_ERROR"


def test_retryable_codes() -> None:
    assert is_retryable_error_code("RATE_LIMITED") is True
    assert is_retryable_error_code("UPSTREAM_SERVER_ERROR") is True
    assert is_retryable_error_code("AUTHENTICATION_INVALID") is False
    assert is_retryable_error_code("PRECONDITION_FAILED") is False


def test_friendly_messages_name_the_provider() -> None:
    assert set(ERROR_FRIENDLY_MESSAGES) >= {"CANCELED", "UNKNOWN_ERROR"}
    assert friendly_message("AUTHENTICATION_INVALID", "gemini") == (
        "Invalid Gemini API key. Please check your settings."
    )
    assert "OpenAI" in friendly_message("RATE_LIMITED", "openai")
    assert "LLM provider" in friendly_message("UPSTREAM_SERVER_ERROR", None)


def test_http_status_extraction_and_details() -> None:
    error = _gemini_status_error(502, "backend unavailable")

    assert extract_http_status_code(HttpError(418)) == 418
    assert extract_http_status_code(error) == 502
    assert extract_http_status_code(ValueError("x")) is None

    details = build_error_details(error)
    assert details.startswith("HTTPStatusError: request failed")
    assert "status_code=502" in details
    assert "backend unavailable" in details
