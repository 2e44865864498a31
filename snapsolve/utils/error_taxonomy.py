from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, Literal

import httpx

ErrorCode = Literal[
    "CANCELED",
    "AUTHENTICATION_MISSING",
    "AUTHENTICATION_INVALID",
    "RATE_LIMITED",
    "UPSTREAM_SERVER_ERROR",
    "MALFORMED_UPSTREAM_RESPONSE",
    "PRECONDITION_FAILED",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "CANCELED": "Processing was canceled by the user.",
    "AUTHENTICATION_MISSING": (
        "{provider} API key not configured. Please check your settings."
    ),
    "AUTHENTICATION_INVALID": "Invalid {provider} API key. Please check your settings.",
    "RATE_LIMITED": (
        "{provider} API rate limit exceeded or insufficient credits. "
        "Please try again later."
    ),
    "UPSTREAM_SERVER_ERROR": "{provider} server error. Please try again later.",
    "MALFORMED_UPSTREAM_RESPONSE": (
        "Failed to parse problem information. "
        "Please try again or use clearer screenshots."
    ),
    "PRECONDITION_FAILED": "Nothing to process. Capture screenshots and try again.",
    "UNKNOWN_ERROR": "Unexpected error occurred during processing. Please try again.",
}

RETRYABLE_CODES: frozenset[ErrorCode] = frozenset(
    {"RATE_LIMITED", "UPSTREAM_SERVER_ERROR"}
)

_PROVIDER_LABELS = {"openai": "OpenAI", "gemini": "Gemini"}


class OperationCanceledError(Exception):
    """Raised when a cancellation token is signaled before a request resolves."""


class AuthenticationMissingError(RuntimeError):
    """Raised before any network call when the active provider has no credential."""


class PreconditionFailedError(RuntimeError):
    """Raised when a stage is started without its required inputs."""


class NoInputImagesError(PreconditionFailedError):
    """Raised when none of the queued screenshots can be loaded."""


class MalformedResponseError(ValueError):
    """Raised when an upstream response has no usable text or structure."""


def classify_error(error: BaseException) -> ErrorCode:
    if isinstance(error, (OperationCanceledError, asyncio.CancelledError)):
        return "CANCELED"
    if isinstance(error, AuthenticationMissingError):
        return "AUTHENTICATION_MISSING"
    if isinstance(error, PreconditionFailedError):
        return "PRECONDITION_FAILED"
    if isinstance(error, (MalformedResponseError, json.JSONDecodeError)):
        return "MALFORMED_UPSTREAM_RESPONSE"

    status_code = extract_http_status_code(error)
    if status_code is not None:
        if is_authentication_failure(error, status_code):
            return "AUTHENTICATION_INVALID"
        if status_code == 429:
            return "RATE_LIMITED"
        if 500 <= status_code <= 599:
            return "UPSTREAM_SERVER_ERROR"
        return "UNKNOWN_ERROR"

    if is_transport_failure(error):
        return "UPSTREAM_SERVER_ERROR"
    return "UNKNOWN_ERROR"


def is_authentication_failure(error: BaseException, status_code: int) -> bool:
    if status_code in (401, 403):
        return True
    # Gemini rejects a bad key with 400 INVALID_ARGUMENT instead of 401.
    if status_code == 400:
        body = _error_body_text(error).lower()
        return "api key not valid" in body or "api_key_invalid" in body
    return False


def is_transport_failure(error: BaseException) -> bool:
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout)):
        return True

    class_name = error.__class__.__name__.lower()
    return "timeout" in class_name or "connection" in class_name


def is_retryable_error_code(error_code: ErrorCode) -> bool:
    return error_code in RETRYABLE_CODES


def friendly_message(error_code: ErrorCode, provider: str | None = None) -> str:
    label = _PROVIDER_LABELS.get(provider or "", "LLM provider")
    return ERROR_FRIENDLY_MESSAGES[error_code].format(provider=label)


def extract_http_status_code(error: BaseException) -> int | None:
    for field_name in ("status_code", "status", "http_status"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def build_error_details(error: BaseException) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    body = _error_body_text(error)
    if body:
        details.append(f"body={body}")
    return "\n".join(details)


def _error_body_text(error: BaseException) -> str:
    for field_name in ("body", "response_body", "payload"):
        value = getattr(error, field_name, None)
        if value is not None:
            return value if isinstance(value, str) else json.dumps(value, default=str)

    response = getattr(error, "response", None)
    if isinstance(response, httpx.Response):
        try:
            return response.text
        except httpx.ResponseNotRead:
            return ""
    return ""


def _to_int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
