"""Error taxonomy for the assistant client and orchestrator.

Only the network-facing layer raises. AssistantError carries a machine code,
the raw message (for logs), a user-facing message (for the conversation log
and notifications) and whether retrying can help.

A user-cancelled request is deliberately *not* represented here: the
orchestrator recognises cancellation itself and stays silent.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx


class ErrorCode(str, Enum):
    PROVIDER_CONFIG_MISSING = "PROVIDER_CONFIG_MISSING"
    INVALID_REQUEST = "INVALID_REQUEST"
    API_KEY_INVALID = "API_KEY_INVALID"
    MODEL_QUOTA_EXCEEDED = "MODEL_QUOTA_EXCEEDED"
    CONTEXT_TOO_LONG = "CONTEXT_TOO_LONG"
    TIMEOUT = "TIMEOUT"
    INVALID_JSON_RESPONSE = "INVALID_JSON_RESPONSE"
    NETWORK_ERROR = "NETWORK_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_DEFAULT_USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.PROVIDER_CONFIG_MISSING: "No AI provider is configured. Ask an administrator to set one up.",
    ErrorCode.INVALID_REQUEST: "The AI request was rejected (model name, base URL or parameters). Check the AI configuration and retry.",
    ErrorCode.API_KEY_INVALID: "The AI provider configuration is invalid or the API key has expired.",
    ErrorCode.MODEL_QUOTA_EXCEEDED: "The AI provider quota is exhausted. Please try again later.",
    ErrorCode.CONTEXT_TOO_LONG: "The workflow is too large for the model's context window. Simplify it or work on it in parts.",
    ErrorCode.TIMEOUT: "The request timed out. Please check your connection and try again.",
    ErrorCode.INVALID_JSON_RESPONSE: "The AI returned data in an invalid format. Retrying usually helps.",
    ErrorCode.NETWORK_ERROR: "Network error. Please check your connection.",
    ErrorCode.NOT_FOUND: "The requested resource no longer exists.",
    ErrorCode.UNKNOWN_ERROR: "The assistant hit an unexpected error. Please try again later.",
}

# Substrings (lower-cased) that mark an error as transient transport trouble.
_NETWORK_PHRASES: tuple[str, ...] = (
    "timeout",
    "timed out",
    "network",
    "fetch failed",
    "econnreset",
    "econnrefused",
    "connection",
    "socket hang up",
)

_RETRYABLE_CODES = frozenset({ErrorCode.TIMEOUT, ErrorCode.NETWORK_ERROR})


class AssistantError(Exception):
    """Raised by the assistant client for any failed request.

    code:          ErrorCode classifying the failure.
    user_message:  Text safe to show the end user.
    retryable:     True when repeating the request may succeed.
    status_code:   HTTP status when the server answered, else None.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        user_message: str | None = None,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.user_message = user_message or _DEFAULT_USER_MESSAGES[code]
        self.retryable = retryable
        self.status_code = status_code

    @property
    def is_timeout(self) -> bool:
        return self.code is ErrorCode.TIMEOUT

    @property
    def is_network(self) -> bool:
        return self.code in _RETRYABLE_CODES


def extract_error_message(payload: Any, status_code: int) -> str:
    """Pick the most specific message from an error response body.

    Priority: ``error.message`` → ``message`` → ``error`` (when a string) →
    ``HTTP <status>``.
    """
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return error["message"]
        if isinstance(payload.get("message"), str) and payload["message"]:
            return payload["message"]
        if isinstance(error, str) and error:
            return error
    return f"HTTP {status_code}"


def classify_error_message(message: str, status_code: int | None = None) -> AssistantError:
    """Map a raw provider/server error message onto the taxonomy."""
    lower = message.lower()

    if "余额不足" in message or "insufficient balance" in lower or "quota" in lower or "billing" in lower:
        return AssistantError(
            ErrorCode.MODEL_QUOTA_EXCEEDED, message,
            "The AI provider balance or quota is exhausted. Top up or switch to another API key.",
            status_code=status_code,
        )
    if "encryption_key" in lower or "encryption_salt" in lower or "decrypt" in lower:
        return AssistantError(
            ErrorCode.API_KEY_INVALID, message,
            "The stored API key could not be decrypted. Re-enter and save it in settings.",
            status_code=status_code,
        )
    if (
        "context_length_exceeded" in lower
        or "maximum context length" in lower
        or "too many tokens" in lower
        or "context window" in lower
    ):
        return AssistantError(ErrorCode.CONTEXT_TOO_LONG, message, status_code=status_code)
    if status_code == 401 or "401" in message or "unauthorized" in lower:
        return AssistantError(ErrorCode.API_KEY_INVALID, message, status_code=status_code)
    if status_code == 403 or "403" in message or "forbidden" in lower:
        return AssistantError(
            ErrorCode.API_KEY_INVALID, message,
            "The API key lacks permission or has been disabled. Check the configuration.",
            status_code=status_code,
        )
    if status_code in (404, 410):
        return AssistantError(ErrorCode.NOT_FOUND, message, status_code=status_code)
    if status_code == 429 or "429" in message or "rate limit" in lower:
        return AssistantError(
            ErrorCode.MODEL_QUOTA_EXCEEDED, message, retryable=True, status_code=status_code,
        )
    if "timeout" in lower or "timed out" in lower:
        return AssistantError(ErrorCode.TIMEOUT, message, retryable=True, status_code=status_code)
    if status_code == 400 or "bad request" in lower:
        return AssistantError(ErrorCode.INVALID_REQUEST, message, status_code=status_code)
    if (
        status_code in (502, 503, 504)
        or "fetch failed" in lower
        or "network" in lower
        or "econn" in lower
    ):
        return AssistantError(ErrorCode.NETWORK_ERROR, message, retryable=True, status_code=status_code)
    return AssistantError(ErrorCode.UNKNOWN_ERROR, message or "Unknown error", status_code=status_code)


def from_transport_error(exc: httpx.TransportError, what: str) -> AssistantError:
    """Wrap an httpx transport failure; timeouts are kept distinct from other network errors."""
    if isinstance(exc, httpx.TimeoutException):
        return AssistantError(
            ErrorCode.TIMEOUT, f"{what} timed out: {exc}", retryable=True,
        )
    return AssistantError(
        ErrorCode.NETWORK_ERROR, f"{what} failed: {exc}", retryable=True,
    )


def is_retryable_network_error(exc: BaseException) -> bool:
    """True for timeout/network failures (by code, or by a known phrase in the message)."""
    if isinstance(exc, AssistantError):
        if exc.code in _RETRYABLE_CODES:
            return True
        if exc.status_code is not None:
            return False
    if isinstance(exc, httpx.TransportError):
        return True
    lower = str(exc).lower()
    return any(phrase in lower for phrase in _NETWORK_PHRASES)
