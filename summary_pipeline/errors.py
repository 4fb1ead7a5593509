"""
summary_pipeline.errors — Failure taxonomy, exception types and error classification.
"""

from __future__ import annotations

import asyncio
import enum
from datetime import datetime, timezone
from typing import Optional

import httpx
import requests


class ErrorType(enum.Enum):
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONTENT_ERROR = "CONTENT_ERROR"
    SAFETY_BLOCKED = "SAFETY_BLOCKED"
    LENGTH_LIMIT = "LENGTH_LIMIT"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERROR_TYPES = frozenset({
    ErrorType.API_ERROR,
    ErrorType.TIMEOUT,
    ErrorType.RATE_LIMIT,
    ErrorType.VALIDATION_ERROR,
})

RATE_LIMIT_KEYWORDS = ("rate limit", "overloaded", "429", "503", "resource exhausted")
TIMEOUT_KEYWORDS = ("timeout", "timed out")
SAFETY_KEYWORDS = ("safety", "blocked by policy")
LENGTH_KEYWORDS = ("max_tokens", "finish_reason=length", "response too long")


def is_retryable(error_type: ErrorType) -> bool:
    return error_type in RETRYABLE_ERROR_TYPES


class PipelineError(Exception):
    """Base class for errors raised by the summarization pipeline."""


class SummarizerError(PipelineError):
    """Raised by API clients with the provider error already mapped to an ``ErrorType``."""

    def __init__(self, message: str, error_type: ErrorType = ErrorType.API_ERROR,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code


class RateLimitExceeded(PipelineError):
    """Raised when a limiter permit is not granted within the tier timeout."""

    def __init__(self, key: str, waited_seconds: float):
        super().__init__(f"Rate limit exceeded for {key} after waiting {waited_seconds:.1f}s")
        self.key = key
        self.waited_seconds = waited_seconds


def classify_status_code(status_code: int) -> ErrorType:
    """Map an HTTP status from the summarization provider to an ``ErrorType``."""
    if status_code == 429:
        return ErrorType.RATE_LIMIT
    if status_code in (408, 504):
        return ErrorType.TIMEOUT
    if 400 <= status_code < 500:
        return ErrorType.VALIDATION_ERROR
    if status_code >= 500:
        return ErrorType.API_ERROR
    return ErrorType.UNKNOWN


def _classify_message(message: str) -> Optional[ErrorType]:
    message = message.lower()
    if any(k in message for k in RATE_LIMIT_KEYWORDS):
        return ErrorType.RATE_LIMIT
    if any(k in message for k in TIMEOUT_KEYWORDS):
        return ErrorType.TIMEOUT
    if any(k in message for k in SAFETY_KEYWORDS):
        return ErrorType.SAFETY_BLOCKED
    if any(k in message for k in LENGTH_KEYWORDS):
        return ErrorType.LENGTH_LIMIT
    return None


def classify_error(exc: BaseException) -> ErrorType:
    """Classify any dispatch exception into exactly one ``ErrorType``."""
    if isinstance(exc, SummarizerError):
        return exc.error_type
    if isinstance(exc, RateLimitExceeded):
        return ErrorType.RATE_LIMIT
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException, requests.Timeout)):
        return ErrorType.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status_code(exc.response.status_code)
    if isinstance(exc, (httpx.TransportError, requests.ConnectionError)):
        return ErrorType.API_ERROR
    return _classify_message(str(exc)) or ErrorType.API_ERROR


def make_error_payload(stage: str, err: Exception | str, extra: dict | None = None) -> dict:
    msg = str(err)
    base = {
        "status": "error",
        "error": msg,
        "stage": stage,
        "timestamp": datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
    }
    if extra:
        base.update(extra)
    return base
