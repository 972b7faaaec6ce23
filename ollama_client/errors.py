from __future__ import annotations

from typing import Optional


class OllamaError(Exception):
    """Base class for every error raised by this package."""


class EncodeError(OllamaError):
    """Request body could not be serialized to JSON. Never retried."""


class TransportError(OllamaError):
    """Connection, timeout or DNS failure reported by the HTTP transport."""


class RetryableStatusError(OllamaError):
    """Server answered 429 or 5xx; the dispatcher retries these."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"retryable http status {status_code}")
        self.status_code = status_code


class AllRetriesFailed(OllamaError):
    def __init__(self, attempts: int, last_error: Optional[Exception]) -> None:
        super().__init__(f"all retries failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class APIError(OllamaError):
    """Error message reported by the server in an ``{"error": ...}`` body."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"ollama api error: {message} (status code: {status_code})")
        self.status_code = status_code
        self.message = message


class HTTPStatusError(OllamaError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"http status {status_code}")
        self.status_code = status_code


class DecodeError(OllamaError):
    """Response body is not the JSON the caller expected."""


class RequestCancelled(OllamaError):
    """The caller's context was cancelled or its deadline passed."""


class RateLimitCancelled(RequestCancelled):
    """Cancelled while waiting for a rate-limiter token."""


class DurationError(OllamaError, ValueError):
    pass


class InvalidUnit(DurationError):
    def __init__(self, unit: str, position: int) -> None:
        super().__init__(f"invalid duration unit {unit!r} at position {position}")
        self.unit = unit
        self.position = position


class InvalidNumber(DurationError):
    pass


class TrailingDigits(DurationError):
    pass
