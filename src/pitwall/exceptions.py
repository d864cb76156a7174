"""Custom exceptions for the pitwall timing client."""

from __future__ import annotations


class PitwallError(Exception):
    """Base exception for all pitwall errors."""


class AuthError(PitwallError):
    """Raised when credentials are missing or the token exchange fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportError(PitwallError):
    """Raised on transient network failures (connect, read, socket loss)."""


class ConnectionFailedError(TransportError):
    """Raised when the client cannot connect to a remote service."""


class RequestTimeoutError(TransportError):
    """Raised when a request to a remote service times out."""


class APIError(PitwallError):
    """Raised when a provider returns an error response (4xx/5xx or an explicit failure)."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


class RateLimitError(APIError):
    """Raised when a provider rejects a request for exceeding its rate limit."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(429, message)


class DecodeError(PitwallError):
    """Raised when an envelope or command line cannot be decoded."""


class NotFoundError(PitwallError):
    """Raised when a requested entity is absent and the caller cannot tolerate it."""


class ValidationError(PitwallError):
    """Raised when response data fails model validation."""
