"""
Price Sweep - Error Types

ThrottleError and TransientNetworkError are recovered inside the listing
fetcher. AuthError is fatal at startup and triggers one token refresh mid-run.
PerItemTimeout only abandons the current item. PersistenceError and
SchemaError end the run.
"""

from __future__ import annotations


class SweepError(Exception):
    """Base class for every error raised by the sweep."""


class AuthError(SweepError):
    """Client-credentials token exchange failed."""


class TokenExpiredError(AuthError):
    """A data call was rejected with 401; the bearer token needs a refresh."""


class ThrottleError(SweepError):
    """HTTP 429 from the marketplace."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(SweepError):
    """Timeout, connection reset or 5xx. Safe to retry the same request."""


class QueryFailedError(SweepError):
    """Non-retryable response for one query; the caller moves on."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PerItemTimeout(SweepError):
    """Wall-clock budget for one catalog item was exceeded."""


class PersistenceError(SweepError):
    """Non-transient database failure."""


class SchemaError(SweepError):
    """Price table layout cannot be used safely."""
