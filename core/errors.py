"""Error taxonomy shared by the queue, the calendar facade and the sync engine."""
from __future__ import annotations

from typing import Optional


class OurAppError(Exception):
    """Base class for every error raised by the sync core."""

    retryable = False


class NotAuthenticated(OurAppError):
    """No usable Google credentials (never signed in, or refresh failed)."""


class ConfigurationMissing(OurAppError):
    """The OAuth client configuration for the calendar service is absent."""


class ApiError(OurAppError):
    retryable = True

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = int(status or 0)
        self.message = message
        super().__init__(f"API error {self.status}: {message}" if message else f"API error {self.status}")


class TokenExpired(ApiError):
    """The calendar service rejected the stored sync token (HTTP 410)."""

    def __init__(self, message: str = "sync token is no longer valid"):
        super().__init__(410, message)


class InvalidLocalData(OurAppError):
    """A queued payload cannot be decoded or its local files are gone."""


class NetworkUnavailable(OurAppError):
    retryable = True


class RequestTimeout(NetworkUnavailable):
    """A remote call exceeded its deadline."""


__all__ = [
    "ApiError",
    "ConfigurationMissing",
    "InvalidLocalData",
    "NetworkUnavailable",
    "NotAuthenticated",
    "OurAppError",
    "RequestTimeout",
    "TokenExpired",
]
