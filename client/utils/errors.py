"""
Exception types raised by the chat client.

Every error carries a human-readable message suitable for an error banner.
"""

from typing import Any, Optional


class ChatClientError(RuntimeError):
    """Base class for all chat client errors."""


class NotAuthenticatedError(ChatClientError):
    """No usable credential is stored; raised before any network call."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class ApiError(ChatClientError):
    """The backend answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AuthenticationError(ApiError):
    """The backend rejected the credential (HTTP 401) or login failed."""


class NetworkError(ChatClientError):
    """The request could not complete (connection refused, timeout, ...)."""

    def __init__(self, message: str = "Server not responding. Please check your connection and try again."):
        super().__init__(message)
