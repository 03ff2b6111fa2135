"""
Error taxonomy for the Watts Home client.

Two families:
- `AuthError`: anything that prevents obtaining a bearer credential. The login
  flow is never resumed mid-way; callers restart it from scratch. A
  `RefreshError` means "run a full login", not "try again later".
- `RequestError`: the final, classified outcome of a resource API call after
  the executor's retry budget is spent.
"""

from __future__ import annotations

from typing import Optional


class WattsError(RuntimeError):
    """Base class for expected failures with a user-facing message."""


class AuthError(WattsError):
    """Authentication failed; a fresh interactive login is required."""


class PageParseError(AuthError):
    """The login page did not yield a CSRF token and transaction id."""


class InvalidCredentialsError(AuthError):
    """The provider rejected the submitted identifier/secret."""


class RedirectError(AuthError):
    """The confirmation step did not redirect with an authorization code."""


class TokenExchangeError(AuthError):
    """The authorization code could not be exchanged for tokens."""


class RefreshError(AuthError):
    """The refresh grant failed; fall back to a full login."""


class NotAuthenticatedError(AuthError):
    """No stored credential exists; run `login` first."""


class TokenStoreError(AuthError):
    """The credential record could not be written."""


class RequestError(WattsError):
    """A resource API call failed after retries."""


class NetworkError(RequestError):
    """No response was received (connection failure or timeout)."""


class ApiError(RequestError):
    """The provider answered with an error envelope."""

    def __init__(self, message: str, *, error_number: Optional[int] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.error_number = error_number
        self.status = status


class HttpError(RequestError):
    """Bare HTTP failure without a usable envelope."""

    def __init__(self, status: int, status_text: str) -> None:
        super().__init__(f"HTTP {status}: {status_text}")
        self.status = status
        self.status_text = status_text


class EmptyBodyError(RequestError):
    """Envelope reported success but carried no body."""


__all__ = [
    "ApiError",
    "AuthError",
    "EmptyBodyError",
    "HttpError",
    "InvalidCredentialsError",
    "NetworkError",
    "NotAuthenticatedError",
    "PageParseError",
    "RedirectError",
    "RefreshError",
    "RequestError",
    "TokenExchangeError",
    "TokenStoreError",
    "WattsError",
]
