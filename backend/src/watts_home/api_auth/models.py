"""
Token data models.

`StoredTokens` is the only entity persisted to durable storage. `TokenResponse`
mirrors the raw Azure AD B2C token endpoint payload and is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

# Refresh token lifetime assumed when the provider omits refresh_token_expires_in (90 days).
DEFAULT_REFRESH_TOKEN_LIFETIME = 7_776_000
# Access token lifetime assumed when neither expires_on nor expires_in is present.
DEFAULT_ACCESS_TOKEN_LIFETIME = 3600


def _as_int(value: Any) -> Optional[int]:
    # B2C returns expires_on / expires_in as strings on some policies.
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class StoredTokens:
    """
    Current credential pair.

    Attributes:
        access_token: Bearer token for the resource API
        refresh_token: Token for the refresh grant (rotated on refresh)
        expires_at: Access token expiry, epoch seconds
        refresh_token_expires_at: Refresh token expiry, epoch seconds
    """

    access_token: str
    refresh_token: str
    expires_at: int
    refresh_token_expires_at: int

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "refresh_token_expires_at": self.refresh_token_expires_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["StoredTokens"]:
        """Build from a decoded record; None if required fields are missing or malformed."""
        if not isinstance(data, dict):
            return None
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        expires_at = _as_int(data.get("expires_at"))
        if not access_token or not refresh_token or expires_at is None:
            return None
        refresh_expires_at = _as_int(data.get("refresh_token_expires_at"))
        return cls(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_at=expires_at,
            refresh_token_expires_at=refresh_expires_at if refresh_expires_at is not None else 0,
        )


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: Optional[str]
    expires_on: Optional[int]
    expires_in: Optional[int]
    refresh_token_expires_in: Optional[int]
    token_type: Optional[str] = None
    id_token: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        return cls(
            access_token=str(payload.get("access_token") or ""),
            refresh_token=payload.get("refresh_token") or None,
            expires_on=_as_int(payload.get("expires_on")),
            expires_in=_as_int(payload.get("expires_in")),
            refresh_token_expires_in=_as_int(payload.get("refresh_token_expires_in")),
            token_type=payload.get("token_type"),
            id_token=payload.get("id_token"),
        )

    def absolute_expiry(self, now: int) -> int:
        """
        Access token expiry in epoch seconds.

        Prefers the absolute `expires_on`; falls back to `now + expires_in`.
        """
        if self.expires_on is not None:
            return self.expires_on
        if self.expires_in is not None:
            return now + self.expires_in
        return now + DEFAULT_ACCESS_TOKEN_LIFETIME


__all__ = ["DEFAULT_REFRESH_TOKEN_LIFETIME", "StoredTokens", "TokenResponse"]
