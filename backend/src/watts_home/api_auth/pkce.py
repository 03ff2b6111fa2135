"""
PKCE (RFC 7636) helpers for the Watts Home login flow.

A fresh pair is generated for every login attempt and never persisted.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import uuid
from dataclasses import dataclass

VERIFIER_BYTES = 32


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str


def _base64url_no_padding(raw: bytes) -> str:
    """
    Base64URL encode without '=' padding, per PKCE spec.
    """
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def code_challenge_s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _base64url_no_padding(digest)


def generate_pkce(num_bytes: int = VERIFIER_BYTES) -> PKCEPair:
    """
    Generate a verifier from `num_bytes` of CSPRNG output and its S256 challenge.

    32 bytes encode to a 43-character verifier, the RFC 7636 minimum.
    """
    if num_bytes < VERIFIER_BYTES:
        raise ValueError(f"PKCE verifier needs at least {VERIFIER_BYTES} random bytes")
    verifier = _base64url_no_padding(secrets.token_bytes(num_bytes))
    return PKCEPair(verifier=verifier, challenge=code_challenge_s256(verifier))


def generate_state() -> str:
    """Random anti-replay `state` value for the authorize request."""
    return str(uuid.uuid4())


__all__ = ["PKCEPair", "code_challenge_s256", "generate_pkce", "generate_state"]
