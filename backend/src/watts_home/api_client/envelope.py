"""
Watts Home response envelope.

Every resource API response body is wrapped as:

    {"errorNumber": 0, "errorMessage": null, "body": {...}}

Success requires errorNumber == 0 *and* a non-null body.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import requests


@dataclass(frozen=True)
class ApiEnvelope:
    error_number: int
    error_message: Optional[str]
    body: Any

    @property
    def ok(self) -> bool:
        return self.error_number == 0 and self.body is not None

    @property
    def has_error(self) -> bool:
        return self.error_number != 0 or bool(self.error_message)

    def describe_error(self) -> str:
        return self.error_message or f"API error: {self.error_number}"


def parse_envelope(payload: Any) -> Optional[ApiEnvelope]:
    """Return the envelope, or None if `payload` is not shaped like one."""
    if not isinstance(payload, dict) or "errorNumber" not in payload:
        return None
    try:
        error_number = int(payload["errorNumber"])
    except (TypeError, ValueError):
        return None
    message = payload.get("errorMessage")
    return ApiEnvelope(
        error_number=error_number,
        error_message=str(message) if message else None,
        body=payload.get("body"),
    )


def envelope_from_response(response: requests.Response) -> Optional[ApiEnvelope]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return parse_envelope(payload)


__all__ = ["ApiEnvelope", "envelope_from_response", "parse_envelope"]
