"""
Logging setup and redaction helpers.

Components never configure logging themselves: they accept a
`logging.LoggerAdapter` (`log=`) and fall back to `default_logger()`.
Only the composition root (the CLI, or an embedding application) calls
`configure_logging()` to choose sink and verbosity.

Nothing secret may reach a log line: passwords, tokens, authorization codes,
PKCE verifiers, CSRF tokens and provider cookies are masked by the
`sanitize_*` helpers before they are formatted.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

LOGGER_NAME = "watts_home"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [run=%(run_id)s] %(message)s"

REDACTED = "<redacted>"


class _RunIdFilter(logging.Filter):
    """Stamp `run_id` on records that reach a handler without one."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - logging uses `filter` name
        record.__dict__.setdefault("run_id", self.run_id)
        return True


def _coerce_log_level(level: Optional[str]) -> int:
    name = (level or "INFO").strip().upper()
    return logging._nameToLevel.get(name, logging.INFO)


def configure_logging(*, run_id: str, level: Optional[str]) -> logging.LoggerAdapter:
    """
    Configure logging for one CLI run and return the package adapter.

    An embedding application that already installed handlers keeps them; only
    the level is applied. Every record carries `run_id` so the four login
    steps and the API calls of a run can be correlated.
    """
    numeric_level = _coerce_log_level(level)
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(numeric_level)
    else:
        logging.basicConfig(level=numeric_level, format=LOG_FORMAT)

    previous_factory = logging.getLogRecordFactory()

    def _factory(*args, **kwargs):  # type: ignore[no-untyped-def]
        record = previous_factory(*args, **kwargs)
        record.__dict__.setdefault("run_id", run_id)
        return record

    logging.setLogRecordFactory(_factory)
    run_filter = _RunIdFilter(run_id)
    for handler in root.handlers:
        handler.addFilter(run_filter)

    return default_logger(LOGGER_NAME)


def default_logger(name: str = LOGGER_NAME) -> logging.LoggerAdapter:
    """Adapter used when a component is constructed without an injected logger."""
    return logging.LoggerAdapter(logging.getLogger(name), {})


# Compared case-insensitively against mapping keys, form fields and headers.
_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "access_token",
        "refresh_token",
        "id_token",
        "client_info",
        "code",
        "code_verifier",
        "authorization",
        "cookie",
        "set-cookie",
        "x-csrf-token",
        "csrf_token",
    }
)


def _is_sensitive(key: object) -> bool:
    return str(key).lower() in _SENSITIVE_KEYS


def redact(value: object) -> str:
    """
    Mask an identifier (e.g. an email) but keep enough to recognise it:
    `user@example.com` -> `use...com`. Values of 8 characters or less are
    masked completely.
    """
    if value is None:
        return "<none>"
    text = str(value)
    if not text:
        return "<empty>"
    return f"{text[:3]}...{text[-3:]}" if len(text) > 8 else REDACTED


def redact_sensitive(value: object) -> str:
    """Mask a secret completely; only presence is logged."""
    if value is None:
        return "<none>"
    return REDACTED if str(value) else "<empty>"


def sanitize_mapping(d: dict) -> dict:
    """Shallow copy of `d` with sensitive keys masked (headers, form bodies)."""
    return {k: redact_sensitive(v) if _is_sensitive(k) else v for k, v in d.items()}


def sanitize_obj(obj: object) -> object:
    """Recursive `sanitize_mapping` for decoded JSON (dicts, lists, tuples)."""
    if isinstance(obj, dict):
        return {k: redact_sensitive(v) if _is_sensitive(k) else sanitize_obj(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(sanitize_obj(v) for v in obj)
    return obj


_TEXT_PATTERNS = (
    # "access_token": "..."
    (re.compile(r'("(?:access_token|refresh_token|id_token|csrf)"\s*:\s*")[^"]+(")', re.IGNORECASE), r"\1<redacted>\2"),
    # access_token=...&code=... in URLs and form bodies
    (
        re.compile(r"((?:access_token|refresh_token|id_token|code|code_verifier|csrf_token)=)[^&\"\s]+", re.IGNORECASE),
        r"\1<redacted>",
    ),
)


def sanitize_text(text: str) -> str:
    """Scrub secrets out of free-form text such as error bodies and redirect URLs."""
    if not text:
        return text
    for pattern, replacement in _TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


__all__ = [
    "LOGGER_NAME",
    "configure_logging",
    "default_logger",
    "redact",
    "redact_sensitive",
    "sanitize_mapping",
    "sanitize_obj",
    "sanitize_text",
]
