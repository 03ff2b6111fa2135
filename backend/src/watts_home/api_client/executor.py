"""
Resilient request executor for the Watts Home resource API.

Each attempt fetches a live bearer token, sends the request with its own
timeout budget and is reduced to an explicit outcome:

- `Success(value)`   envelope unwrapped, body returned
- `Retryable(error)` timeout, or a status in RETRYABLE_STATUSES
- `Terminal(error)`  everything else

The retry loop only looks at the outcome type; what the error *is* was already
decided by `_classify()`. Up to `max_retries` extra attempts are made with a
linear backoff of `backoff_seconds * (attempt + 1)` and no jitter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import requests

from .. import config as config_mod
from ..aio import run_blocking
from ..errors import ApiError, EmptyBodyError, HttpError, NetworkError, RequestError
from ..log_utils import default_logger, sanitize_text
from .envelope import envelope_from_response

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_SECONDS = 0.25


class TokenProvider(Protocol):
    async def get_valid_token(self) -> str: ...


@dataclass(frozen=True)
class RequestSpec:
    method: str
    path: str
    params: Optional[dict] = None
    json: Any = None
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class Success:
    value: Any


@dataclass(frozen=True)
class Retryable:
    error: RequestError


@dataclass(frozen=True)
class Terminal:
    error: RequestError


Outcome = Union[Success, Retryable, Terminal]


class RequestExecutor:
    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        log: Optional[logging.LoggerAdapter] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._tokens = token_provider
        self._session = session if session is not None else requests.Session()
        self._base_url = (base_url or config_mod.get_api_base_url()).rstrip("/")
        self._log = log or default_logger("watts_home.api_client")
        self._timeout = timeout_seconds if timeout_seconds is not None else config_mod.get_timeout_seconds()
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._sleep = sleep

    def close(self) -> None:
        self._session.close()

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(self, spec: RequestSpec) -> Any:
        """
        Perform `spec` and return the envelope body.

        Raises NetworkError, ApiError, HttpError or EmptyBodyError once retries
        are exhausted; AuthError from the token provider propagates unchanged.
        """
        attempt = 0
        while True:
            outcome = await self._attempt(spec)
            if isinstance(outcome, Success):
                return outcome.value
            if isinstance(outcome, Terminal) or attempt >= self._max_retries:
                self._log.error(
                    "%s %s failed after %s attempt(s): %s",
                    spec.method,
                    spec.path,
                    attempt + 1,
                    sanitize_text(str(outcome.error)),
                )
                raise outcome.error
            delay = self._backoff * (attempt + 1)
            self._log.warning(
                "%s %s attempt %s failed (%s); retrying in %.2fs",
                spec.method,
                spec.path,
                attempt + 1,
                sanitize_text(str(outcome.error)),
                delay,
            )
            await self._sleep(delay)
            attempt += 1

    async def _attempt(self, spec: RequestSpec) -> Outcome:
        token = await self._tokens.get_valid_token()
        headers = {
            "Api-Version": config_mod.API_VERSION,
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        url = self.url_for(spec.path)
        timeout = spec.timeout_seconds if spec.timeout_seconds is not None else self._timeout
        self._log.debug("HTTP %s %s", spec.method, url)
        try:
            resp = await run_blocking(
                self._session.request,
                spec.method,
                url,
                params=spec.params,
                json=spec.json,
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout as e:
            return Retryable(NetworkError(f"Network error: request timed out after {timeout}s ({type(e).__name__})"))
        except requests.RequestException as e:
            return Terminal(NetworkError(f"Network error: {sanitize_text(str(e))}"))
        self._log.debug("HTTP response %s %s", resp.status_code, resp.reason)
        return self._classify(resp)

    def _classify(self, resp: requests.Response) -> Outcome:
        envelope = envelope_from_response(resp)
        status = resp.status_code

        if status >= 400:
            error: RequestError
            if envelope is not None and envelope.has_error:
                error = ApiError(envelope.describe_error(), error_number=envelope.error_number, status=status)
            else:
                error = HttpError(status, resp.reason or "")
            return Retryable(error) if status in RETRYABLE_STATUSES else Terminal(error)

        if envelope is None:
            return Terminal(HttpError(status, "response body is not an API envelope"))
        if envelope.error_number != 0:
            return Terminal(ApiError(envelope.describe_error(), error_number=envelope.error_number, status=status))
        if envelope.body is None:
            return Terminal(EmptyBodyError("API reported success but returned no body"))
        return Success(envelope.body)


__all__ = [
    "DEFAULT_BACKOFF_SECONDS",
    "DEFAULT_MAX_RETRIES",
    "RETRYABLE_STATUSES",
    "RequestExecutor",
    "RequestSpec",
    "Retryable",
    "Success",
    "Terminal",
    "TokenProvider",
]
