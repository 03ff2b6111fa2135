"""
Token lifecycle: decide when the access token is stale, refresh or log in,
and keep exactly one provider call in flight.

Refresh tokens rotate: once the provider issues a new one the old value is
dead. Two overlapping refreshes would have the second present an already
rotated token, so concurrent callers are served by the single in-flight
attempt instead of starting their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import requests

from .. import config as config_mod
from ..aio import run_blocking
from ..errors import NotAuthenticatedError, RefreshError
from ..log_utils import default_logger, sanitize_obj, sanitize_text
from .login_flow import HeadlessLogin, provider_error_message
from .models import StoredTokens, TokenResponse
from .token_store import TokenStore

# Buffer in seconds: treat token as expired this many seconds before actual expiry.
TOKEN_EXPIRY_BUFFER = 300

_NOT_AUTHENTICATED = 'No tokens found. Please run "watts-cli login" first.'


def _retrieve_exception(task: asyncio.Future) -> None:
    # Callers may all have been cancelled; mark the failure as seen.
    if not task.cancelled():
        task.exception()


class TokenManager:
    def __init__(
        self,
        store: TokenStore,
        *,
        login: Optional[HeadlessLogin] = None,
        session: Optional[requests.Session] = None,
        log: Optional[logging.LoggerAdapter] = None,
        clock: Callable[[], float] = time.time,
        expiry_buffer: int = TOKEN_EXPIRY_BUFFER,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._store = store
        self._session = session if session is not None else requests.Session()
        self._log = log or default_logger("watts_home.api_auth.token_manager")
        self._clock = clock
        self._expiry_buffer = expiry_buffer
        self._timeout = timeout_seconds if timeout_seconds is not None else config_mod.get_timeout_seconds()
        self._login = login or HeadlessLogin(
            log=self._log, timeout_seconds=self._timeout, clock=clock
        )
        self._tokens: Optional[StoredTokens] = None
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_kind: Optional[str] = None

    @property
    def tokens(self) -> Optional[StoredTokens]:
        return self._tokens

    def is_token_expired(self, tokens: StoredTokens, now: Optional[float] = None) -> bool:
        """True once `now` is within the expiry buffer of `expires_at`."""
        current = self._clock() if now is None else now
        return current >= tokens.expires_at - self._expiry_buffer

    async def _coalesce(self, kind: str, factory: Callable[[], Awaitable[StoredTokens]]) -> StoredTokens:
        """
        Join the in-flight operation of the same kind, or start a new one once
        any operation of a different kind has settled.
        """
        while self._inflight is not None and not self._inflight.done():
            if self._inflight_kind == kind:
                break
            await asyncio.wait([self._inflight])
        else:
            self._inflight = asyncio.ensure_future(factory())
            self._inflight_kind = kind
            self._inflight.add_done_callback(_retrieve_exception)

        task = self._inflight
        # Shielded: a caller's timeout must not cancel a write other callers rely on.
        return await asyncio.shield(task)

    async def _load(self) -> Optional[StoredTokens]:
        if self._tokens is not None:
            return self._tokens
        loaded = await self._store.load()
        # A login/refresh may have finished while the store was being read.
        if self._tokens is None:
            self._tokens = loaded
        return self._tokens

    async def get_valid_token(self) -> str:
        """
        Return a bearer token that is not within the expiry buffer.

        Raises `NotAuthenticatedError` when no credential exists and
        `RefreshError` when the refresh grant fails (run `login` again).
        """
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            # Let a running login/refresh settle; its failure belongs to its own caller.
            await asyncio.wait([inflight])

        tokens = await self._load()
        if tokens is None:
            raise NotAuthenticatedError(_NOT_AUTHENTICATED)
        if not self.is_token_expired(tokens):
            return tokens.access_token

        self._log.info("access token expires at %s; refreshing", tokens.expires_at)
        tokens = await self._coalesce("refresh", lambda: self._refresh(only_if_stale=True))
        return tokens.access_token

    async def refresh(self) -> StoredTokens:
        """Exchange the current refresh token for a new credential pair."""
        return await self._coalesce("refresh", lambda: self._refresh(only_if_stale=False))

    async def login(self, identifier: str, secret: str) -> StoredTokens:
        """
        Run the headless login, persist and adopt the result.

        A manager serves one account at a time: a concurrent login for the same
        identifier joins the running one, a different identifier waits for it
        and then logs in on its own.
        """
        return await self._coalesce(f"login:{identifier}", lambda: self._run_login(identifier, secret))

    async def logout(self) -> bool:
        """Forget the credential in memory and on disk."""
        if self._inflight is not None and not self._inflight.done():
            await asyncio.wait([self._inflight])
        self._tokens = None
        return await self._store.clear()

    def close(self) -> None:
        self._session.close()

    async def _adopt(self, tokens: StoredTokens) -> StoredTokens:
        # Persist first so memory never holds a credential the record lacks.
        await self._store.save(tokens)
        self._tokens = tokens
        return tokens

    async def _run_login(self, identifier: str, secret: str) -> StoredTokens:
        tokens = await self._login.run(identifier, secret)
        await self._adopt(tokens)
        self._log.info("login successful, tokens saved to %s", self._store.path)
        return tokens

    async def _refresh(self, *, only_if_stale: bool) -> StoredTokens:
        current = await self._load()
        if current is None:
            raise NotAuthenticatedError(_NOT_AUTHENTICATED)
        if only_if_stale and not self.is_token_expired(current):
            return current

        form = {
            "client_id": config_mod.CLIENT_ID,
            "scope": config_mod.SCOPE,
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_info": "1",
        }
        self._log.info("refreshing access token")
        try:
            resp = await run_blocking(
                self._session.post,
                config_mod.get_token_url(),
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise RefreshError(f"Token refresh failed: no response ({type(e).__name__})") from e

        if resp.status_code >= 400:
            message = provider_error_message(resp) or f"HTTP {resp.status_code} {resp.reason or ''}".rstrip()
            raise RefreshError(f"Token refresh failed: {sanitize_text(message)}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise RefreshError("Token refresh failed: response was not valid JSON") from e
        if not isinstance(payload, dict):
            raise RefreshError("Token refresh failed: unexpected response shape")
        self._log.debug("refresh response: %s", sanitize_obj(payload))

        token_response = TokenResponse.from_payload(payload)
        if not token_response.access_token:
            raise RefreshError(f"Token refresh failed: response missing access_token (keys={sorted(payload.keys())})")

        now = int(self._clock())
        rotated = token_response.refresh_token is not None
        refresh_expires_at = current.refresh_token_expires_at
        if rotated and token_response.refresh_token_expires_in is not None:
            refresh_expires_at = now + token_response.refresh_token_expires_in
        tokens = StoredTokens(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token if rotated else current.refresh_token,
            expires_at=token_response.absolute_expiry(now),
            refresh_token_expires_at=refresh_expires_at,
        )
        await self._adopt(tokens)
        self._log.info("token refreshed (expires_at=%s, rotated=%s)", tokens.expires_at, rotated)
        return tokens


__all__ = ["TOKEN_EXPIRY_BUFFER", "TokenManager"]
