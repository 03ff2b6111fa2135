"""
Headless Azure AD B2C login for Watts Home.

The provider only offers an interactive web sign-in, so this module replays
what the browser does, without following any redirect:

1. FETCH_LOGIN_PAGE    GET  /authorize (PKCE S256, prompt=login)
                       -> HTML with `"csrf":"..."` and `"transId":"..."` + cookies
2. SUBMIT_CREDENTIALS  POST /SelfAsserted (form, x-csrf-token, Cookie)
                       -> JSON `{"status": "200"}` + more cookies
3. FOLLOW_REDIRECT     GET  /api/CombinedSigninAndSignup/confirmed
                       -> 302 Location: msal...://auth?code=...
4. EXCHANGE_CODE       POST /oauth2/v2.0/token (authorization_code + verifier)
                       -> access/refresh tokens

Each stage returns a typed result consumed by the next one. Any failure moves
the machine to FAILED and aborts the attempt; a retry starts over at START
with a fresh PKCE pair and state.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional
from urllib.parse import parse_qs, urlparse

import requests

from .. import config as config_mod
from ..aio import run_blocking
from ..errors import (
    AuthError,
    InvalidCredentialsError,
    NetworkError,
    PageParseError,
    RedirectError,
    TokenExchangeError,
)
from ..log_utils import default_logger, redact, sanitize_mapping, sanitize_obj, sanitize_text
from .models import DEFAULT_REFRESH_TOKEN_LIFETIME, StoredTokens, TokenResponse
from .pkce import PKCEPair, generate_pkce, generate_state


class LoginStage(enum.Enum):
    START = "start"
    FETCH_LOGIN_PAGE = "fetch_login_page"
    SUBMIT_CREDENTIALS = "submit_credentials"
    FOLLOW_REDIRECT = "follow_redirect"
    EXCHANGE_CODE = "exchange_code"
    DONE = "done"
    FAILED = "failed"


class CookieJar:
    """
    Provider session cookies accumulated across the login steps.

    New cookies are merged over existing ones; the jar is never replaced.
    """

    def __init__(self, cookies: Optional[Mapping[str, str]] = None) -> None:
        self._cookies: dict[str, str] = {}
        if cookies:
            self.merge(cookies)

    def merge(self, cookies: Mapping[str, str]) -> None:
        for name, value in cookies.items():
            if name and value:
                self._cookies[name] = value

    def merge_response(self, response: requests.Response) -> None:
        """Merge the cookies a response set (one entry per Set-Cookie header)."""
        self.merge({c.name: c.value for c in response.cookies if c.value})

    def header(self) -> str:
        """Render as a `Cookie` request header value."""
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())

    def names(self) -> list[str]:
        return sorted(self._cookies)

    def as_dict(self) -> dict[str, str]:
        return dict(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)


def _extract_settings_value(html: str, name: str) -> Optional[str]:
    # B2C renders `var SETTINGS = {..."csrf":"...","transId":"..."...};`
    m = re.search(rf'"{re.escape(name)}"\s*:\s*"([^"]+)"', html, flags=re.IGNORECASE)
    return m.group(1) if m else None


def parse_login_page(html: Optional[str]) -> tuple[str, str]:
    """
    Return (csrf_token, transaction_id) from the rendered sign-in page.

    This is the only place that knows the provider's markup; every failure
    surfaces as `PageParseError`.
    """
    if not isinstance(html, str) or not html:
        raise PageParseError("Login page was empty; cannot extract CSRF token or transaction ID.")
    csrf_token = _extract_settings_value(html, "csrf")
    transaction_id = _extract_settings_value(html, "transId")
    if not csrf_token or not transaction_id:
        missing = [n for n, v in (("csrf", csrf_token), ("transId", transaction_id)) if not v]
        raise PageParseError(
            f"Failed to extract {' and '.join(missing)} from login page (length={len(html)})."
        )
    return csrf_token, transaction_id


def _extract_code_from_url(url: str) -> Optional[str]:
    """
    Extract ?code=... from a URL (or Location header value).
    Returns None if no code is present.
    """
    values = parse_qs(urlparse(url).query).get("code")
    if values and values[0]:
        return values[0]
    return None


def provider_error_message(response: requests.Response) -> Optional[str]:
    """Best-effort `error_description` / `message` from a JSON error body."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    message = payload.get("error_description") or payload.get("message") or payload.get("error")
    return str(message) if message else None


@dataclass
class LoginSession:
    """Ephemeral state threaded through one login attempt."""

    csrf_token: str
    transaction_id: str
    code_verifier: str
    state: str
    cookies: CookieJar = field(default_factory=CookieJar)


@dataclass(frozen=True)
class LoginPage:
    csrf_token: str
    transaction_id: str
    cookies: CookieJar


@dataclass(frozen=True)
class CredentialsAccepted:
    cookie_count: int


@dataclass(frozen=True)
class AuthorizationCode:
    code: str


class HeadlessLogin:
    """
    Four-stage login state machine. One instance runs one attempt at a time.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        log: Optional[logging.LoggerAdapter] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session = session
        self._log = log or default_logger("watts_home.api_auth.login")
        self._timeout = timeout_seconds if timeout_seconds is not None else config_mod.get_timeout_seconds()
        self._clock = clock
        self._running = False
        self.stage = LoginStage.START

    def _advance(self, stage: LoginStage) -> None:
        self._log.debug("login stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    async def run(self, identifier: str, secret: str) -> StoredTokens:
        """
        Perform the full login and return the new credential pair.

        Raises an `AuthError` subclass for provider rejections and
        `NetworkError` when a step gets no response.
        """
        if self._running:
            raise RuntimeError("a login attempt is already running on this HeadlessLogin")
        self._running = True
        self.stage = LoginStage.START
        owns_session = self._session is None
        http = self._session if self._session is not None else requests.Session()
        self._log.info("starting login flow (account=%s)", redact(identifier))
        try:
            pkce = generate_pkce()
            state = generate_state()

            self._advance(LoginStage.FETCH_LOGIN_PAGE)
            page = await self.fetch_login_page(http, pkce, state)
            login_session = LoginSession(
                csrf_token=page.csrf_token,
                transaction_id=page.transaction_id,
                code_verifier=pkce.verifier,
                state=state,
                cookies=page.cookies,
            )

            self._advance(LoginStage.SUBMIT_CREDENTIALS)
            await self.submit_credentials(http, login_session, identifier, secret)

            self._advance(LoginStage.FOLLOW_REDIRECT)
            auth_code = await self.follow_redirect(http, login_session)

            self._advance(LoginStage.EXCHANGE_CODE)
            token_response = await self.exchange_code(http, auth_code.code, login_session.code_verifier)
        except AuthError as e:
            self._log.error("login failed during %s: %s", self.stage.value, sanitize_text(str(e)))
            self.stage = LoginStage.FAILED
            raise
        except requests.RequestException as e:
            self._log.error("login failed during %s: no response (%s)", self.stage.value, type(e).__name__)
            failed_stage = self.stage
            self.stage = LoginStage.FAILED
            raise NetworkError(f"Network error during {failed_stage.value}: {sanitize_text(str(e))}") from e
        except BaseException:
            self.stage = LoginStage.FAILED
            raise
        finally:
            self._running = False
            if owns_session:
                http.close()

        now = int(self._clock())
        refresh_lifetime = token_response.refresh_token_expires_in
        tokens = StoredTokens(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token or "",
            expires_at=token_response.absolute_expiry(now),
            refresh_token_expires_at=now + (
                refresh_lifetime if refresh_lifetime is not None else DEFAULT_REFRESH_TOKEN_LIFETIME
            ),
        )
        self._advance(LoginStage.DONE)
        self._log.info("login successful (expires_at=%s)", tokens.expires_at)
        return tokens

    async def fetch_login_page(self, http: requests.Session, pkce: PKCEPair, state: str) -> LoginPage:
        params = {
            "scope": config_mod.SCOPE,
            "response_type": "code",
            "client_id": config_mod.CLIENT_ID,
            "redirect_uri": config_mod.REDIRECT_URI,
            "code_challenge": pkce.challenge,
            "code_challenge_method": "S256",
            "prompt": "login",
            "state": state,
        }
        url = config_mod.get_authorize_url()
        self._log.info("step 1: fetching login page")
        self._log.debug("authorize request: %s", {"url": url, "params": sanitize_mapping(params)})

        resp = await run_blocking(http.get, url, params=params, allow_redirects=False, timeout=self._timeout)
        self._log.debug("authorize response: status=%s", resp.status_code)
        if resp.status_code != 200:
            raise PageParseError(f"Login page request failed: HTTP {resp.status_code} {resp.reason or ''}".rstrip())

        csrf_token, transaction_id = parse_login_page(resp.text)
        cookies = CookieJar()
        cookies.merge_response(resp)
        self._log.info("parsed login page (cookies=%s)", cookies.names())
        return LoginPage(csrf_token=csrf_token, transaction_id=transaction_id, cookies=cookies)

    async def submit_credentials(
        self,
        http: requests.Session,
        login_session: LoginSession,
        identifier: str,
        secret: str,
    ) -> CredentialsAccepted:
        form = {"request_type": "RESPONSE", "signInName": identifier, "password": secret}
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "x-csrf-token": login_session.csrf_token,
            "Cookie": login_session.cookies.header(),
        }
        params = {"tx": login_session.transaction_id, "p": config_mod.POLICY}
        url = config_mod.get_self_asserted_url()
        self._log.info("step 2: submitting credentials")
        self._log.debug(
            "self-asserted request: %s",
            {
                "url": url,
                "headers": sanitize_mapping(headers),
                "form": sanitize_mapping({**form, "signInName": redact(identifier)}),
                "cookie_names": login_session.cookies.names(),
            },
        )

        resp = await run_blocking(
            http.post,
            url,
            params=params,
            data=form,
            headers=headers,
            allow_redirects=False,
            timeout=self._timeout,
        )
        if resp.status_code not in (200, 302):
            message = provider_error_message(resp) or f"HTTP {resp.status_code} {resp.reason or ''}".rstrip()
            raise InvalidCredentialsError(f"Login failed: {message}")

        try:
            result = resp.json()
        except ValueError as e:
            raise InvalidCredentialsError("Login failed: credential submission returned a non-JSON body") from e
        self._log.debug("self-asserted response: %s", sanitize_obj(result))
        if not isinstance(result, dict) or result.get("status") != "200":
            message = result.get("message") if isinstance(result, dict) else None
            raise InvalidCredentialsError(f"Login failed: {message or 'Unknown error'}")

        login_session.cookies.merge_response(resp)
        self._log.info("credentials accepted (cookies=%s)", login_session.cookies.names())
        return CredentialsAccepted(cookie_count=len(login_session.cookies))

    async def follow_redirect(self, http: requests.Session, login_session: LoginSession) -> AuthorizationCode:
        params = {
            "rememberMe": "false",
            "csrf_token": login_session.csrf_token,
            "tx": login_session.transaction_id,
            "p": config_mod.POLICY,
        }
        headers = {"Cookie": login_session.cookies.header()}
        url = config_mod.get_confirmed_url()
        self._log.info("step 3: requesting authorization code")
        self._log.debug(
            "confirmed request: %s",
            {"url": url, "params": sanitize_mapping(params), "headers": sanitize_mapping(headers)},
        )

        resp = await run_blocking(
            http.get,
            url,
            params=params,
            headers=headers,
            allow_redirects=False,
            timeout=self._timeout,
        )
        location = resp.headers.get("Location")
        if not resp.is_redirect or not location:
            raise RedirectError(f"No redirect URL after login confirmation (HTTP {resp.status_code}).")

        code = _extract_code_from_url(location)
        if not code:
            error = parse_qs(urlparse(location).query).get("error_description")
            detail = f": {error[0]}" if error else ""
            raise RedirectError(f"No authorization code in redirect URL{detail}")
        self._log.debug("authorization code extracted (length=%s)", len(code))
        return AuthorizationCode(code=code)

    async def exchange_code(self, http: requests.Session, code: str, code_verifier: str) -> TokenResponse:
        form = {
            "client_id": config_mod.CLIENT_ID,
            "scope": config_mod.SCOPE,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config_mod.REDIRECT_URI,
            "code_verifier": code_verifier,
            "client_info": "1",
        }
        url = config_mod.get_token_url()
        self._log.info("step 4: exchanging authorization code for tokens")
        self._log.debug("token request: %s", {"url": url, "form": sanitize_mapping(form)})

        resp = await run_blocking(
            http.post,
            url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self._timeout,
        )
        if resp.status_code >= 400:
            message = provider_error_message(resp) or f"HTTP {resp.status_code} {resp.reason or ''}".rstrip()
            raise TokenExchangeError(f"Token exchange failed: {sanitize_text(message)}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise TokenExchangeError("Token exchange failed: response was not valid JSON") from e
        if not isinstance(payload, dict):
            raise TokenExchangeError("Token exchange failed: unexpected response shape")
        self._log.debug("token response: %s", sanitize_obj(payload))

        token_response = TokenResponse.from_payload(payload)
        if not token_response.access_token or not token_response.refresh_token:
            raise TokenExchangeError(
                f"Token exchange failed: response missing tokens (keys={sorted(payload.keys())})"
            )
        return token_response


__all__ = [
    "AuthorizationCode",
    "CookieJar",
    "CredentialsAccepted",
    "HeadlessLogin",
    "LoginPage",
    "LoginSession",
    "LoginStage",
    "parse_login_page",
]
