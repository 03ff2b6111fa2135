"""
Watts Home URL, identity-provider and environment configuration.

Loads .env and exposes the fixed Azure AD B2C constants plus base URLs and
derived endpoint URLs. Base URLs can be overridden via environment variables
for environment switching (e.g. a local mock provider).

Environment variables:
  - WATTS_LOGIN_BASE_URL   (optional, default: https://login.watts.io)
  - WATTS_API_BASE_URL     (optional, default: https://home.watts.com/api)
  - WATTS_TOKEN_PATH       (optional; path to the durable token record)
  - WATTS_TIMEOUT_SECONDS  (optional, default: 15)
  - WATTS_LOG_LEVEL        (optional, default: INFO)
  - WATTS_EMAIL / WATTS_PASSWORD (used by the CLI `login` command)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

CLIENT_ID = "c832c38c-ce70-4ebc-83b6-b4548083ac90"
REDIRECT_URI = f"msal{CLIENT_ID}://auth"
SCOPE = "https://wattsb2cap02.onmicrosoft.com/wattsapiresi/manage offline_access openid profile"
TENANT = "wattsb2cap02.onmicrosoft.com"
POLICY = "B2C_1A_Residential_UnifiedSignUpOrSignIn"
API_VERSION = "2.0"

# Directory name a composing application (Homebridge) nests the record under.
PLUGIN_NAME = "homebridge-tekmar-wifi"

_DEFAULT_LOGIN_BASE = "https://login.watts.io"
_DEFAULT_API_BASE = "https://home.watts.com/api"
_DEFAULT_TIMEOUT_SECONDS = 15.0


def _dotenv_candidates() -> list[Path]:
    # Working directory first, then backend/ (backend/src/watts_home/config.py -> backend/).
    return [Path.cwd() / ".env", Path(__file__).resolve().parents[2] / ".env"]


def _load_dotenv(log: Optional[logging.LoggerAdapter] = None) -> Optional[Path]:
    """
    Load the first .env file found into the process environment.

    Variables already exported by the shell or CI win (override=False).
    Returns the file that was read, or None.
    """
    env_file = next((p for p in _dotenv_candidates() if p.is_file()), None)
    if env_file is None:
        return None
    if load_dotenv(env_file, override=False) and log is not None:
        log.debug("loaded .env from %s", env_file)
    return env_file


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Stripped value of `name`; `default` when unset or blank."""
    return (os.environ.get(name) or "").strip() or default


# Read .env at import time so the getters below see its values.
_load_dotenv()


def get_login_base_url() -> str:
    """Return the identity provider base URL."""
    return (_get_env("WATTS_LOGIN_BASE_URL", _DEFAULT_LOGIN_BASE) or _DEFAULT_LOGIN_BASE).rstrip("/")


def get_api_base_url() -> str:
    """Return the resource API base URL (e.g. for /User, /Device/{id})."""
    return (_get_env("WATTS_API_BASE_URL", _DEFAULT_API_BASE) or _DEFAULT_API_BASE).rstrip("/")


def _policy_base_url() -> str:
    return f"{get_login_base_url()}/tfp/{TENANT}/{POLICY}"


def get_authorize_url() -> str:
    """Return full OAuth authorize endpoint URL."""
    return f"{_policy_base_url()}/oauth2/v2.0/authorize"


def get_token_url() -> str:
    """Return full OAuth token endpoint URL (authorization_code and refresh_token grants)."""
    return f"{_policy_base_url()}/oauth2/v2.0/token"


def get_self_asserted_url() -> str:
    """Return the credential submission ("SelfAsserted") endpoint, without query string."""
    return f"{get_login_base_url()}/{TENANT}/{POLICY}/SelfAsserted"


def get_confirmed_url() -> str:
    """Return the sign-in confirmation endpoint that answers with the redirect."""
    return f"{_policy_base_url()}/api/CombinedSigninAndSignup/confirmed"


def get_timeout_seconds() -> float:
    """Return the per-request timeout budget in seconds."""
    raw = _get_env("WATTS_TIMEOUT_SECONDS")
    if raw is None:
        return _DEFAULT_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return _DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else _DEFAULT_TIMEOUT_SECONDS


def get_token_store_path(storage_dir: Optional[Path] = None) -> Path:
    """
    Return path to the durable token record.

    A composing application passes its storage directory, which nests the
    record under `<storage_dir>/homebridge-tekmar-wifi/tokens.json`.
    Otherwise WATTS_TOKEN_PATH is used if set.
    Default: ~/.watts-home/tokens.json
    """
    if storage_dir is not None:
        return Path(storage_dir).expanduser() / PLUGIN_NAME / "tokens.json"
    override = _get_env("WATTS_TOKEN_PATH")
    if override is not None:
        return Path(override).expanduser()
    return Path.home() / ".watts-home" / "tokens.json"
