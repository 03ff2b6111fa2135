"""
Authentication for Watts Home.

Headless OAuth/PKCE login against the identity provider, durable token
storage and refresh with single-flight coalescing.
"""

from .login_flow import HeadlessLogin, LoginStage
from .models import StoredTokens
from .pkce import generate_pkce
from .token_manager import TokenManager
from .token_store import TokenStore

__all__ = ["HeadlessLogin", "LoginStage", "StoredTokens", "TokenManager", "TokenStore", "generate_pkce"]
