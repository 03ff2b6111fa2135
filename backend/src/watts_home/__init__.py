"""
Top-level package for the Watts Home client.

Provides headless Azure AD B2C login (PKCE), token lifecycle management and a
resilient client for the Watts Home resource API.
"""

__all__: list[str] = []
