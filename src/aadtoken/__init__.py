"""aadtoken: acquire, cache and refresh Azure Active Directory tokens."""

from aadtoken.auth import (
    AuthType,
    RequestParameters,
    TokenCacheStore,
    TokenManager,
    TokenRecord,
    build_authorization_uri,
    get_token,
)

__version__ = "0.1.0"

__all__ = [
    "AuthType",
    "RequestParameters",
    "TokenCacheStore",
    "TokenManager",
    "TokenRecord",
    "build_authorization_uri",
    "get_token",
]
