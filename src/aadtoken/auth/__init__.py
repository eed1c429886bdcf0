"""Token acquisition and caching for Azure Active Directory.

Provides:
- RequestParameters and the fingerprint used as cache key
- TokenRecord, with clone() and with_scope() for cross-resource exchange
- TokenCacheStore, the on-disk cache
- TokenManager, which ties cache, refresh and grant flows together
- build_authorization_uri() and capture_redirect_code() for hosted sign-in

Usage:
    from aadtoken.auth import RequestParameters, TokenCacheStore, TokenManager
    from aadtoken.auth import default_cache_dir

    manager = TokenManager(TokenCacheStore(default_cache_dir()))
    record = manager.acquire(
        RequestParameters(
            resource=["https://graph.microsoft.com/User.Read"],
            tenant="contoso",
            app="00000000-0000-0000-0000-000000000000",
            version=2,
        )
    )
"""

from aadtoken.auth.cache import TokenCacheStore, default_cache_dir
from aadtoken.auth.claims import decode_jwt
from aadtoken.auth.endpoints import build_authorization_uri
from aadtoken.auth.flows import DeviceCodeInfo, FlowContext, FlowState
from aadtoken.auth.manager import TokenManager, get_token
from aadtoken.auth.params import AuthType, RequestParameters, fingerprint
from aadtoken.auth.record import TokenRecord, clone, with_scope
from aadtoken.auth.redirect import capture_redirect_code
from aadtoken.auth.selector import select_auth_type

__all__ = [
    "AuthType",
    "DeviceCodeInfo",
    "FlowContext",
    "FlowState",
    "RequestParameters",
    "TokenCacheStore",
    "TokenManager",
    "TokenRecord",
    "build_authorization_uri",
    "capture_redirect_code",
    "clone",
    "decode_jwt",
    "default_cache_dir",
    "fingerprint",
    "get_token",
    "select_auth_type",
    "with_scope",
]
