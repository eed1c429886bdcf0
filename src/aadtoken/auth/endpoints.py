"""Azure AD endpoint URLs and authorization URI construction.

Protocol v1 endpoints live under '{host}/{tenant}/oauth2/' and take a
'resource'; v2 endpoints live under '{host}/{tenant}/oauth2/v2.0/' and take a
space-separated 'scope'.

build_authorization_uri() is a pure function with no dependency on the rest
of the package, so a hosting web app can redirect the user itself and later
hand the captured code back to the token manager.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import urlencode

from aadtoken.auth.params import (
    DEFAULT_AAD_HOST,
    DEFAULT_REDIRECT_URI,
    AuthType,
    RequestParameters,
    normalize_scopes,
    normalize_tenant,
)

# Flows acting for a signed-in user; these ask for ID and refresh tokens under v2
USER_FLOWS = frozenset(
    {
        AuthType.AUTHORIZATION_CODE,
        AuthType.DEVICE_CODE,
        AuthType.RESOURCE_OWNER,
        AuthType.ON_BEHALF_OF,
    }
)
USER_EXTRA_SCOPES = ("openid", "offline_access")


def _base_url(aad_host: str, tenant: str, version: int) -> str:
    host = aad_host if aad_host.endswith("/") else aad_host + "/"
    path = "oauth2/v2.0" if version == 2 else "oauth2"
    return f"{host}{tenant}/{path}"


def token_endpoint(params: RequestParameters) -> str:
    return f"{_base_url(params.aad_host, params.tenant, params.version)}/token"


def authorize_endpoint(params: RequestParameters) -> str:
    return f"{_base_url(params.aad_host, params.tenant, params.version)}/authorize"


def devicecode_endpoint(params: RequestParameters) -> str:
    return f"{_base_url(params.aad_host, params.tenant, params.version)}/devicecode"


def request_scope(params: RequestParameters) -> str:
    """Scope string sent to v2 endpoints.

    User flows also ask for 'openid offline_access' so that Azure AD returns
    an ID token and a refresh token. These extras are added per request and
    are not part of the parameters' fingerprint.
    """
    scopes = list(params.scopes)
    if params.auth_type in USER_FLOWS:
        scopes.extend(s for s in USER_EXTRA_SCOPES if s not in scopes)
    return " ".join(scopes)


def resource_fields(params: RequestParameters) -> dict[str, str]:
    """The 'resource' (v1) or 'scope' (v2) field for a request body or query."""
    if params.version == 2:
        return {"scope": request_scope(params)}
    return {"resource": str(params.resource)}


def build_authorization_uri(
    resource: str | list[str] | tuple[str, ...],
    tenant: str,
    app: str,
    redirect_uri: str = DEFAULT_REDIRECT_URI,
    version: int = 1,
    aad_host: str = DEFAULT_AAD_HOST,
    extra_args: Mapping[str, str] | None = None,
) -> str:
    """Build the URI the user's browser is sent to for authorization_code.

    Args:
        resource: v1 resource, or v2 scope(s)
        tenant: Tenant name, domain or GUID
        app: Application (client) ID
        redirect_uri: Where Azure AD sends the browser back to with ?code=...
        version: Protocol version, 1 or 2
        aad_host: Authority host
        extra_args: Additional query args (state, prompt, login_hint,
            code_challenge, ...)

    Returns:
        The fully-formed authorize endpoint URI
    """
    if version == 2:
        scopes = (resource,) if isinstance(resource, str) else tuple(resource)
        scopes = normalize_scopes(tuple(s for scope in scopes for s in scope.split()))
        target = {"scope": " ".join(dict.fromkeys(scopes + USER_EXTRA_SCOPES))}
    else:
        target = {"resource": str(resource)}

    query = {
        "client_id": app,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        **target,
        **dict(extra_args or {}),
    }
    base = _base_url(aad_host, normalize_tenant(tenant), version)
    return f"{base}/authorize?{urlencode(query)}"


def authorization_uri_for(params: RequestParameters, **extra_args: str) -> str:
    """build_authorization_uri() driven by a RequestParameters value."""
    return build_authorization_uri(
        resource=params.resource,
        tenant=params.tenant,
        app=params.app or "",
        redirect_uri=params.redirect_uri,
        version=params.version,
        aad_host=params.aad_host,
        extra_args={**dict(params.authorize_args), **extra_args},
    )
