"""Request parameters for token acquisition and their cache fingerprint.

A RequestParameters value holds everything that identifies a token request:
resource or scopes, tenant, client app, protocol version, grant type,
credential material and auxiliary flow arguments. Two field-wise equal
values always produce the same fingerprint, which is the cache key.

Usage:
    from aadtoken.auth.params import RequestParameters, fingerprint

    params = RequestParameters(
        resource="https://management.azure.com/",
        tenant="contoso",
        app="00000000-0000-0000-0000-000000000000",
        password="client-secret",
    )
    key = fingerprint(params)
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from aadtoken.core.errors import ConfigurationError
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_AAD_HOST = "https://login.microsoftonline.com/"
DEFAULT_REDIRECT_URI = "http://localhost:1410/"

# Scopes that Azure AD v2 accepts without a resource prefix
OPENID_SCOPES = frozenset({"openid", "profile", "email", "offline_access"})

# Tenant names that must not get a domain suffix
SPECIAL_TENANTS = frozenset({"common", "organizations", "consumers"})

_GUID_RE = re.compile(
    r"^\{?[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\}?$",
    re.IGNORECASE,
)


class AuthType(StrEnum):
    """OAuth grant flows supported by the token manager."""

    AUTHORIZATION_CODE = "authorization_code"
    DEVICE_CODE = "device_code"
    CLIENT_CREDENTIALS = "client_credentials"
    RESOURCE_OWNER = "resource_owner"
    ON_BEHALF_OF = "on_behalf_of"
    MANAGED_IDENTITY = "managed_identity"


def is_guid(value: str) -> bool:
    """Return True if value looks like a GUID, with or without braces."""
    return bool(_GUID_RE.match(value.strip()))


def normalize_tenant(tenant: str) -> str:
    """Normalize a tenant identifier.

    GUIDs and the special tenants (common, organizations, consumers) are kept
    as-is. A bare name without a dot gets the '.onmicrosoft.com' suffix.

    Examples:
        >>> normalize_tenant("Contoso")
        'contoso.onmicrosoft.com'
        >>> normalize_tenant("contoso.com")
        'contoso.com'
    """
    tenant = tenant.strip().lower()
    if not tenant:
        raise ConfigurationError("Tenant cannot be empty", fields=("tenant",))
    if is_guid(tenant):
        return tenant.strip("{}")
    if tenant in SPECIAL_TENANTS or "." in tenant:
        return tenant
    return f"{tenant}.onmicrosoft.com"


def normalize_scope(scope: str) -> str:
    """Normalize a single v2 scope.

    URL scopes without a path get '/.default' appended and a warning is
    logged. OpenID scopes, GUIDs and short scope names pass through.
    """
    scope = scope.strip()
    if scope in OPENID_SCOPES or is_guid(scope) or "://" not in scope:
        return scope

    parts = urlsplit(scope)
    if parts.path in ("", "/"):
        normalized = urlunsplit((parts.scheme, parts.netloc, "/.default", "", ""))
        logger.warning(
            "Scope lacks a path, appending /.default",
            scope=scope,
            normalized=normalized,
        )
        return normalized
    return scope


def normalize_scopes(scopes: tuple[str, ...]) -> tuple[str, ...]:
    """Normalize v2 scopes, dropping duplicates while keeping order."""
    return tuple(dict.fromkeys(normalize_scope(s) for s in scopes if s.strip()))


def _as_args(value: Any) -> tuple[tuple[str, str], ...]:
    """Convert a dict or pair sequence of extra args into a sorted tuple."""
    if not value:
        return ()
    items = value.items() if isinstance(value, dict) else value
    return tuple(sorted((str(k), str(v)) for k, v in items))


@dataclass(frozen=True, slots=True)
class RequestParameters:
    """Immutable description of a token request.

    Attributes:
        resource: v1 resource (URL or GUID) or tuple of v2 scopes
        tenant: Azure AD tenant (name, domain or GUID)
        app: Application (client) ID; optional for managed identity
        version: Azure AD protocol version, 1 or 2
        auth_type: Grant flow, or None to let the flow selector decide
        username: User principal name for resource_owner
        password: User password (resource_owner) or client secret
        certificate: Path to a PEM or PFX file holding the app's certificate
        certificate_password: Passphrase for the certificate's private key
        on_behalf_of: Prior access token to exchange (on_behalf_of flow)
        redirect_uri: Redirect URI for authorization_code
        aad_host: Authority host, for national clouds
        authorize_args: Extra query args for the authorize endpoint
        token_args: Extra body args for the token endpoint
    """

    resource: str | tuple[str, ...]
    tenant: str = "common"
    app: str | None = None
    version: int = 1
    auth_type: AuthType | None = None
    username: str | None = None
    password: str | None = None
    certificate: str | None = None
    certificate_password: str | None = None
    on_behalf_of: str | None = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    aad_host: str = DEFAULT_AAD_HOST
    authorize_args: tuple[tuple[str, str], ...] = ()
    token_args: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if self.version not in (1, 2):
            raise ConfigurationError(
                f"Invalid protocol version {self.version!r}: must be 1 or 2",
                fields=("version",),
            )

        resource = self.resource
        if self.version == 1:
            if not isinstance(resource, str):
                raise ConfigurationError(
                    "Protocol v1 takes a single resource string, not a list of scopes. "
                    "Use version=2 for scopes.",
                    fields=("resource", "version"),
                )
        elif isinstance(resource, str):
            resource = tuple(resource.split())
        else:
            resource = tuple(resource)
        if not resource:
            raise ConfigurationError("A resource or scope is required", fields=("resource",))
        object.__setattr__(self, "resource", resource)

        if self.auth_type is not None:
            object.__setattr__(self, "auth_type", AuthType(self.auth_type))
        object.__setattr__(self, "authorize_args", _as_args(self.authorize_args))
        object.__setattr__(self, "token_args", _as_args(self.token_args))
        if not self.aad_host.endswith("/"):
            object.__setattr__(self, "aad_host", self.aad_host + "/")

    @property
    def scopes(self) -> tuple[str, ...]:
        """v2 scopes (empty for v1)."""
        return self.resource if isinstance(self.resource, tuple) else ()

    @property
    def client_secret(self) -> str | None:
        """Password doubles as the client secret in every flow but resource_owner."""
        if self.auth_type == AuthType.RESOURCE_OWNER:
            return None
        return self.password

    def with_resource(self, resource: str | tuple[str, ...] | list[str]) -> RequestParameters:
        """Return a copy targeting a different resource or scope set."""
        if self.version == 2:
            if isinstance(resource, str):
                resource = tuple(resource.split())
            resource = normalize_scopes(tuple(resource))
        return dataclasses.replace(self, resource=resource)

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON representation, used for fingerprinting and the cache."""
        return {
            "resource": list(self.resource) if isinstance(self.resource, tuple) else self.resource,
            "tenant": self.tenant,
            "app": self.app,
            "version": self.version,
            "auth_type": self.auth_type.value if self.auth_type else None,
            "username": self.username,
            "password": self.password,
            "certificate": self.certificate,
            "certificate_password": self.certificate_password,
            "on_behalf_of": self.on_behalf_of,
            "redirect_uri": self.redirect_uri,
            "aad_host": self.aad_host,
            "authorize_args": [list(pair) for pair in self.authorize_args],
            "token_args": [list(pair) for pair in self.token_args],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestParameters:
        """Rebuild parameters from to_dict() output. Unknown keys are ignored."""
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if isinstance(kwargs.get("resource"), list):
            kwargs["resource"] = tuple(kwargs["resource"])
        return cls(**kwargs)


def normalize_params(params: RequestParameters) -> RequestParameters:
    """Normalize tenant and v2 scopes.

    Auth type resolution is left to the flow selector.
    """
    changes: dict[str, Any] = {"tenant": normalize_tenant(params.tenant)}
    if params.version == 2:
        changes["resource"] = normalize_scopes(params.scopes)
    return dataclasses.replace(params, **changes)


def fingerprint(params: RequestParameters) -> str:
    """Compute the cache key for a parameter set.

    SHA-256 over a canonical JSON rendering of every field, secrets included,
    since a cached token is specific to the credential that obtained it.

    Returns:
        64-character lowercase hex digest
    """
    canonical = json.dumps(params.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
