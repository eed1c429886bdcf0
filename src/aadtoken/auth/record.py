"""Token records: the immutable result of a successful token request.

A TokenRecord is created by a grant flow driver or a refresh and is never
mutated afterwards. Refreshing produces a new record with the same request
parameters (and therefore the same fingerprint). clone() and with_scope()
return independent copies; with_scope() followed by a refresh is how a
refresh token is exchanged for an access token to another resource.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from aadtoken.auth.claims import decode_jwt
from aadtoken.auth.params import RequestParameters, fingerprint

# Bumped when the serialized layout changes incompatibly
RECORD_FORMAT_VERSION = 1

# Lifetime assumed when the provider reports neither expires_on nor expires_in
DEFAULT_LIFETIME_SECONDS = 3600

# Response fields mapped onto TokenRecord attributes; everything else goes to extra
_CORE_RESPONSE_FIELDS = frozenset(
    {"access_token", "token_type", "refresh_token", "id_token", "expires_in", "expires_on"}
)


def _parse_epoch(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(float(value), tz=UTC)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """An issued token and the request that produced it.

    Attributes:
        access_token: Opaque access token string
        issued_at: When the token was received (UTC)
        expires_at: When the access token stops being valid (UTC)
        params: The RequestParameters used to obtain the token
        token_type: Token type reported by the provider, normally 'Bearer'
        refresh_token: Refresh token, if the flow returned one
        id_token: OpenID Connect ID token, if any
        extra: Remaining provider response fields (scope, ext_expires_in, ...)
    """

    access_token: str
    issued_at: datetime
    expires_at: datetime
    params: RequestParameters
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(
        cls,
        response: Mapping[str, Any],
        params: RequestParameters,
        issued_at: datetime | None = None,
    ) -> TokenRecord:
        """Build a record from a token endpoint JSON response.

        expires_at comes from 'expires_on' (v1 and managed identity) when
        present, otherwise from issued_at + 'expires_in'.
        """
        issued_at = issued_at or datetime.now(UTC)
        expires_at = _parse_epoch(response.get("expires_on"))
        if expires_at is None:
            try:
                lifetime = int(response.get("expires_in", DEFAULT_LIFETIME_SECONDS))
            except (TypeError, ValueError):
                lifetime = DEFAULT_LIFETIME_SECONDS
            expires_at = issued_at + timedelta(seconds=lifetime)

        return cls(
            access_token=response["access_token"],
            issued_at=issued_at,
            expires_at=expires_at,
            params=params,
            token_type=response.get("token_type") or "Bearer",
            refresh_token=response.get("refresh_token") or None,
            id_token=response.get("id_token") or None,
            extra={k: v for k, v in response.items() if k not in _CORE_RESPONSE_FIELDS},
        )

    @property
    def fingerprint(self) -> str:
        """Cache key derived from the originating request parameters."""
        return fingerprint(self.params)

    @property
    def version(self) -> int:
        """Azure AD protocol version the token was requested with."""
        return self.params.version

    @property
    def can_refresh(self) -> bool:
        return self.refresh_token is not None

    def is_expired(self, now: datetime | None = None, margin_seconds: int = 0) -> bool:
        """Return True if the access token is expired (or within margin of it)."""
        now = now or datetime.now(UTC)
        return now + timedelta(seconds=margin_seconds) >= self.expires_at

    def claims(self, which: str = "access") -> dict[str, Any]:
        """Decode the access or ID token payload (no signature check)."""
        token = self.id_token if which == "id" else self.access_token
        if token is None:
            return {}
        return decode_jwt(token)["payload"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": RECORD_FORMAT_VERSION,
            "access_token": self.access_token,
            "token_type": self.token_type,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "params": self.params.to_dict(),
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokenRecord:
        """Rebuild a record from to_dict() output. Unknown keys are ignored.

        Raises:
            KeyError, TypeError, ValueError: If required fields are missing or malformed
        """
        return cls(
            access_token=data["access_token"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            params=RequestParameters.from_dict(data["params"]),
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            extra=dict(data.get("extra") or {}),
        )


def clone(record: TokenRecord) -> TokenRecord:
    """Return a copy sharing no mutable state with record."""
    return dataclasses.replace(record, extra=dict(record.extra))


def with_scope(record: TokenRecord, resource: str | tuple[str, ...] | list[str]) -> TokenRecord:
    """Return a copy of record whose resource (v1) or scopes (v2) are replaced.

    The copy keeps the refresh token, so refreshing it asks Azure AD for an
    access token to the new resource without reauthenticating. The copy has
    its own fingerprint; the original record and its cache entry are untouched.
    """
    return dataclasses.replace(
        record,
        params=record.params.with_resource(resource),
        extra=dict(record.extra),
    )
