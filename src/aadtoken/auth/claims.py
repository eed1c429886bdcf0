"""Helpers for inspecting JWTs issued by Azure AD.

Signatures are not verified: these helpers are for displaying and routing
on claims the caller already trusts (tokens it just received from the
token endpoint), not for validating tokens presented by third parties.
"""

from typing import Any

import jwt

from aadtoken.core.errors import AadTokenError


def decode_jwt(token: str) -> dict[str, Any]:
    """Decode a JWT into its header and payload without verifying it.

    Args:
        token: Compact-serialized JWT

    Returns:
        Dict with 'header' and 'payload' keys

    Raises:
        AadTokenError: If the string is not a JWT (e.g. an opaque MSA token)
    """
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
        )
    except jwt.PyJWTError as e:
        raise AadTokenError(f"Token is not a decodable JWT: {e}") from e
    return {"header": header, "payload": payload}


def token_identity(claims: dict[str, Any]) -> str | None:
    """Pick a display name for the principal in a decoded payload."""
    for key in ("preferred_username", "upn", "unique_name", "email", "appid", "azp"):
        value = claims.get(key)
        if value and isinstance(value, str):
            return value
    return None
