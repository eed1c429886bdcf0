"""HTTP transport for Azure AD token, devicecode and metadata endpoints.

Wraps a requests.Session and turns responses into either a JSON dict or a
typed exception:
- Provider error responses (JSON with 'error') -> ProviderError
- Connection failures and timeouts -> NetworkError

Nothing here retries. Transient failures are the caller's decision, and
provider errors with polling semantics (authorization_pending) are handled
by the device code driver.

Usage:
    from aadtoken.auth.transport import TokenEndpointClient

    client = TokenEndpointClient(timeout=30)
    body = client.post_form(url, {"grant_type": "client_credentials", ...})
"""

from typing import Any

import requests

from aadtoken.core.errors import NetworkError, ProviderError
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Actionable hints for common AADSTS codes, keyed by the code prefix
AADSTS_HINTS = {
    "AADSTS7000218": (
        "Public client flows are disabled for this app. In Azure Portal: App registrations "
        "-> Your app -> Authentication -> Advanced settings -> 'Allow public client flows'."
    ),
    "AADSTS50126": "The username or password is incorrect.",
    "AADSTS700016": "The application was not found in the tenant. Check the app (client) ID and tenant.",
    "AADSTS7000215": "The client secret is invalid. Check it has not expired.",
    "AADSTS65001": "The user or administrator has not consented to use the application.",
    "AADSTS50076": "Multi-factor authentication is required; use an interactive flow.",
    "AADSTS50011": "The redirect URI does not match the ones registered for the app.",
    "AADSTS70008": "The authorization code or refresh token has expired. Sign in again.",
}


def _hint_for(description: str) -> str | None:
    for code, hint in AADSTS_HINTS.items():
        if code in description:
            return hint
    return None


class TokenEndpointClient:
    """Thin requests-based client for Azure AD endpoints.

    Attributes:
        timeout: Per-request timeout in seconds
        session: requests.Session used for connection pooling
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()

    def post_form(self, url: str, data: dict[str, str]) -> dict[str, Any]:
        """POST form-encoded data and return the decoded JSON body.

        Raises:
            ProviderError: If the endpoint returned an OAuth error
            NetworkError: If the endpoint could not be reached
        """
        logger.debug("POST to Azure AD endpoint", url=url, grant_type=data.get("grant_type"))
        try:
            response = self.session.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(
                f"Could not reach Azure AD at {url}: {e}. Check your network connection."
            ) from e
        return self._decode(response, url)

    def get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """GET a JSON document (used for the managed identity endpoint).

        Raises:
            ProviderError: If the endpoint returned an error
            NetworkError: If the endpoint could not be reached
        """
        try:
            response = self.session.get(
                url,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Could not reach {url}: {e}") from e
        return self._decode(response, url)

    def _decode(self, response: requests.Response, url: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.ok and isinstance(body, dict):
            return body

        if not isinstance(body, dict):
            raise ProviderError(
                f"Unexpected response from {url} (HTTP {response.status_code}): "
                f"{(response.text or '')[:200]}",
                error_code="invalid_response",
                status_code=response.status_code,
            )

        error = body.get("error")
        # Managed identity endpoints nest the error object
        if isinstance(error, dict):
            description = error.get("message", "")
            error = error.get("code", "unknown_error")
        else:
            description = body.get("error_description", "")
            error = error or "unknown_error"

        logger.debug(
            "Azure AD returned an error",
            url=url,
            status_code=response.status_code,
            error=error,
            error_codes=body.get("error_codes"),
        )

        message = f"Azure AD returned '{error}'"
        if description:
            message += f": {description.splitlines()[0]}"
        hint = _hint_for(description)
        if hint:
            message += f"\n{hint}"

        raise ProviderError(
            message,
            error_code=error,
            description=description or None,
            status_code=response.status_code,
            error_codes=body.get("error_codes"),
            correlation_id=body.get("correlation_id"),
        )
