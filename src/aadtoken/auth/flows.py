"""Grant flow drivers: one per supported OAuth grant.

Each driver takes normalized RequestParameters and a FlowContext and returns
a fresh TokenRecord, or raises a typed error. The set of drivers is closed
and dispatched by AuthType through acquire_with_flow(); there is no driver
base class.

Single-request drivers (client_credentials, resource_owner, on_behalf_of,
managed_identity) go Idle -> Requesting -> Issued | Failed.

The interactive drivers are small state machines:
- AuthorizationCodeFlow: Idle -> AwaitingAuthorization -> AwaitingRedirect
  -> ExchangingCode -> Issued | Failed. A pre-captured code (hosted mode)
  starts at ExchangingCode.
- DeviceCodeFlow: Idle -> Requesting -> Polling -> Issued | Failed | Expired.
  Polls at the provider's interval until success, failure, cancellation or
  device code expiry.

Usage:
    from aadtoken.auth.flows import FlowContext, acquire_with_flow

    context = FlowContext(client=TokenEndpointClient())
    record = acquire_with_flow(params, context)
"""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import os
import secrets
import threading
import time
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from rich.console import Console
from rich.panel import Panel

from aadtoken.auth.credentials import client_credential_fields
from aadtoken.auth.endpoints import (
    authorization_uri_for,
    devicecode_endpoint,
    resource_fields,
    token_endpoint,
)
from aadtoken.auth.params import AuthType, RequestParameters
from aadtoken.auth.record import TokenRecord
from aadtoken.auth.redirect import DEFAULT_REDIRECT_TIMEOUT_SECONDS, capture_redirect_code
from aadtoken.auth.transport import TokenEndpointClient
from aadtoken.core.errors import (
    AadTokenError,
    AuthTimeoutError,
    ConfigurationError,
    FlowCancelledError,
    ManagedIdentityUnavailableError,
    NetworkError,
    ProviderError,
)
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)
console = Console(stderr=True)

# Managed identity endpoints
IMDS_ENDPOINT = "http://169.254.169.254/metadata/identity/oauth2/token"
IMDS_API_VERSION = "2018-02-01"
APP_SERVICE_API_VERSION = "2019-08-01"
MANAGED_IDENTITY_TIMEOUT_SECONDS = 5.0

# Device code polling
DEFAULT_POLL_INTERVAL_SECONDS = 5
SLOW_DOWN_INCREMENT_SECONDS = 5
DEVICE_CODE_GRANT_V2 = "urn:ietf:params:oauth:grant-type:device_code"

OBO_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


class FlowState(StrEnum):
    """States of the grant flow state machines."""

    IDLE = "idle"
    REQUESTING = "requesting"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING_CODE = "exchanging_code"
    POLLING = "polling"
    ISSUED = "issued"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class DeviceCodeInfo:
    """Device code credentials returned by the devicecode endpoint.

    Attributes:
        device_code: Code the client polls with (never shown to the user)
        user_code: Short code the user types in
        verification_uri: Where the user goes to enter the code
        interval: Minimum seconds between polls
        expires_in: Lifetime of the device code in seconds
        message: Ready-made instruction text from Azure AD
        requested_at: Clock reading when the code was issued; None when the
            host obtained the code itself, in which case the lifetime counts
            from the start of polling
    """

    device_code: str
    user_code: str
    verification_uri: str
    interval: int = DEFAULT_POLL_INTERVAL_SECONDS
    expires_in: int = 900
    message: str | None = None
    requested_at: float | None = None

    @classmethod
    def from_response(cls, body: dict[str, Any], requested_at: float) -> DeviceCodeInfo:
        return cls(
            device_code=body["device_code"],
            user_code=body["user_code"],
            # v1 says verification_url, v2 verification_uri
            verification_uri=body.get("verification_uri") or body.get("verification_url", ""),
            interval=int(body.get("interval") or DEFAULT_POLL_INTERVAL_SECONDS),
            expires_in=int(body.get("expires_in") or 900),
            message=body.get("message"),
            requested_at=requested_at,
        )


def display_device_code(info: DeviceCodeInfo) -> None:
    """Show the device code sign-in instructions on stderr."""
    panel_content = (
        f"To sign in, open a browser and go to:\n\n"
        f"  [bold blue]{info.verification_uri}[/bold blue]\n\n"
        f"Enter this code: [bold green]{info.user_code}[/bold green]\n\n"
        f"Waiting for authentication..."
    )
    console.print()
    console.print(Panel(panel_content, title="Azure Active Directory sign-in", border_style="bright_blue"))
    console.print()


def _open_browser(uri: str) -> None:
    console.print(f"Opening your browser to sign in. If it does not open, visit:\n{uri}")
    webbrowser.open(uri)


@dataclass
class FlowContext:
    """Collaborators and limits shared by all grant flow drivers.

    Attributes:
        client: Transport for the Azure AD endpoints
        cancel_event: Set by the caller to abandon an interactive flow
        redirect_timeout: Seconds to wait for the authorization redirect
        open_browser: Called with the authorization URI in standalone mode
        show_device_code: Called with the device code instructions
        clock: Monotonic clock used for device code expiry
        managed_identity_endpoint: IMDS token endpoint
        managed_identity_timeout: Connect/read timeout for the metadata endpoint
    """

    client: TokenEndpointClient = field(default_factory=TokenEndpointClient)
    cancel_event: threading.Event | None = None
    redirect_timeout: float = DEFAULT_REDIRECT_TIMEOUT_SECONDS
    open_browser: Callable[[str], Any] = _open_browser
    show_device_code: Callable[[DeviceCodeInfo], None] = display_device_code
    clock: Callable[[], float] = time.monotonic
    managed_identity_endpoint: str = IMDS_ENDPOINT
    managed_identity_timeout: float = MANAGED_IDENTITY_TIMEOUT_SECONDS


def _require(params: RequestParameters, *names: str) -> None:
    missing = tuple(n for n in names if not getattr(params, n))
    if missing:
        raise ConfigurationError(
            f"The {params.auth_type} flow requires: {', '.join(missing)}",
            fields=missing,
        )


def _token_body(params: RequestParameters, grant_type: str, **fields: str) -> dict[str, str]:
    """Common token endpoint body: grant, client id, resource/scope, extra args."""
    body = {"grant_type": grant_type, "client_id": params.app or ""}
    body.update(resource_fields(params))
    body.update(fields)
    body.update(dict(params.token_args))
    return body


def _request_token(params: RequestParameters, context: FlowContext, body: dict[str, str]) -> TokenRecord:
    response = context.client.post_form(token_endpoint(params), body)
    return TokenRecord.from_response(response, params)


# ---------------------------------------------------------------------------
# Single-request drivers
# ---------------------------------------------------------------------------


def acquire_client_credentials(params: RequestParameters, context: FlowContext) -> TokenRecord:
    """Client credentials grant: the app authenticates as itself."""
    _require(params, "app")
    endpoint = token_endpoint(params)
    creds = client_credential_fields(params, endpoint)
    if not creds:
        raise ConfigurationError(
            "The client_credentials flow needs a client secret (password) or a certificate",
            fields=("password", "certificate"),
        )
    return _request_token(params, context, _token_body(params, "client_credentials", **creds))


def acquire_resource_owner(params: RequestParameters, context: FlowContext) -> TokenRecord:
    """Resource owner password grant: username and password sent directly."""
    _require(params, "app", "username", "password")
    body = _token_body(
        params,
        "password",
        username=params.username or "",
        password=params.password or "",
    )
    return _request_token(params, context, body)


def acquire_on_behalf_of(params: RequestParameters, context: FlowContext) -> TokenRecord:
    """On-behalf-of grant: exchange a user's token presented to this app."""
    _require(params, "app", "on_behalf_of")
    endpoint = token_endpoint(params)
    creds = client_credential_fields(params, endpoint)
    if not creds:
        raise ConfigurationError(
            "The on_behalf_of flow needs the middle-tier app's client secret (password) "
            "or certificate",
            fields=("password", "certificate"),
        )
    body = _token_body(
        params,
        OBO_GRANT,
        assertion=params.on_behalf_of or "",
        requested_token_use="on_behalf_of",
        **creds,
    )
    return _request_token(params, context, body)


def managed_identity_resource(params: RequestParameters) -> str:
    """Resource URI for the metadata endpoint, which only speaks v1."""
    if isinstance(params.resource, str):
        return params.resource
    scope = params.resource[0]
    return scope.removesuffix("/.default")


def acquire_managed_identity(params: RequestParameters, context: FlowContext) -> TokenRecord:
    """Managed identity: ask the host's local metadata endpoint for a token.

    Uses the App Service endpoint when IDENTITY_ENDPOINT/IDENTITY_HEADER are
    set, otherwise the VM instance metadata service. params.app selects a
    user-assigned identity.

    Raises:
        ManagedIdentityUnavailableError: If the endpoint cannot be reached
    """
    query = {"resource": managed_identity_resource(params)}
    if params.app:
        query["client_id"] = params.app

    identity_endpoint = os.environ.get("IDENTITY_ENDPOINT")
    identity_header = os.environ.get("IDENTITY_HEADER")
    if identity_endpoint and identity_header:
        url = identity_endpoint
        headers = {"X-IDENTITY-HEADER": identity_header}
        query["api-version"] = APP_SERVICE_API_VERSION
    else:
        url = context.managed_identity_endpoint
        headers = {"Metadata": "true"}
        query["api-version"] = IMDS_API_VERSION

    try:
        response = context.client.get_json(
            url, params=query, headers=headers, timeout=context.managed_identity_timeout
        )
    except NetworkError as e:
        raise ManagedIdentityUnavailableError(
            f"No managed identity endpoint reachable at {url}. Managed identity only works on "
            "Azure hosts with an identity assigned (VMs, App Service, Functions, Container Apps)."
        ) from e
    return TokenRecord.from_response(response, params)


# ---------------------------------------------------------------------------
# Authorization code
# ---------------------------------------------------------------------------


def generate_pkce() -> tuple[str, str]:
    """Generate a PKCE code_verifier and its S256 code_challenge."""
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class AuthorizationCodeFlow:
    """Authorization code grant with a local redirect listener or a pre-captured code.

    Attributes:
        state: Current FlowState
    """

    def __init__(self, params: RequestParameters, context: FlowContext):
        _require(params, "app")
        self.params = params
        self.context = context
        self.state = FlowState.IDLE

    def _transition(self, state: FlowState) -> None:
        logger.debug("Authorization code flow state", previous=self.state.value, state=state.value)
        self.state = state

    def acquire(self, auth_code: str | None = None, code_verifier: str | None = None) -> TokenRecord:
        """Run the flow.

        Args:
            auth_code: Code captured by a hosting app; skips the browser steps
            code_verifier: PKCE verifier the hosting app used, if any
        """
        try:
            if auth_code is None:
                auth_code, code_verifier = self._authorize()
            self._transition(FlowState.EXCHANGING_CODE)
            record = self._exchange(auth_code, code_verifier)
        except AadTokenError:
            self._transition(FlowState.FAILED)
            raise
        self._transition(FlowState.ISSUED)
        return record

    def _authorize(self) -> tuple[str, str]:
        self._transition(FlowState.AWAITING_AUTHORIZATION)
        verifier, challenge = generate_pkce()
        expected_state = secrets.token_urlsafe(16)
        extra = {"state": expected_state, "code_challenge": challenge, "code_challenge_method": "S256"}
        if self.params.username:
            extra["login_hint"] = self.params.username
        uri = authorization_uri_for(self.params, **extra)

        self._transition(FlowState.AWAITING_REDIRECT)
        code = capture_redirect_code(
            self.params.redirect_uri,
            timeout=self.context.redirect_timeout,
            cancel_event=self.context.cancel_event,
            on_listening=lambda: self.context.open_browser(uri),
            expected_state=expected_state,
        )
        return code, verifier

    def _exchange(self, auth_code: str, code_verifier: str | None) -> TokenRecord:
        endpoint = token_endpoint(self.params)
        fields = {"code": auth_code, "redirect_uri": self.params.redirect_uri}
        if code_verifier:
            fields["code_verifier"] = code_verifier
        fields.update(client_credential_fields(self.params, endpoint))
        return _request_token(
            self.params, self.context, _token_body(self.params, "authorization_code", **fields)
        )


def acquire_authorization_code(
    params: RequestParameters,
    context: FlowContext,
    auth_code: str | None = None,
    code_verifier: str | None = None,
) -> TokenRecord:
    return AuthorizationCodeFlow(params, context).acquire(auth_code=auth_code, code_verifier=code_verifier)


# ---------------------------------------------------------------------------
# Device code
# ---------------------------------------------------------------------------


def request_device_code(params: RequestParameters, context: FlowContext) -> DeviceCodeInfo:
    """Ask the devicecode endpoint for a user code.

    Exposed separately so a host can show the code in its own UI and pass the
    result to the token manager as device_code.
    """
    _require(params, "app")
    body = {"client_id": params.app or ""}
    body.update(resource_fields(params))
    requested_at = context.clock()
    response = context.client.post_form(devicecode_endpoint(params), body)
    return DeviceCodeInfo.from_response(response, requested_at)


class DeviceCodeFlow:
    """Device code grant: the user signs in elsewhere while this client polls.

    Attributes:
        state: Current FlowState
        polls: Number of token endpoint polls made so far
    """

    def __init__(self, params: RequestParameters, context: FlowContext):
        _require(params, "app")
        self.params = params
        self.context = context
        self.state = FlowState.IDLE
        self.polls = 0
        self._cancel = context.cancel_event or threading.Event()

    def _transition(self, state: FlowState) -> None:
        logger.debug("Device code flow state", previous=self.state.value, state=state.value)
        self.state = state

    def acquire(self, device_code: DeviceCodeInfo | None = None) -> TokenRecord:
        """Run the flow.

        Args:
            device_code: Credentials from request_device_code() when the host
                already displayed the code; otherwise one is requested and shown
        """
        try:
            if device_code is None:
                self._transition(FlowState.REQUESTING)
                device_code = request_device_code(self.params, self.context)
                self.context.show_device_code(device_code)
            self._transition(FlowState.POLLING)
            record = self._poll(device_code)
        except AuthTimeoutError:
            self._transition(FlowState.EXPIRED)
            raise
        except AadTokenError:
            self._transition(FlowState.FAILED)
            raise
        self._transition(FlowState.ISSUED)
        return record

    def _poll_body(self, info: DeviceCodeInfo) -> dict[str, str]:
        if self.params.version == 2:
            return _token_body(self.params, DEVICE_CODE_GRANT_V2, device_code=info.device_code)
        return _token_body(self.params, "device_code", code=info.device_code)

    def _poll(self, info: DeviceCodeInfo) -> TokenRecord:
        clock = self.context.clock
        started = info.requested_at if info.requested_at is not None else clock()
        deadline = started + info.expires_in
        interval = max(info.interval, 1)
        endpoint = token_endpoint(self.params)
        body = self._poll_body(info)

        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                raise AuthTimeoutError(
                    "The device code expired before sign-in was completed. "
                    "Please try again and enter the code within the time limit."
                )
            if self._cancel.wait(min(interval, remaining)):
                raise FlowCancelledError("Device code sign-in was cancelled")
            if clock() >= deadline:
                continue

            self.polls += 1
            try:
                response = self.context.client.post_form(endpoint, body)
            except ProviderError as e:
                if e.error_code == "authorization_pending":
                    continue
                if e.error_code == "slow_down":
                    interval += SLOW_DOWN_INCREMENT_SECONDS
                    logger.debug("Azure AD asked to slow down polling", interval=interval)
                    continue
                if e.error_code in ("expired_token", "code_expired"):
                    raise AuthTimeoutError(
                        "The device code expired before sign-in was completed."
                    ) from e
                if e.error_code == "authorization_declined":
                    raise ProviderError(
                        "Sign-in was declined. Please try again and accept the permission request.",
                        error_code=e.error_code,
                        description=e.description,
                        status_code=e.status_code,
                    ) from e
                raise
            return TokenRecord.from_response(response, self.params)


def acquire_device_code(
    params: RequestParameters,
    context: FlowContext,
    device_code: DeviceCodeInfo | None = None,
) -> TokenRecord:
    return DeviceCodeFlow(params, context).acquire(device_code=device_code)


# ---------------------------------------------------------------------------
# Refresh and dispatch
# ---------------------------------------------------------------------------


def redeem_refresh_token(record: TokenRecord, context: FlowContext) -> TokenRecord:
    """Exchange record's refresh token for a new access token.

    The request targets record.params' resource/scope, so a record produced by
    with_scope() yields a token for the new resource. If Azure AD does not
    rotate the refresh token, the old one is carried over.

    Raises:
        ProviderError: If the refresh token was rejected (revoked, expired)
    """
    if not record.refresh_token:
        raise ConfigurationError("Token has no refresh token", fields=("refresh_token",))
    params = record.params
    endpoint = token_endpoint(params)
    body = _token_body(
        params,
        "refresh_token",
        refresh_token=record.refresh_token,
        **client_credential_fields(params, endpoint),
    )
    response = context.client.post_form(endpoint, body)
    refreshed = TokenRecord.from_response(response, params)
    if refreshed.refresh_token is None:
        refreshed = dataclasses.replace(
            refreshed,
            refresh_token=record.refresh_token,
            id_token=refreshed.id_token or record.id_token,
        )
    return refreshed


FLOW_DRIVERS: dict[AuthType, Callable[[RequestParameters, FlowContext], TokenRecord]] = {
    AuthType.CLIENT_CREDENTIALS: acquire_client_credentials,
    AuthType.RESOURCE_OWNER: acquire_resource_owner,
    AuthType.ON_BEHALF_OF: acquire_on_behalf_of,
    AuthType.MANAGED_IDENTITY: acquire_managed_identity,
    AuthType.AUTHORIZATION_CODE: acquire_authorization_code,
    AuthType.DEVICE_CODE: acquire_device_code,
}


def acquire_with_flow(
    params: RequestParameters,
    context: FlowContext,
    auth_code: str | None = None,
    device_code: DeviceCodeInfo | None = None,
    code_verifier: str | None = None,
) -> TokenRecord:
    """Run the driver for params.auth_type.

    Args:
        params: Normalized parameters with auth_type set
        context: Shared flow collaborators
        auth_code: Pre-captured authorization code (authorization_code only)
        code_verifier: PKCE verifier matching the code_challenge the host sent
        device_code: Pre-requested device code (device_code only)
    """
    if params.auth_type is None:
        raise ConfigurationError("auth_type must be resolved before dispatch", fields=("auth_type",))

    logger.debug("Running grant flow", auth_type=params.auth_type.value, version=params.version)
    if params.auth_type == AuthType.AUTHORIZATION_CODE:
        return acquire_authorization_code(
            params, context, auth_code=auth_code, code_verifier=code_verifier
        )
    if params.auth_type == AuthType.DEVICE_CODE:
        return acquire_device_code(params, context, device_code=device_code)
    return FLOW_DRIVERS[params.auth_type](params, context)
