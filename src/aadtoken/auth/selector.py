"""Grant flow selection from the credentials a caller supplied.

Priority order, first match wins:
1. on_behalf_of token supplied -> on_behalf_of
2. password or certificate, no username -> client_credentials
3. username and password -> resource_owner
4. a browser is available -> authorization_code
5. otherwise -> device_code

A certificate together with a username but no password is contradictory
and rejected. A username on its own falls through to the interactive flows,
where it is used as the sign-in hint.
"""

import functools
import os
import sys
import webbrowser

from aadtoken.auth.params import AuthType, RequestParameters
from aadtoken.core.errors import ConfigurationError
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)


@functools.cache
def detect_browser() -> bool:
    """Return True if an interactive browser can be launched on this host.

    Evaluated once per process.
    """
    if sys.platform.startswith("linux") and not (
        os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")
    ):
        available = False
    else:
        try:
            webbrowser.get()
            available = True
        except webbrowser.Error:
            available = False
    logger.debug("Browser capability detected", available=available)
    return available


def select_auth_type(params: RequestParameters, browser_available: bool) -> AuthType:
    """Deduce the grant flow for params.

    Args:
        params: Parameters whose auth_type is unset
        browser_available: Whether an interactive browser can be used

    Raises:
        ConfigurationError: If the supplied credentials are contradictory
    """
    if params.on_behalf_of:
        return AuthType.ON_BEHALF_OF
    if (params.password or params.certificate) and not params.username:
        return AuthType.CLIENT_CREDENTIALS
    if params.username and params.password:
        return AuthType.RESOURCE_OWNER
    if params.certificate:
        raise ConfigurationError(
            "Cannot choose an authentication flow: a certificate and a username were given "
            "without a password. Pass a password for resource_owner, or drop the username "
            "for client_credentials, or set auth_type explicitly.",
            fields=("certificate", "username", "password"),
        )
    if browser_available:
        return AuthType.AUTHORIZATION_CODE
    return AuthType.DEVICE_CODE
