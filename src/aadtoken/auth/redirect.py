"""Capture of the authorization code from the OAuth redirect.

Standalone mode binds a one-shot HTTP listener on the redirect URI's
localhost port and waits for the browser to be sent back with
'?code=...' (or '?error=...'). The listener is always closed when the
wait ends, whether by success, timeout or cancellation.

Hosted mode skips the listener: the hosting web app extracts 'code' from its
own request and passes it in.

Usage:
    from aadtoken.auth.redirect import capture_redirect_code

    # Standalone: open the browser once the listener is up
    code = capture_redirect_code(
        "http://localhost:1410/",
        timeout=300,
        on_listening=lambda: webbrowser.open(auth_uri),
    )

    # Hosted: code already extracted from the request
    code = capture_redirect_code("https://myapp/callback", auth_code=request.args["code"])
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlsplit

from aadtoken.core.errors import (
    AuthTimeoutError,
    ConfigurationError,
    FlowCancelledError,
    ProviderError,
)
from aadtoken.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REDIRECT_TIMEOUT_SECONDS = 300.0

# Upper bound on a single blocking wait, so cancellation is noticed promptly
LISTENER_POLL_SECONDS = 0.5

# A connection that sends no request line within this many seconds is dropped
CONNECTION_IDLE_SECONDS = 1.0

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})

_SUCCESS_PAGE = (
    "<h2>Authentication complete</h2>"
    "<p>You can close this tab and return to the application.</p>"
)


@dataclass(frozen=True, slots=True)
class RedirectResult:
    """Query parameters captured from the redirect."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


class _RedirectServer(HTTPServer):
    """HTTPServer remembering the first redirect carrying a code or an error."""

    def __init__(self, address: tuple[str, int], expected_path: str):
        super().__init__(address, _RedirectHandler)
        self.expected_path = expected_path
        self.result: RedirectResult | None = None
        self.connection_timeout = CONNECTION_IDLE_SECONDS


class _RedirectHandler(BaseHTTPRequestHandler):
    server: _RedirectServer

    def setup(self) -> None:
        # Silent connections (browser preconnects) must not outlive the wait
        self.timeout = self.server.connection_timeout
        super().setup()

    def do_GET(self) -> None:  # noqa: N802
        parts = urlsplit(self.path)
        if parts.path.rstrip("/") != self.server.expected_path.rstrip("/"):
            self.send_response(404)
            self.end_headers()
            return

        query = parse_qs(parts.query)

        def first(key: str) -> str | None:
            values = query.get(key)
            return values[0] if values else None

        if "error" in query:
            self.server.result = RedirectResult(
                error=first("error"),
                error_description=first("error_description"),
                state=first("state"),
            )
            self._respond("<h2>Authentication failed</h2><p>You can close this tab.</p>")
        elif "code" in query:
            self.server.result = RedirectResult(code=first("code"), state=first("state"))
            self._respond(_SUCCESS_PAGE)
        else:
            self._respond("<h2>Unexpected request</h2><p>No authorization code received.</p>")

    def _respond(self, html: str) -> None:
        body = f"<html><body style='font-family:system-ui'>{html}</body></html>".encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("Redirect listener request", request=format % args)


def listener_address(redirect_uri: str) -> tuple[str, int, str]:
    """Split a redirect URI into (host, port, path) for the local listener.

    Raises:
        ConfigurationError: If the URI is not a plain-http localhost URI
    """
    parts = urlsplit(redirect_uri)
    host = parts.hostname or ""
    if parts.scheme != "http" or host not in LOCAL_HOSTS:
        raise ConfigurationError(
            f"Cannot listen on redirect URI {redirect_uri!r}: the built-in listener "
            "only serves http://localhost URIs. For other redirect URIs, capture the "
            "code in your web app and pass it as auth_code.",
            fields=("redirect_uri",),
        )
    return host, parts.port or 80, parts.path or "/"


@contextmanager
def redirect_listener(redirect_uri: str) -> Iterator[_RedirectServer]:
    """Bind the local listener for the duration of the with block."""
    host, port, path = listener_address(redirect_uri)
    try:
        server = _RedirectServer((host, port), path)
    except OSError as e:
        raise ConfigurationError(
            f"Cannot bind redirect listener on {host}:{port}: {e}. "
            "Another sign-in may be in progress on the same port.",
            fields=("redirect_uri",),
        ) from e

    logger.debug("Redirect listener started", host=host, port=port)
    try:
        yield server
    finally:
        server.server_close()
        logger.debug("Redirect listener closed", host=host, port=port)


def wait_for_redirect(
    server: _RedirectServer,
    timeout: float,
    cancel_event: threading.Event | None = None,
) -> RedirectResult:
    """Serve requests until one carries a code or error.

    Raises:
        AuthTimeoutError: If nothing arrives within timeout seconds
        FlowCancelledError: If cancel_event is set while waiting
    """
    deadline = time.monotonic() + timeout
    while server.result is None:
        if cancel_event is not None and cancel_event.is_set():
            raise FlowCancelledError("Sign-in was cancelled while waiting for the browser redirect")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AuthTimeoutError(
                f"No authorization redirect received within {timeout:g} seconds. "
                "Complete the sign-in in your browser, or use the device code flow."
            )
        server.timeout = min(LISTENER_POLL_SECONDS, remaining)
        server.connection_timeout = min(CONNECTION_IDLE_SECONDS, remaining)
        server.handle_request()
    return server.result


def capture_redirect_code(
    redirect_uri: str,
    auth_code: str | None = None,
    timeout: float = DEFAULT_REDIRECT_TIMEOUT_SECONDS,
    cancel_event: threading.Event | None = None,
    on_listening: Callable[[], None] | None = None,
    expected_state: str | None = None,
) -> str:
    """Obtain the authorization code for redirect_uri.

    Args:
        redirect_uri: The app's redirect URI
        auth_code: Code already extracted by a hosting app (skips the listener)
        timeout: Seconds to wait for the redirect
        cancel_event: Set to abandon the wait
        on_listening: Called once the listener is bound (e.g. to open the browser)
        expected_state: 'state' value the redirect must echo back

    Returns:
        The authorization code

    Raises:
        ProviderError: If the redirect carried an error or a mismatched state
        AuthTimeoutError, FlowCancelledError: See wait_for_redirect()
    """
    if auth_code:
        return auth_code

    with redirect_listener(redirect_uri) as server:
        if on_listening is not None:
            on_listening()
        result = wait_for_redirect(server, timeout, cancel_event)

    if result.error:
        raise ProviderError(
            f"Authorization failed: {result.error}"
            + (f": {result.error_description}" if result.error_description else ""),
            error_code=result.error,
            description=result.error_description,
        )
    if expected_state is not None and result.state != expected_state:
        raise ProviderError(
            "Authorization redirect carried an unexpected 'state' value; "
            "the response may not belong to this sign-in.",
            error_code="state_mismatch",
        )
    return result.code or ""
