"""Tests for the redirect listener and authorization code capture."""

import socket
import threading
import time
from collections.abc import Generator

import pytest
import requests

from aadtoken.auth.redirect import (
    capture_redirect_code,
    listener_address,
    redirect_listener,
)
from aadtoken.core.errors import (
    AuthTimeoutError,
    ConfigurationError,
    FlowCancelledError,
    ProviderError,
)


@pytest.fixture
def redirect_uri() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"http://127.0.0.1:{port}/callback"


def _visit(url: str) -> None:
    threading.Thread(target=requests.get, args=(url,), kwargs={"timeout": 5}, daemon=True).start()


class TestListenerAddress:
    """Tests for listener_address()."""

    def test_localhost(self) -> None:
        assert listener_address("http://localhost:1410/") == ("localhost", 1410, "/")

    def test_default_port_and_path(self) -> None:
        assert listener_address("http://127.0.0.1") == ("127.0.0.1", 80, "/")

    @pytest.mark.parametrize(
        "uri",
        ["https://localhost:1410/", "http://myapp.example.com/callback", "urn:ietf:wg:oauth:2.0:oob"],
    )
    def test_rejects_non_local_uris(self, uri: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            listener_address(uri)
        assert exc_info.value.fields == ("redirect_uri",)


class TestCaptureRedirectCode:
    """Tests for capture_redirect_code()."""

    def test_hosted_code_returned_without_listening(self) -> None:
        code = capture_redirect_code("https://myapp.example.com/callback", auth_code="from-host")
        assert code == "from-host"

    def test_captures_code(self, redirect_uri: str) -> None:
        code = capture_redirect_code(
            redirect_uri,
            timeout=5,
            on_listening=lambda: _visit(f"{redirect_uri}?code=abc&state=s1"),
            expected_state="s1",
        )
        assert code == "abc"

    def test_ignores_other_paths(self, redirect_uri: str) -> None:
        base = redirect_uri.rsplit("/", 1)[0]

        def visit_twice() -> None:
            assert requests.get(f"{base}/favicon.ico", timeout=5).status_code == 404
            requests.get(f"{redirect_uri}?code=abc", timeout=5)

        def on_listening() -> None:
            threading.Thread(target=visit_twice, daemon=True).start()

        assert capture_redirect_code(redirect_uri, timeout=5, on_listening=on_listening) == "abc"

    def test_state_mismatch(self, redirect_uri: str) -> None:
        with pytest.raises(ProviderError) as exc_info:
            capture_redirect_code(
                redirect_uri,
                timeout=5,
                on_listening=lambda: _visit(f"{redirect_uri}?code=abc&state=forged"),
                expected_state="s1",
            )
        assert exc_info.value.error_code == "state_mismatch"

    def test_timeout_closes_listener(self, redirect_uri: str) -> None:
        with pytest.raises(AuthTimeoutError, match="No authorization redirect"):
            capture_redirect_code(redirect_uri, timeout=0.2)

        with redirect_listener(redirect_uri) as server:
            assert server.result is None

    def test_port_in_use(self, redirect_uri: str) -> None:
        with redirect_listener(redirect_uri):
            with pytest.raises(ConfigurationError, match="Cannot bind"):
                with redirect_listener(redirect_uri):
                    pass


class TestSilentConnections:
    """A client that connects but never sends a request must not stall the wait."""

    @pytest.fixture
    def silent_sockets(self) -> Generator[list[socket.socket], None, None]:
        sockets: list[socket.socket] = []
        yield sockets
        for s in sockets:
            s.close()

    def _connect_silently(self, redirect_uri: str, sockets: list[socket.socket]) -> None:
        host, port, _ = listener_address(redirect_uri)
        sockets.append(socket.create_connection((host, port), timeout=5))

    def test_timeout_still_raised(self, redirect_uri: str, silent_sockets: list[socket.socket]) -> None:
        started = time.monotonic()
        with pytest.raises(AuthTimeoutError):
            capture_redirect_code(
                redirect_uri,
                timeout=1.0,
                on_listening=lambda: self._connect_silently(redirect_uri, silent_sockets),
            )
        assert time.monotonic() - started < 3.0

    def test_cancellation_still_noticed(
        self, redirect_uri: str, silent_sockets: list[socket.socket]
    ) -> None:
        cancel = threading.Event()

        def on_listening() -> None:
            self._connect_silently(redirect_uri, silent_sockets)
            threading.Timer(0.2, cancel.set).start()

        started = time.monotonic()
        with pytest.raises(FlowCancelledError):
            capture_redirect_code(redirect_uri, timeout=30, cancel_event=cancel, on_listening=on_listening)
        assert time.monotonic() - started < 3.0

    def test_code_captured_after_silent_connection(
        self, redirect_uri: str, silent_sockets: list[socket.socket]
    ) -> None:
        def on_listening() -> None:
            self._connect_silently(redirect_uri, silent_sockets)
            _visit(f"{redirect_uri}?code=abc")

        assert capture_redirect_code(redirect_uri, timeout=5, on_listening=on_listening) == "abc"
