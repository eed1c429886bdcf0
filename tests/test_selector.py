"""Tests for grant flow selection."""

from collections.abc import Generator

import pytest

from aadtoken.auth import selector
from aadtoken.auth.params import AuthType, RequestParameters
from aadtoken.auth.selector import detect_browser, select_auth_type
from aadtoken.core.errors import ConfigurationError

RESOURCE = "https://management.azure.com/"


def _params(**kwargs: str) -> RequestParameters:
    return RequestParameters(resource=RESOURCE, app="app-id", **kwargs)


class TestSelectAuthType:
    """Tests for select_auth_type() priority order."""

    def test_on_behalf_of_wins_over_everything(self) -> None:
        params = _params(on_behalf_of="eyJ0", password="secret", username="u")
        assert select_auth_type(params, browser_available=True) is AuthType.ON_BEHALF_OF

    def test_secret_without_username_is_client_credentials(self) -> None:
        assert select_auth_type(_params(password="secret"), True) is AuthType.CLIENT_CREDENTIALS

    def test_certificate_without_username_is_client_credentials(self) -> None:
        params = _params(certificate="/certs/app.pem")
        assert select_auth_type(params, False) is AuthType.CLIENT_CREDENTIALS

    def test_username_and_password_is_resource_owner(self) -> None:
        params = _params(username="user@contoso.com", password="pw")
        assert select_auth_type(params, True) is AuthType.RESOURCE_OWNER

    def test_browser_available_is_authorization_code(self) -> None:
        assert select_auth_type(_params(), True) is AuthType.AUTHORIZATION_CODE

    def test_no_browser_is_device_code(self) -> None:
        assert select_auth_type(_params(), False) is AuthType.DEVICE_CODE

    def test_username_alone_is_interactive(self) -> None:
        params = _params(username="user@contoso.com")
        assert select_auth_type(params, True) is AuthType.AUTHORIZATION_CODE
        assert select_auth_type(params, False) is AuthType.DEVICE_CODE

    def test_certificate_and_username_without_password_rejected(self) -> None:
        params = _params(certificate="/certs/app.pem", username="user@contoso.com")
        with pytest.raises(ConfigurationError) as exc_info:
            select_auth_type(params, True)
        assert "certificate" in exc_info.value.fields

    def test_deterministic(self) -> None:
        params = _params(password="secret")
        assert {select_auth_type(params, True) for _ in range(3)} == {AuthType.CLIENT_CREDENTIALS}


class TestDetectBrowser:
    """Tests for detect_browser()."""

    @pytest.fixture(autouse=True)
    def clear_cache(self) -> Generator[None, None, None]:
        detect_browser.cache_clear()
        yield
        detect_browser.cache_clear()

    def test_headless_linux_has_no_browser(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(selector.sys, "platform", "linux")
        monkeypatch.delenv("DISPLAY", raising=False)
        monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
        assert detect_browser() is False

    def test_evaluated_once(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = []

        def fake_get() -> object:
            calls.append(1)
            return object()

        monkeypatch.setattr(selector.sys, "platform", "darwin")
        monkeypatch.setattr(selector.webbrowser, "get", fake_get)

        assert detect_browser() is True
        assert detect_browser() is True
        assert len(calls) == 1
