"""Pytest fixtures and configuration for aadtoken tests.

Provides common fixtures for configuration, the token cache, and a mocked
Azure AD transport.
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from aadtoken.auth.cache import TokenCacheStore
from aadtoken.auth.flows import FlowContext
from aadtoken.auth.params import AuthType, RequestParameters
from aadtoken.auth.record import TokenRecord
from aadtoken.auth.transport import TokenEndpointClient
from aadtoken.config import reset_config

TENANT_GUID = "72f988bf-86f1-41af-91ab-2d7cd011db47"
APP_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real config file, cache and managed identity env."""
    monkeypatch.setenv("AADTOKEN_CONFIG_PATH", str(tmp_path / "absent-config.yaml"))
    monkeypatch.delenv("AADTOKEN_CACHE_DIR", raising=False)
    monkeypatch.delenv("IDENTITY_ENDPOINT", raising=False)
    monkeypatch.delenv("IDENTITY_HEADER", raising=False)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Return an existing, empty cache directory."""
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


@pytest.fixture
def store(cache_dir: Path) -> TokenCacheStore:
    """Return a TokenCacheStore over an existing directory."""
    return TokenCacheStore(cache_dir)


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock TokenEndpointClient that issues a one-hour token."""
    client = MagicMock(spec=TokenEndpointClient)
    client.post_form.return_value = _token_response()
    client.get_json.return_value = _token_response()
    return client


@pytest.fixture
def context(mock_client: MagicMock) -> FlowContext:
    """Return a FlowContext wired to the mock client, with no UI side effects."""
    return FlowContext(
        client=mock_client,
        redirect_timeout=2.0,
        open_browser=MagicMock(),
        show_device_code=MagicMock(),
    )


@pytest.fixture
def client_credentials_params() -> RequestParameters:
    """Return normalized client_credentials parameters."""
    return RequestParameters(
        resource="https://management.azure.com/",
        tenant="contoso.onmicrosoft.com",
        app=APP_ID,
        auth_type=AuthType.CLIENT_CREDENTIALS,
        password="client-secret",
    )


def _token_response(
    access_token: str = "access-1",
    expires_in: int = 3600,
    refresh_token: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a token endpoint success body."""
    body: dict[str, Any] = {
        "token_type": "Bearer",
        "access_token": access_token,
        "expires_in": expires_in,
    }
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    body.update(extra)
    return body


def _make_record(
    params: RequestParameters,
    access_token: str = "access-1",
    expires_in: int = 3600,
    refresh_token: str | None = None,
    issued_at: datetime | None = None,
) -> TokenRecord:
    """Build a TokenRecord expiring expires_in seconds after issued_at (default now)."""
    issued_at = issued_at or datetime.now(UTC)
    return TokenRecord(
        access_token=access_token,
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=expires_in),
        params=params,
        refresh_token=refresh_token,
        extra={"scope": "user_impersonation"},
    )


@pytest.fixture
def token_response() -> Any:
    """Factory for token endpoint success bodies."""
    return _token_response


@pytest.fixture
def make_record() -> Any:
    """Factory for TokenRecords with a given lifetime."""
    return _make_record
