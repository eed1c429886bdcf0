"""Tests for the aadtoken command-line interface."""

import json
import logging
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock

import jwt
import pytest
import structlog
from click.testing import CliRunner

from aadtoken.cli import cli
from aadtoken.core.errors import ProviderError
from aadtoken.core.logging import configure_logging, reset_logging

APP_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    path = tmp_path / "tokens"
    path.mkdir()
    return path


@pytest.fixture
def config_path(tmp_path: Path, cache_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
defaults:
  tenant: contoso
  app: "{APP_ID}"
cache:
  directory: "{cache_path}"
interactive:
  browser_available: false
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("AADTOKEN_CONFIG_PATH", str(path))
    return path


@pytest.fixture(autouse=True)
def cli_env(
    config_path: Path, mock_client: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> Generator[MagicMock, None, None]:
    """Route the CLI's manager to the mock transport and silence logging."""

    def quiet_logging(**kwargs: object) -> None:
        structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))

    monkeypatch.setattr("aadtoken.cli.configure_logging", quiet_logging)
    monkeypatch.setattr("aadtoken.auth.manager.TokenEndpointClient", lambda timeout: mock_client)
    yield mock_client
    reset_logging()


def _cached_fingerprints(cache_path: Path) -> list[str]:
    return sorted(p.stem for p in cache_path.glob("*.json"))


class TestGetToken:
    """Tests for 'get-token'."""

    def test_prints_access_token(
        self, runner: CliRunner, mock_client: MagicMock, cache_path: Path
    ) -> None:
        result = runner.invoke(cli, ["get-token", "https://management.azure.com/", "--password", "s"])

        assert result.exit_code == 0, result.output
        assert "access-1" in result.output
        url, body = mock_client.post_form.call_args.args
        assert url == "https://login.microsoftonline.com/contoso.onmicrosoft.com/oauth2/token"
        assert body["grant_type"] == "client_credentials"
        assert body["client_id"] == APP_ID
        assert len(_cached_fingerprints(cache_path)) == 1

    def test_second_call_uses_cache(self, runner: CliRunner, mock_client: MagicMock) -> None:
        args = ["get-token", "https://management.azure.com/", "--password", "s"]
        runner.invoke(cli, args)
        result = runner.invoke(cli, args)

        assert result.exit_code == 0
        assert mock_client.post_form.call_count == 1

    def test_no_cache(self, runner: CliRunner, mock_client: MagicMock, cache_path: Path) -> None:
        args = ["get-token", "https://management.azure.com/", "--password", "s", "--no-cache"]
        runner.invoke(cli, args)
        runner.invoke(cli, args)

        assert mock_client.post_form.call_count == 2
        assert _cached_fingerprints(cache_path) == []

    def test_password_from_environment(
        self, runner: CliRunner, mock_client: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AADTOKEN_PASSWORD", "env-secret")
        result = runner.invoke(cli, ["get-token", "https://management.azure.com/"])

        assert result.exit_code == 0, result.output
        assert mock_client.post_form.call_args.args[1]["client_secret"] == "env-secret"

    def test_header_output(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli, ["get-token", "https://management.azure.com/", "--password", "s", "-o", "header"]
        )
        assert "Authorization: Bearer access-1" in result.output

    def test_json_output(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli, ["get-token", "https://management.azure.com/", "--password", "s", "-o", "json"]
        )
        data = json.loads(result.stdout)
        assert data["access_token"] == "access-1"
        assert data["params"]["auth_type"] == "client_credentials"

    def test_v2_scopes(self, runner: CliRunner, mock_client: MagicMock) -> None:
        result = runner.invoke(
            cli,
            ["get-token", "https://graph.microsoft.com", "--version", "2", "--password", "s"],
        )

        assert result.exit_code == 0, result.output
        url, body = mock_client.post_form.call_args.args
        assert url.endswith("/oauth2/v2.0/token")
        assert body["scope"] == "https://graph.microsoft.com/.default"

    def test_provider_error(self, runner: CliRunner, mock_client: MagicMock) -> None:
        mock_client.post_form.side_effect = ProviderError(
            "Azure AD returned 'invalid_client'", error_code="invalid_client"
        )
        result = runner.invoke(cli, ["get-token", "https://management.azure.com/", "--password", "bad"])

        assert result.exit_code == 1
        assert "invalid_client" in result.output

    def test_invalid_config(self, runner: CliRunner, config_path: Path) -> None:
        config_path.write_text("defaults:\n  version: 7\n", encoding="utf-8")
        result = runner.invoke(cli, ["get-token", "https://management.azure.com/"])

        assert result.exit_code == 1
        assert "Config error" in result.output


class TestCertificateOptions:
    """Tests for certificate credentials on 'get-token'."""

    @pytest.fixture
    def credential_fields(self, monkeypatch: pytest.MonkeyPatch) -> MagicMock:
        fields = MagicMock(
            return_value={"client_assertion_type": "jwt-bearer", "client_assertion": "signed"}
        )
        monkeypatch.setattr("aadtoken.auth.flows.client_credential_fields", fields)
        return fields

    @pytest.mark.parametrize("use_env", [False, True])
    def test_certificate_password_used(
        self,
        runner: CliRunner,
        tmp_path: Path,
        mock_client: MagicMock,
        credential_fields: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
        use_env: bool,
    ) -> None:
        cert = tmp_path / "app.pfx"
        cert.write_bytes(b"pkcs12")
        args = ["get-token", "https://management.azure.com/", "--certificate", str(cert)]
        if use_env:
            monkeypatch.setenv("AADTOKEN_CERTIFICATE_PASSWORD", "pfx-pass")
        else:
            args += ["--certificate-password", "pfx-pass"]

        result = runner.invoke(cli, args)

        assert result.exit_code == 0, result.output
        params = credential_fields.call_args.args[0]
        assert params.certificate == str(cert)
        assert params.certificate_password == "pfx-pass"
        assert mock_client.post_form.call_args.args[1]["client_assertion"] == "signed"


class TestAuthorizeUrl:
    """Tests for 'authorize-url'."""

    def test_prints_uri(self, runner: CliRunner, mock_client: MagicMock) -> None:
        result = runner.invoke(cli, ["authorize-url", "https://management.azure.com/"])

        assert result.exit_code == 0
        assert result.output.startswith(
            "https://login.microsoftonline.com/contoso.onmicrosoft.com/oauth2/authorize?"
        )
        assert f"client_id={APP_ID}" in result.output
        mock_client.post_form.assert_not_called()

    def test_requires_app(self, runner: CliRunner, config_path: Path) -> None:
        config_path.write_text("defaults:\n  tenant: contoso\n", encoding="utf-8")
        result = runner.invoke(cli, ["authorize-url", "https://management.azure.com/"])

        assert result.exit_code == 1
        assert "--app is required" in result.output


class TestCacheCommands:
    """Tests for 'list', 'delete', 'clear' and 'init-cache'."""

    def _acquire(self, runner: CliRunner, resource: str) -> None:
        result = runner.invoke(cli, ["get-token", resource, "--password", "s"])
        assert result.exit_code == 0, result.output

    def test_list_empty(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "No cached tokens" in result.output

    def test_list_shows_short_ids(self, runner: CliRunner, cache_path: Path) -> None:
        self._acquire(runner, "https://management.azure.com/")
        fp = _cached_fingerprints(cache_path)[0]

        result = runner.invoke(cli, ["list"])

        assert result.exit_code == 0
        assert fp[:12] in result.output

    def test_delete_by_prefix(self, runner: CliRunner, cache_path: Path) -> None:
        self._acquire(runner, "https://management.azure.com/")
        fp = _cached_fingerprints(cache_path)[0]

        result = runner.invoke(cli, ["delete", fp[:12]])

        assert result.exit_code == 0, result.output
        assert _cached_fingerprints(cache_path) == []

    def test_delete_unknown(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["delete", "ab" * 32])
        assert result.exit_code == 1
        assert "No cached token" in result.output

    def test_clear(self, runner: CliRunner, cache_path: Path) -> None:
        self._acquire(runner, "https://management.azure.com/")
        self._acquire(runner, "https://vault.azure.net")

        result = runner.invoke(cli, ["clear", "--yes"])

        assert result.exit_code == 0
        assert "Deleted 2" in result.output
        assert _cached_fingerprints(cache_path) == []

    def test_clear_aborted(self, runner: CliRunner, cache_path: Path) -> None:
        self._acquire(runner, "https://management.azure.com/")
        result = runner.invoke(cli, ["clear"], input="n\n")

        assert result.exit_code == 1
        assert len(_cached_fingerprints(cache_path)) == 1

    def test_init_cache(self, runner: CliRunner, tmp_path: Path, config_path: Path) -> None:
        target = tmp_path / "new-cache"
        config_path.write_text(f'cache:\n  directory: "{target}"\n', encoding="utf-8")

        result = runner.invoke(cli, ["init-cache"])

        assert result.exit_code == 0
        assert target.is_dir()


class TestDecode:
    """Tests for 'decode'."""

    def test_decodes_jwt(self, runner: CliRunner) -> None:
        token = jwt.encode({"upn": "user@contoso.com"}, "k" * 32, algorithm="HS256")
        result = runner.invoke(cli, ["decode", token])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["payload"]["upn"] == "user@contoso.com"

    def test_rejects_opaque_token(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["decode", "opaque-token"])
        assert result.exit_code == 1


class TestValidateConfig:
    """Tests for 'validate-config'."""

    def test_valid(self, runner: CliRunner, config_path: Path) -> None:
        result = runner.invoke(cli, ["validate-config", "-c", str(config_path)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output

    def test_invalid(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("cache:\n  directory: ../../etc\n", encoding="utf-8")

        result = runner.invoke(cli, ["validate-config", "-c", str(path)])

        assert result.exit_code == 1
        assert "traversal" in result.output


class TestLoggingOutput:
    """Log lines go to stderr so stdout carries only the command's result."""

    @pytest.fixture
    def real_logging(self, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
        monkeypatch.setattr("aadtoken.cli.configure_logging", configure_logging)
        yield
        reset_logging()

    def test_debug_logs_stay_off_stdout(self, runner: CliRunner, real_logging: None) -> None:
        result = runner.invoke(cli, ["--debug", "authorize-url", "https://management.azure.com/"])

        assert result.exit_code == 0, result.output
        lines = result.stdout.splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("https://login.microsoftonline.com/")
        assert "Loading configuration" in result.stderr

    def test_json_output_is_parseable(self, runner: CliRunner, real_logging: None) -> None:
        result = runner.invoke(
            cli,
            ["--debug", "get-token", "https://management.azure.com/", "--password", "s", "-o", "json"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["access_token"] == "access-1"
