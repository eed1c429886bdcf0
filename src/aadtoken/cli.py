"""Command-line interface for aadtoken.

Provides commands to acquire tokens, build authorization URIs and manage the
token cache.

Usage:
    python -m aadtoken get-token https://management.azure.com/ --tenant contoso --app <id>
    python -m aadtoken get-token https://graph.microsoft.com/User.Read --version 2 --app <id>
    python -m aadtoken list
    python -m aadtoken delete <fingerprint>
    python -m aadtoken validate-config
"""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from aadtoken.config import get_config, validate_config_file
from aadtoken.core.logging import configure_logging

if TYPE_CHECKING:
    from aadtoken.auth.manager import TokenManager
    from aadtoken.config_schema import AppConfig

console = Console(stderr=True)

FINGERPRINT_LENGTH = 64

# Fingerprint characters shown by "list"; "delete" accepts any unique prefix
SHORT_ID_LENGTH = 12

AUTH_TYPES = [
    "authorization_code",
    "device_code",
    "client_credentials",
    "resource_owner",
    "on_behalf_of",
    "managed_identity",
]


def _load_config_or_exit() -> AppConfig:
    from aadtoken.core.errors import ConfigLoadError, ConfigValidationError

    try:
        return get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)


def _manager(config: AppConfig) -> TokenManager:
    from aadtoken.auth.manager import TokenManager

    return TokenManager.from_config(config, interactive=sys.stdin.isatty())


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """aadtoken - Azure Active Directory token acquisition and caching."""
    # stderr logging is in place before the config file is read
    configure_logging(log_level="DEBUG" if debug else "WARNING", json_output=False)
    config = _load_config_or_exit()
    log_level = "DEBUG" if debug else config.logging.level
    configure_logging(log_level=log_level, json_output=config.logging.json_output)


@cli.command("get-token")
@click.argument("resource", nargs=-1, required=True)
@click.option("--tenant", "-t", default=None, help="Tenant name, domain or GUID")
@click.option("--app", "-a", default=None, help="Application (client) ID")
@click.option("--version", "-v", "version", type=click.IntRange(1, 2), default=None)
@click.option("--auth-type", type=click.Choice(AUTH_TYPES), default=None)
@click.option("--username", default=None)
@click.option("--password", envvar="AADTOKEN_PASSWORD", default=None, help="Password or client secret")
@click.option("--certificate", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option(
    "--certificate-password",
    envvar="AADTOKEN_CERTIFICATE_PASSWORD",
    default=None,
    help="Passphrase for the certificate's private key",
)
@click.option("--on-behalf-of", "on_behalf_of", default=None, help="Access token to exchange")
@click.option("--redirect-uri", default=None)
@click.option("--auth-code", default=None, help="Authorization code captured elsewhere")
@click.option("--code-verifier", default=None, help="PKCE verifier for --auth-code")
@click.option("--no-cache", is_flag=True, help="Skip the token cache")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["token", "header", "json"]),
    default="token",
    help="What to print",
)
def get_token(
    resource: tuple[str, ...],
    tenant: str | None,
    app: str | None,
    version: int | None,
    auth_type: str | None,
    username: str | None,
    password: str | None,
    certificate: str | None,
    certificate_password: str | None,
    on_behalf_of: str | None,
    redirect_uri: str | None,
    auth_code: str | None,
    code_verifier: str | None,
    no_cache: bool,
    output: str,
) -> None:
    """Acquire a token for RESOURCE (a v1 resource, or one or more v2 scopes)."""
    from aadtoken.auth.params import RequestParameters
    from aadtoken.core.errors import AadTokenError

    config = _load_config_or_exit()
    version = version or config.defaults.version
    optional = {"redirect_uri": redirect_uri} if redirect_uri else {}

    try:
        params = RequestParameters(
            resource=resource[0] if version == 1 else resource,
            tenant=tenant or config.defaults.tenant,
            app=app or config.defaults.app,
            version=version,
            auth_type=auth_type,
            username=username,
            password=password,
            certificate=certificate,
            certificate_password=certificate_password,
            on_behalf_of=on_behalf_of,
            aad_host=config.defaults.aad_host,
            **optional,
        )
        record = _manager(config).acquire(
            params,
            use_cache=False if no_cache else None,
            auth_code=auth_code,
            code_verifier=code_verifier,
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except AadTokenError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if output == "header":
        click.echo(f"Authorization: {record.token_type} {record.access_token}")
    elif output == "json":
        click.echo(json.dumps(record.to_dict(), indent=2))
    else:
        click.echo(record.access_token)


@cli.command("authorize-url")
@click.argument("resource", nargs=-1, required=True)
@click.option("--tenant", "-t", default=None)
@click.option("--app", "-a", default=None)
@click.option("--version", "-v", "version", type=click.IntRange(1, 2), default=None)
@click.option("--redirect-uri", default=None)
def authorize_url(
    resource: tuple[str, ...],
    tenant: str | None,
    app: str | None,
    version: int | None,
    redirect_uri: str | None,
) -> None:
    """Print the authorization URI for RESOURCE, for sign-in hosted elsewhere."""
    from aadtoken.auth.endpoints import build_authorization_uri
    from aadtoken.auth.params import DEFAULT_REDIRECT_URI

    config = _load_config_or_exit()
    version = version or config.defaults.version
    app = app or config.defaults.app
    if not app:
        console.print("[red]Error:[/red] --app is required (or set defaults.app in the config)")
        sys.exit(1)

    click.echo(
        build_authorization_uri(
            resource=resource[0] if version == 1 else resource,
            tenant=tenant or config.defaults.tenant,
            app=app,
            redirect_uri=redirect_uri or DEFAULT_REDIRECT_URI,
            version=version,
            aad_host=config.defaults.aad_host,
        )
    )


@cli.command("list")
def list_tokens() -> None:
    """List cached tokens."""
    config = _load_config_or_exit()
    entries = _manager(config).list_tokens()
    if not entries:
        console.print("No cached tokens.")
        return

    now = datetime.now(UTC)
    table = Table(title="Cached tokens")
    table.add_column("ID", style="cyan", no_wrap=True, min_width=SHORT_ID_LENGTH)
    table.add_column("Flow")
    table.add_column("Tenant")
    table.add_column("Resource / scope")
    table.add_column("Expires")
    table.add_column("Refresh", justify="center")

    for fp, record in entries:
        params = record.params
        resource = params.resource if isinstance(params.resource, str) else " ".join(params.resource)
        expires = record.expires_at.strftime("%Y-%m-%d %H:%M")
        if record.is_expired(now):
            expires = f"[red]{expires}[/red]"
        table.add_row(
            fp[:SHORT_ID_LENGTH],
            str(params.auth_type or ""),
            params.tenant,
            resource,
            expires,
            "✓" if record.can_refresh else "",
        )
    Console().print(table)


@cli.command("delete")
@click.argument("fingerprint")
def delete_token(fingerprint: str) -> None:
    """Delete the cached token whose fingerprint is (or starts with) FINGERPRINT."""
    from aadtoken.core.errors import CacheError

    config = _load_config_or_exit()
    manager = _manager(config)
    fingerprint = fingerprint.lower()
    try:
        if len(fingerprint) < FINGERPRINT_LENGTH:
            matches = [fp for fp, _ in manager.list_tokens() if fp.startswith(fingerprint)]
            if len(matches) > 1:
                console.print(f"[red]Error:[/red] '{fingerprint}' matches {len(matches)} tokens")
                sys.exit(1)
            if matches:
                fingerprint = matches[0]
        deleted = manager.delete_token(fingerprint)
    except CacheError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if deleted:
        console.print(f"[green]✓[/green] Deleted {fingerprint}")
    else:
        console.print(f"[yellow]No cached token {fingerprint}[/yellow]")
        sys.exit(1)


@cli.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
def clear_tokens(yes: bool) -> None:
    """Delete all cached tokens."""
    config = _load_config_or_exit()
    manager = _manager(config)
    if not yes:
        click.confirm("Delete all cached tokens?", abort=True)
    count = manager.clear()
    console.print(f"[green]✓[/green] Deleted {count} cached token(s)")


@cli.command("init-cache")
def init_cache() -> None:
    """Create the token cache directory."""
    from aadtoken.auth.cache import TokenCacheStore, default_cache_dir

    config = _load_config_or_exit()
    store = TokenCacheStore(default_cache_dir(config.cache.directory))
    store.ensure_directory(force=True)
    console.print(f"[green]✓[/green] Token cache directory: [cyan]{store.directory}[/cyan]")


@cli.command("decode")
@click.argument("token")
def decode(token: str) -> None:
    """Print the header and claims of a JWT (signature not verified)."""
    from aadtoken.auth.claims import decode_jwt
    from aadtoken.core.errors import AadTokenError

    try:
        decoded = decode_jwt(token)
    except AadTokenError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    click.echo(json.dumps(decoded, indent=2))


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: $AADTOKEN_CONFIG_PATH or ~/.config/aadtoken/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"[red]✗[/red] {message}")
        sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
