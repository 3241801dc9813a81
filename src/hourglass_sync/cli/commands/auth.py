"""Session commands: login, logout."""

from __future__ import annotations

from typing import Annotated

import typer

from hourglass_sync.cli._helpers import get_config
from hourglass_sync.core.identity import ProviderKind


def login(
    token: Annotated[str, typer.Argument(help="Access token issued by the identity provider")],
    provider: Annotated[
        ProviderKind,
        typer.Option(
            "--provider",
            "-p",
            case_sensitive=False,
            help="primary: app account token; secondary: Google access token",
        ),
    ] = ProviderKind.PRIMARY,
    server_url: Annotated[
        str | None, typer.Option("--server", "-s", help="Sync server URL")
    ] = None,
) -> None:
    """Store a credential so sync commands can act for you.

    Examples:
        hsync login eyJhbGciOi...
        hsync login ya29.a0Af... --provider secondary --server https://sync.example.com
    """
    token = token.strip()
    if not token:
        typer.secho("Error: token must not be empty", fg=typer.colors.RED)
        raise typer.Exit(1)

    config = get_config()
    if server_url:
        if not server_url.startswith(("http://", "https://")):
            typer.secho("Error: server URL must start with http:// or https://", fg=typer.colors.RED)
            raise typer.Exit(1)
        config.server_url = server_url.rstrip("/")
    config.provider = provider
    config.token = token
    config.save()

    typer.secho("Signed in.", fg=typer.colors.GREEN)
    typer.echo(f"  Server: {config.server_url}")
    typer.echo(f"  Provider: {provider.value}")
    typer.echo(f"  Token: {'*' * 8}...{token[-4:] if len(token) > 4 else '****'}")


def logout() -> None:
    """Forget the stored credential. Local data is kept.

    Examples:
        hsync logout
    """
    config = get_config()
    if config.token is None:
        typer.echo("Not signed in.")
        return
    config.token = None
    config.save()
    typer.secho("Signed out. Local data was kept.", fg=typer.colors.GREEN)


def register(app: typer.Typer) -> None:
    """Register session commands on the app."""
    app.command()(login)
    app.command()(logout)
