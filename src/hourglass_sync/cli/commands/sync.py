"""Sync commands: status, upload, download, watch."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hourglass_sync.cli._helpers import (
    build_engine,
    fail,
    get_config,
    open_local_store,
    output_result,
    run_async,
)
from hourglass_sync.errors import SyncError
from hourglass_sync.sync.client import SyncApiClient
from hourglass_sync.sync.device import get_device_name
from hourglass_sync.sync.protocol import MergeStrategy, SyncSignal

logger = logging.getLogger(__name__)


def status(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show the local document and, when signed in, the cloud copy's age.

    Examples:
        hsync status
        hsync status --json
    """

    async def _status() -> dict[str, Any]:
        config = get_config()
        store = open_local_store(config)
        try:
            local_keys = len(store.keys())
        except SyncError as e:
            return {"error": f"Local store unavailable: {e}"}

        result: dict[str, Any] = {
            "server": config.server_url,
            "signed_in": config.credential is not None,
            "provider": config.provider.value if config.credential else None,
            "client_id": store.origin_id,
            "device": get_device_name(),
            "local_store": str(config.local_store_path),
            "local_keys": local_keys,
        }

        credential = config.credential
        if credential is not None:
            async with SyncApiClient(config.server_url, timeout=config.timeout) as api:
                try:
                    snapshot = await api.fetch(credential)
                except SyncError as e:
                    result["cloud"] = f"unavailable ({e})"
                else:
                    if snapshot is None:
                        result["cloud"] = "no document yet"
                    else:
                        result["cloud_updated_at"] = (
                            snapshot.updated_at.isoformat() if snapshot.updated_at else None
                        )
        return result

    result = run_async(_status())
    if "error" in result:
        fail(result, json_output)
    if json_output:
        output_result(result, json_output)
        return
    _print_status(result)


def _print_status(result: dict[str, Any]) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="bright_black")
    table.add_column("Value", style="bold")
    table.add_row("Server", result["server"])
    if result["signed_in"]:
        table.add_row("Signed in", f"[green]yes[/green] [dim]({result['provider']})[/dim]")
    else:
        table.add_row("Signed in", "[red]no[/red] [dim](run hsync login)[/dim]")
    table.add_row("Client", f"{result['client_id']} [dim]({result['device']})[/dim]")
    table.add_row("Local store", result["local_store"])
    table.add_row("Local keys", f"[cyan]{result['local_keys']:,}[/cyan]")
    if "cloud_updated_at" in result:
        table.add_row("Cloud updated", str(result["cloud_updated_at"]))
    elif "cloud" in result:
        table.add_row("Cloud", f"[yellow]{result['cloud']}[/yellow]")
    Console().print(Panel(table, title="Hourglass Sync", border_style="cyan"))


def upload(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Upload the local document, replacing the cloud copy.

    Examples:
        hsync upload
    """

    async def _upload() -> dict[str, Any]:
        engine = build_engine(get_config())
        outcome = await engine.upload_now()
        return {"ok": outcome.ok, "message": outcome.message}

    result = run_async(_upload())
    if not result["ok"]:
        fail(result, json_output)
    output_result(result, json_output)


def download(
    strategy: Annotated[
        MergeStrategy,
        typer.Option(
            "--strategy",
            "-s",
            case_sensitive=False,
            help="server: cloud wins; merge: overlay cloud on local and upload; "
            "local: upload local; upload_if_absent: only seed an empty cloud",
        ),
    ] = MergeStrategy.SERVER,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Download the cloud document into the local store.

    Examples:
        hsync download
        hsync download --strategy merge
    """

    async def _download() -> dict[str, Any]:
        engine = build_engine(get_config())
        outcome = await engine.download_now(strategy)
        result: dict[str, Any] = {"ok": outcome.ok, "message": outcome.message}
        if outcome.result is not None:
            result["action"] = outcome.result.action.value
        return result

    result = run_async(_download())
    if not result["ok"]:
        fail(result, json_output)
    output_result(result, json_output)


def watch(
    duration: Annotated[
        float | None,
        typer.Option("--duration", "-d", help="Stop after this many seconds (default: run until Ctrl+C)"),
    ] = None,
    realtime: Annotated[
        bool, typer.Option("--realtime/--no-realtime", help="Apply pushes from other devices")
    ] = True,
) -> None:
    """Keep the local document in sync until interrupted.

    Pulls once on start, then applies cloud changes pushed by other devices
    and reports each applied update.

    Examples:
        hsync watch
        hsync watch --duration 60
    """
    config = get_config()
    if config.credential is None:
        fail({"error": "Not signed in. Run 'hsync login' first."})

    async def _watch() -> None:
        engine = build_engine(config, realtime=realtime and config.realtime)

        def _on_signal(signal: SyncSignal) -> None:
            if signal == SyncSignal.SYNC_DATA_APPLIED:
                typer.secho("Cloud data applied", fg=typer.colors.CYAN)

        engine.signals.on(SyncSignal.SYNC_DATA_APPLIED, _on_signal)
        await engine.start()
        typer.echo(f"Watching {config.local_store_path} (client {engine.client_id})")
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await engine.stop(flush=True)

    try:
        run_async(_watch())
    except KeyboardInterrupt:
        typer.echo("Stopped.")


def register(app: typer.Typer) -> None:
    """Register sync commands on the app."""
    app.command()(status)
    app.command()(upload)
    app.command()(download)
    app.command()(watch)
