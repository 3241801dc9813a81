"""Local data commands: set, get, export, import."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Annotated, Any

import typer

from hourglass_sync.cli._helpers import (
    build_engine,
    fail,
    get_config,
    open_local_store,
    output_result,
    run_async,
)
from hourglass_sync.core.document import is_sync_relevant
from hourglass_sync.errors import SyncError

logger = logging.getLogger(__name__)


def set_value(
    key: Annotated[str, typer.Argument(help="Local key, e.g. sleepHours or notes:42")],
    value: Annotated[str, typer.Argument(help="Serialized value to store")],
    sync: Annotated[
        bool, typer.Option("--sync/--no-sync", help="Upload right away if the key is synced")
    ] = True,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Write one key of the local document.

    Writes to sync-relevant keys are uploaded immediately when signed in,
    exactly as a debounced upload would after the quiet period.

    Examples:
        hsync set sleepHours 8
        hsync set 'notes:42' '"Buy milk"' --no-sync
    """

    async def _set() -> dict[str, Any]:
        config = get_config()
        engine = build_engine(config)
        await engine.start(bootstrap=False)
        try:
            if not engine.store.write(key, value):
                return {"error": f"Could not write {key!r}: local storage unavailable"}
            if sync:
                await engine.uploader.flush()
        finally:
            await engine.stop()

        result: dict[str, Any] = {"message": f"Set {key}", "synced": False}
        if not is_sync_relevant(key):
            result["message"] += " (not a synced key)"
        elif engine.uploader.upload_count:
            result["synced"] = True
            result["message"] += " and uploaded"
        elif engine.uploader.last_error:
            result["message"] += f" (upload failed: {engine.uploader.last_error})"
        elif config.credential is None:
            result["message"] += " (not signed in, not uploaded)"
        return result

    result = run_async(_set())
    if "error" in result:
        fail(result, json_output)
    output_result(result, json_output)


def get_value(
    key: Annotated[str, typer.Argument(help="Local key to read")],
) -> None:
    """Print one key of the local document.

    Examples:
        hsync get focusCategories
    """
    store = open_local_store(get_config())
    try:
        value = store.read(key)
    except SyncError as e:
        fail({"error": str(e)})
        return
    if value is None:
        fail({"error": f"No value for {key!r}"})
    typer.echo(value)


def export_data(
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Backup file (default: dated name)")
    ] = None,
) -> None:
    """Export the local document to a JSON backup file.

    Examples:
        hsync export
        hsync export -o backup.json
    """
    path = output or Path(f"hourglass-backup-{date.today().isoformat()}.json")

    async def _export() -> dict[str, Any]:
        engine = build_engine(get_config())
        try:
            document = engine.export_document()
        except SyncError as e:
            return {"error": f"Export failed: {e}"}
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return {"message": f"Data exported to {path}"}

    result = run_async(_export())
    if "error" in result:
        fail(result)
    output_result(result)


def import_data(
    backup: Annotated[Path, typer.Argument(help="Backup file written by 'hsync export'")],
) -> None:
    """Import a JSON backup into the local document and upload it.

    Examples:
        hsync import hourglass-backup-2024-01-01.json
    """
    try:
        document = json.loads(backup.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        fail({"error": f"Import failed, please check your backup file: {e}"})
        return
    if not isinstance(document, dict):
        fail({"error": "Invalid backup file format"})

    async def _import() -> dict[str, Any]:
        engine = build_engine(get_config())
        outcome = await engine.import_document(document)
        if outcome.ok:
            await engine.uploader.flush()
        return {"ok": outcome.ok, "message": outcome.message}

    result = run_async(_import())
    if not result["ok"]:
        fail(result)
    output_result(result)


def register(app: typer.Typer) -> None:
    """Register local data commands on the app."""
    app.command(name="set")(set_value)
    app.command(name="get")(get_value)
    app.command(name="export")(export_data)
    app.command(name="import")(import_data)
