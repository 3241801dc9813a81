"""Shared CLI helpers for configuration, engine wiring, and output formatting."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer

from hourglass_sync.client_config import ClientConfig
from hourglass_sync.core.identity import StaticAuth
from hourglass_sync.storage.local_store import JsonFileKeyValueStore
from hourglass_sync.storage.observable import ObservableStore
from hourglass_sync.sync.client import SyncApiClient
from hourglass_sync.sync.device import get_client_id
from hourglass_sync.sync.realtime import WebSocketChannel
from hourglass_sync.sync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")

# API clients created during a CLI command, closed before the event loop
# shuts down so aiohttp does not warn about unclosed sessions.
_active_clients: list[SyncApiClient] = []


def get_config() -> ClientConfig:
    """Get client configuration."""
    return ClientConfig.load()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, closing any API clients it opened."""

    async def _with_cleanup() -> T:
        try:
            return await coro
        finally:
            for client in _active_clients:
                try:
                    await client.close()
                except Exception:
                    logger.debug("Failed to close API client during cleanup", exc_info=True)
            _active_clients.clear()
            await asyncio.sleep(0)

    return asyncio.run(_with_cleanup())


def open_local_store(config: ClientConfig) -> ObservableStore:
    """The local document store of this installation."""
    client_id = get_client_id(config.data_dir)
    return ObservableStore(JsonFileKeyValueStore(config.local_store_path), client_id)


def build_engine(config: ClientConfig, *, realtime: bool = False) -> SyncEngine:
    """Wire a :class:`SyncEngine` against the configured server."""
    store = open_local_store(config)
    client_id = store.origin_id

    api = SyncApiClient(config.server_url, timeout=config.timeout, client_id=client_id)
    _active_clients.append(api)

    channel = WebSocketChannel(config.server_url, client_id=client_id) if realtime else None

    return SyncEngine(
        store,
        api,
        StaticAuth(config.credential),
        client_id=client_id,
        channel=channel,
        debounce_seconds=config.debounce_seconds,
    )


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result in appropriate format."""
    if as_json:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if "error" in data:
        typer.secho(f"Error: {data['error']}", fg=typer.colors.RED)
    elif "message" in data:
        color = typer.colors.GREEN if data.get("ok", True) else typer.colors.RED
        typer.secho(data["message"], fg=color)
    else:
        for key, value in data.items():
            typer.echo(f"  {key}: {value}")


def fail(data: dict[str, Any], as_json: bool = False) -> None:
    """Print a failure result and exit with status 1."""
    output_result(data, as_json)
    raise typer.Exit(1)
