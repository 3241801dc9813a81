"""Server command: serve."""

from __future__ import annotations

from typing import Annotated

import typer


def serve(
    host: Annotated[str | None, typer.Option("--host", "-h", help="Host to bind to")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to bind to")] = None,
    reload: Annotated[
        bool, typer.Option("--reload", "-r", help="Enable auto-reload for development")
    ] = False,
) -> None:
    """Run the sync server (document API and realtime channel).

    Host and port default to HOURGLASS_HOST and HOURGLASS_PORT.

    Examples:
        hsync serve                    # Run on localhost:8000
        hsync serve -p 9000            # Run on port 9000
        hsync serve --host 0.0.0.0     # Expose to network
    """
    import uvicorn

    from hourglass_sync.utils.config import get_config

    config = get_config()
    host = host or config.host
    port = port or config.port

    typer.echo(f"Starting Hourglass sync server on http://{host}:{port}")
    typer.echo(f"  Docs: http://{host}:{port}/docs")
    typer.echo(f"  Storage: {config.storage_backend}")

    uvicorn.run(
        "hourglass_sync.server.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="debug" if config.debug else "info",
    )


def register(app: typer.Typer) -> None:
    """Register server commands on the app."""
    app.command()(serve)
