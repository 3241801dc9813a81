"""Hourglass sync CLI main entry point."""

from __future__ import annotations

import logging
import sys
from typing import Annotated

import typer

from hourglass_sync.cli.commands import auth, data, server, sync

# Main app
app = typer.Typer(
    name="hsync",
    help="Hourglass Sync - keep your time-tracking data in sync across devices",
    no_args_is_help=True,
)


@app.callback()
def _configure(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output")] = False,
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)
    else:
        logging.basicConfig(level=logging.WARNING, stream=sys.stderr)


server.register(app)
sync.register(app)
data.register(app)
auth.register(app)


@app.command()
def version() -> None:
    """Show version information."""
    from hourglass_sync import __version__

    typer.echo(f"hourglass-sync v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
