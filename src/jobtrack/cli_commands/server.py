"""CLI command for the HTTP API server."""

from __future__ import annotations

import sys

import click


@click.command()
@click.option("--port", default=8377, type=int, help="Port to listen on (default 8377)")
@click.option("--host", default="127.0.0.1", help="Interface to bind (default 127.0.0.1)")
def serve(port: int, host: str) -> None:
    """Serve the JSON API over HTTP."""
    from jobtrack.api import main as api_main

    try:
        api_main(port=port, host=host)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


COMMANDS = [serve]
