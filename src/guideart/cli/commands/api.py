"""CLI commands for API server management."""

from __future__ import annotations

from typing import Optional

import typer

from guideart.config.settings import settings

api_app = typer.Typer(
    name="api",
    help="API server management commands",
    no_args_is_help=True,
)


@api_app.command()
def start(
    host: Optional[str] = typer.Option(
        None, "--host", help="Interface to bind (default: SERVER_HOST)"
    ),
    port: Optional[int] = typer.Option(
        None, "--port", "-p", help="Port to run the server on (default: SERVER_PORT)"
    ),
    reload: bool = typer.Option(
        False, "--reload", help="Auto-reload on code changes (development)"
    ),
) -> None:
    """
    Start the guideart proxy server.

    Runs a single worker: the index, token and pause state live in process
    memory and must not be shared between workers.

    Examples:
        guideart api start
        guideart api start --port 9090
        guideart api start --host 0.0.0.0 --reload
    """
    import uvicorn

    uvicorn.run(
        "guideart.api.main:app",
        host=host or settings.server_host,
        port=port or settings.server_port,
        reload=reload,
        workers=1,
        log_level=settings.log_level.lower(),
    )
