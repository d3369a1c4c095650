"""
Main CLI entry point for guideart.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from guideart import __version__
from guideart.cli.commands.api import api_app
from guideart.cli.commands.cache import app as cache_app
from guideart.config.settings import settings

console = Console()

app = typer.Typer(
    name="guideart",
    help="Schedules Direct poster proxy and image cache",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(api_app, name="api", help="API server commands")
app.add_typer(cache_app, name="cache", help="Poster cache commands")


def configure_logging(level: str) -> None:
    """Route stdlib logging through rich."""
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.command()
def version() -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold blue]guideart[/bold blue] v{__version__}",
            title="Version",
            border_style="blue",
        )
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", help="Enable debug logging"
    ),
) -> None:
    """
    guideart - Schedules Direct poster proxy.

    Serves the best poster per program from a local image cache, downloading
    artwork from Schedules Direct on demand.
    """
    configure_logging("DEBUG" if verbose or settings.debug else settings.log_level)

    if version:
        console.print(f"guideart v{__version__}")
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use 'guideart --help' for available commands[/yellow]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
