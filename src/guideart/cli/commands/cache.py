"""
CLI commands for managing the local poster cache.

Provides ``guideart cache stats``, ``purge-stale``, ``purge-blocked`` and
``resolve`` for inspecting and maintaining the cache outside the server.
Run them while the server is stopped; the index is not shared between
processes.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from guideart.container import Container, container
from guideart.exceptions import (
    EXIT_CODE_GENERAL_ERROR,
    EXIT_CODE_INTERRUPTED,
    EXIT_CODE_INVALID_ARGS,
    GuideartError,
    UpstreamThrottledError,
)
from guideart.services.image_blocklist import purge_all_blocked
from guideart.services.stale_evictor import EVICTION_TTL_MULTIPLIER

console = Console()

app = typer.Typer(
    name="cache",
    help="Manage the local poster cache.",
    no_args_is_help=True,
)


def _get_container() -> Container:
    return container


def format_size(size_bytes: int) -> str:
    """Convert bytes to human-readable format."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


@app.command(name="stats")
def stats() -> None:
    """
    Display poster cache statistics.

    Examples:
        guideart cache stats
    """
    app_container = _get_container()
    cache_stats = app_container.poster_proxy.get_stats()

    table = Table(title="Poster Cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Image directory", str(app_container.settings.image_dir))
    table.add_row("Cached posters", f"{cache_stats.image_count:,}")
    table.add_row("Total size", format_size(cache_stats.total_size_bytes))
    table.add_row("Indexed programs", f"{cache_stats.indexed_programs:,}")
    table.add_row("Pinned images", str(cache_stats.pinned_images))
    table.add_row("Blocked images", str(cache_stats.blocked_images))
    if cache_stats.oldest_file is not None:
        table.add_row("Oldest file", cache_stats.oldest_file.strftime("%Y-%m-%d %H:%M UTC"))
    if cache_stats.newest_file is not None:
        table.add_row("Newest file", cache_stats.newest_file.strftime("%Y-%m-%d %H:%M UTC"))
    console.print(table)


@app.command(name="purge-stale")
def purge_stale(
    max_age_days: Optional[int] = typer.Option(
        None,
        "--max-age-days",
        help="Image TTL in days (default: IMAGE_CACHE_TTL_DAYS)",
    ),
) -> None:
    """
    Delete posters not requested for twice the image TTL.

    Pinned posters are never deleted.

    Examples:
        guideart cache purge-stale
        guideart cache purge-stale --max-age-days 14
    """
    app_container = _get_container()
    ttl = app_container.settings.image_cache_ttl_days if max_age_days is None else max_age_days
    if ttl < 0:
        console.print("[red]Error: --max-age-days must be zero or positive[/red]")
        raise typer.Exit(code=EXIT_CODE_INVALID_ARGS)
    if ttl == 0:
        console.print("[yellow]Eviction disabled (TTL is 0); nothing to do[/yellow]")
        return

    removed = app_container.evictor.purge(app_container.settings.image_dir, ttl)
    console.print(
        f"[green]Removed {removed} poster(s) unused for more than "
        f"{ttl * EVICTION_TTL_MULTIPLIER} days[/green]"
    )


@app.command(name="purge-blocked")
def purge_blocked() -> None:
    """
    Delete cached posters listed in the blocklist and prune their index entries.

    Examples:
        guideart cache purge-blocked
    """
    app_container = _get_container()
    removed = purge_all_blocked(
        app_container.blocklist, app_container.settings.image_dir, app_container.index
    )
    console.print(
        f"[green]Removed {removed} blocked poster(s) "
        f"({len(app_container.blocklist.entries())} blocklist entries)[/green]"
    )


@app.command(name="resolve")
def resolve(
    program_id: str = typer.Argument(..., help="Schedules Direct program id"),
) -> None:
    """
    Show which poster would be chosen for a program, without downloading it.

    Fetches artwork metadata from Schedules Direct if it is not cached.

    Examples:
        guideart cache resolve EP012345670000
    """
    try:
        asyncio.run(_resolve_async(program_id))
    except KeyboardInterrupt:
        console.print("\n[yellow]Resolve interrupted by user[/yellow]")
        raise typer.Exit(code=EXIT_CODE_INTERRUPTED)


async def _resolve_async(program_id: str) -> None:
    """Async implementation of the resolve command."""
    app_container = _get_container()
    try:
        candidate = await app_container.poster_proxy.resolve(program_id)
    except UpstreamThrottledError as e:
        console.print(
            f"[yellow]Schedules Direct is paused; retry in {e.retry_after}s[/yellow]"
        )
        raise typer.Exit(code=EXIT_CODE_GENERAL_ERROR)
    except GuideartError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(code=EXIT_CODE_GENERAL_ERROR)
    finally:
        await app_container.shutdown()

    if candidate is None:
        console.print(f"[yellow]No acceptable poster for {program_id}[/yellow]")
        raise typer.Exit(code=EXIT_CODE_GENERAL_ERROR)

    table = Table(title=f"Poster for {program_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Image id", candidate.image_id)
    table.add_row("Category", candidate.category)
    table.add_row("Aspect", candidate.aspect)
    table.add_row("Size", f"{candidate.width}x{candidate.height}")
    table.add_row("Tier", candidate.tier or "-")
    table.add_row("URI", candidate.uri)
    console.print(table)
