"""CLI entry point for player-data-store.

Invoked as::

    player-data-store [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m player_data_store.cli.main

Commands
--------
- version      — Show version information
- show         — Print a client's persisted document
- score        — Read or overwrite a client's sorted value
- leaderboard  — Print the top of a sorted store
- release      — Forcibly release a client's document lease
"""
from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Coroutine, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from player_data_store.config import StoreConfig, load_config
from player_data_store.errors import PlayerDataError
from player_data_store.keys import client_key
from player_data_store.leaderboard import rank_entries
from player_data_store.records.sorted_store import SortedStore

console = Console()

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Storage backend factory
# ---------------------------------------------------------------------------


def _make_backend(db_path: str | None, redis_url: str | None, config: StoreConfig) -> Any:
    """Instantiate the requested storage backend.

    Parameters
    ----------
    db_path:
        Path to the SQLite database.  Used unless ``redis_url`` is given.
    redis_url:
        Redis connection URL; selects the Redis backend.
    config:
        Lease settings are taken from here.

    Returns
    -------
    SQLiteBackend | RedisBackend
        A configured backend instance.
    """
    from player_data_store.storage.redis import RedisBackend
    from player_data_store.storage.sqlite import SQLiteBackend

    if redis_url:
        return RedisBackend(
            url=redis_url,
            lease_ttl=config.lease_ttl,
            acquire_timeout=config.acquire_timeout,
        )
    db = Path(db_path) if db_path else Path.home() / ".player-data" / "records.db"
    return SQLiteBackend(
        db_path=db,
        lease_ttl=config.lease_ttl,
        acquire_timeout=config.acquire_timeout,
    )


def _run(ctx: click.Context, coroutine: Coroutine[Any, Any, T]) -> T:
    """Run ``coroutine`` to completion and close a Redis client afterwards."""
    backend = ctx.obj["backend"]

    async def runner() -> T:
        try:
            return await coroutine
        finally:
            close = getattr(backend, "close", None)
            if close is not None:
                await close()

    try:
        return asyncio.run(runner())
    except PlayerDataError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


def _sorted_store(ctx: click.Context, store: str) -> SortedStore:
    config: StoreConfig = ctx.obj["config"]
    return SortedStore(
        store,
        ctx.obj["backend"],
        policy=config.retry_policy(),
        default_min=config.sorted_min,
        default_max=config.sorted_max,
    )


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="player-data-store")
@click.option("--db-path", default=None, help="Path to the SQLite database.")
@click.option("--redis-url", default=None, help="Use the Redis backend at this URL.")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log backend activity.")
@click.pass_context
def cli(
    ctx: click.Context,
    db_path: str | None,
    redis_url: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Inspect and administer per-client player records."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path) if config_path else StoreConfig()
    except PlayerDataError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)
    ctx.obj["config"] = config
    ctx.obj["backend"] = _make_backend(db_path, redis_url, config)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show version information."""
    from player_data_store import __version__

    console.print(f"[bold]player-data-store[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@cli.command(name="show")
@click.argument("store")
@click.argument("client_id", type=int)
@click.option("--json-output", is_flag=True, help="Output raw JSON instead of a table.")
@click.pass_context
def show_command(ctx: click.Context, store: str, client_id: int, json_output: bool) -> None:
    """Print the persisted document of CLIENT_ID in STORE without locking it."""
    import json

    key = client_key(client_id, ctx.obj["config"].key_format)
    data = _run(ctx, ctx.obj["backend"].peek(store, key))
    if data is None:
        console.print(f"[yellow]No document for[/yellow] {key} in {store}")
        sys.exit(1)

    if json_output:
        console.print_json(json.dumps(data, default=str))
        return

    table = Table(title=f"{store} / {key}", show_lines=True)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    for field, value in sorted(data.items()):
        table.add_row(str(field), repr(value))
    console.print(table)


# ---------------------------------------------------------------------------
# score
# ---------------------------------------------------------------------------


@cli.command(name="score")
@click.argument("store")
@click.argument("client_id", type=int)
@click.option("--set", "new_value", type=float, default=None, help="Overwrite the value.")
@click.pass_context
def score_command(
    ctx: click.Context,
    store: str,
    client_id: int,
    new_value: float | None,
) -> None:
    """Read, or with --set overwrite, the value of CLIENT_ID in STORE."""
    key = client_key(client_id, ctx.obj["config"].key_format)
    sorted_store = _sorted_store(ctx, store)

    if new_value is None:
        value = _run(ctx, sorted_store.get(key))
        console.print(f"{key} in {store}: [bold]{value}[/bold]")
        return

    value = int(new_value) if new_value.is_integer() else new_value
    if not _run(ctx, sorted_store.set(key, value)):
        console.print(f"[red]Could not write[/red] {key} in {store}")
        sys.exit(1)
    console.print(f"[green]Set[/green] {key} in {store} to {value}")


# ---------------------------------------------------------------------------
# leaderboard
# ---------------------------------------------------------------------------


@cli.command(name="leaderboard")
@click.argument("store")
@click.option("--limit", default=10, show_default=True, help="Rows to show.")
@click.option("--ascending", is_flag=True, help="Lowest values first.")
@click.option("--min", "min_value", type=float, default=None, help="Lowest value included.")
@click.option("--max", "max_value", type=float, default=None, help="Highest value included.")
@click.pass_context
def leaderboard_command(
    ctx: click.Context,
    store: str,
    limit: int,
    ascending: bool,
    min_value: float | None,
    max_value: float | None,
) -> None:
    """Print the top entries of STORE ordered by value."""
    sorted_store = _sorted_store(ctx, store)
    pages = _run(ctx, sorted_store.get_sorted_range(ascending, limit, min_value, max_value))
    if pages is None:
        console.print(f"[red]Could not read[/red] {store}")
        sys.exit(1)

    ranked = rank_entries(pages.current_page(), ctx.obj["config"].key_format)
    if not ranked:
        console.print(f"[yellow]No entries in[/yellow] {store}")
        return

    table = Table(title=f"{store} leaderboard", show_lines=False)
    table.add_column("Rank", justify="right")
    table.add_column("Client", style="cyan")
    table.add_column("Value", justify="right")
    for row in ranked:
        table.add_row(str(row.rank), str(row.client_id), str(row.value))
    console.print(table)


# ---------------------------------------------------------------------------
# release
# ---------------------------------------------------------------------------


@cli.command(name="release")
@click.argument("store")
@click.argument("client_id", type=int)
@click.pass_context
def release_command(ctx: click.Context, store: str, client_id: int) -> None:
    """Forcibly release the document lease of CLIENT_ID in STORE.

    The process holding the session notices on its next save or renewal
    and kicks the client.
    """
    key = client_key(client_id, ctx.obj["config"].key_format)
    if _run(ctx, ctx.obj["backend"].revoke(store, key)):
        console.print(f"[green]Released[/green] {key} in {store}")
    else:
        console.print(f"[yellow]No lease held on[/yellow] {key} in {store}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    cli()
