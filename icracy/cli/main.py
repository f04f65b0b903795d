#!/usr/bin/env python3
"""
icracy CLI - Put a resolution before an assembly of AI delegates.

Usage:
    icracy serve
    icracy debate "Title" "Resolution text" -d openai/gpt-4o-mini
    icracy delegates
    icracy archive --verdict idiotic
    icracy leaderboard --period monthly
"""

import asyncio
import logging

import typer
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from icracy.adapters.catalog import CatalogService
from icracy.cli.presenters import (
    console,
    print_archive_table,
    print_debate,
    print_delegates_table,
    print_error,
    print_leaderboard_table,
    print_meta,
    print_resolution_header,
)
from icracy.engine import debate as orchestrator
from icracy.engine.events import EventBus
from icracy.errors import IcracyError
from icracy.settings import (
    DB_URL,
    DEFAULT_USER_HANDLE,
    DEFAULT_USER_ID,
    DEFAULT_USER_NAME,
    OPENROUTER_API_KEY,
)
from icracy.storage import reports
from icracy.storage.store import Store

app = typer.Typer(
    name="icracy",
    help="Put resolutions before an assembly of AI delegates and record the verdict.",
    add_completion=False,
    no_args_is_help=True,
)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _open_store() -> Store:
    store = Store(DB_URL)
    store.create_all()
    store.ensure_user(DEFAULT_USER_ID, DEFAULT_USER_HANDLE, DEFAULT_USER_NAME)
    return store


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _setup_logging(verbose)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8787, "--port", "-p", help="Port to listen on"),
):
    """Run the HTTP API."""
    import uvicorn

    from icracy.api.app import create_app

    uvicorn.run(create_app(), host=host, port=port)


async def _run_debate_with_progress(
    store: Store, title: str, body: str, delegate_ids: list[str]
) -> dict:
    catalog = CatalogService(store)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Syncing delegate catalog...", total=None)
        await catalog.eligible()
        picked = orchestrator.pick_delegates(store, delegate_ids)
        progress.remove_task(task)

        print_resolution_header(title, body, picked)

        progress.add_task(f"[cyan]Consulting {len(picked)} delegates...", total=None)
        return await orchestrator.submit(
            store, EventBus(), DEFAULT_USER_ID, title, body, delegate_ids=picked
        )


@app.command()
def debate(
    title: str = typer.Argument(..., help="Resolution title"),
    body: str = typer.Argument(..., help="Resolution text"),
    delegate: list[str] | None = typer.Option(
        None,
        "--delegate",
        "-d",
        help="Delegate model id (repeatable). Defaults to the top-ranked delegates.",
    ),
):
    """
    Debate a resolution and print each delegate's vote and the verdict.

    Without OPENROUTER_API_KEY the delegates answer offline with
    deterministic votes.

    Examples:
        icracy debate "Ban single-use plastics" "All single-use plastics are banned by 2030."
        icracy debate "Four-day week" "Adopt a four-day work week." -d openai/gpt-4o-mini
    """
    if not OPENROUTER_API_KEY:
        print_meta("OPENROUTER_API_KEY not set; delegates will answer offline.")

    store = _open_store()
    try:
        view = asyncio.run(_run_debate_with_progress(store, title, body, delegate or []))
    except IcracyError as e:
        print_error(str(e))
        raise typer.Exit(1) from e
    finally:
        store.dispose()

    print_debate(view)


@app.command()
def delegates(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of delegates to show"),
    refresh: bool = typer.Option(False, "--refresh", help="Sync even if the catalog is fresh"),
):
    """Show the delegate catalog, syncing from OpenRouter when needed."""
    store = _open_store()
    try:
        rows = asyncio.run(CatalogService(store).eligible(max(1, min(50, limit)), force=refresh))
    finally:
        store.dispose()

    console.print()
    print_delegates_table(rows)


@app.command()
def archive(
    verdict: str | None = typer.Option(None, "--verdict", help="Intelligent or Idiotic"),
    topic: str | None = typer.Option(None, "--topic", help="Topic tag"),
    query: str | None = typer.Option(None, "--query", "-q", help="Text in title or body"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of debates to show"),
):
    """List closed debates, newest first."""
    store = _open_store()
    try:
        items = reports.list_archive(
            store, verdict=verdict, topic=topic, q=query, limit=max(1, min(100, limit))
        )
    finally:
        store.dispose()

    console.print()
    if not items:
        print_meta("No closed debates yet.")
        return
    print_archive_table(items)


@app.command()
def leaderboard(
    period: str = typer.Option("weekly", "--period", help="weekly, monthly or all_time"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of members to show"),
):
    """Show alignment standings."""
    period = reports.normalize_period(period)
    store = _open_store()
    try:
        rows = reports.compute_leaderboard(store, period, max(1, min(200, limit)))
    finally:
        store.dispose()

    console.print()
    if not rows:
        print_meta("No ranked members yet.")
        return
    print_leaderboard_table(period, rows)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
