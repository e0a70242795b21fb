from __future__ import annotations
import asyncio
import logging
from pathlib import Path
import click
import httpx
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.logging import RichHandler
from rich.table import Table
from forkify_ingest.backend import create_supabase_client
from forkify_ingest.config import Config
from forkify_ingest.extractor import RecipeExtractor
from forkify_ingest.fetcher import HEADERS
from forkify_ingest.ingest import IngestionQueue
from forkify_ingest.models import ImageSource, QueueContext, QueueItem
from forkify_ingest.queue import QueueEvent
from forkify_ingest.repository import PersistenceError, RecipeRepository
from forkify_ingest.storage import ImageStore

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    "processing": "[yellow]processing[/yellow]",
    "done": "[green]done[/green]",
    "error": "[red]error[/red]",
}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool):
    """Forkify: turn recipe photos and web pages into saved recipes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _load_config() -> Config:
    try:
        return Config()
    except ValidationError:
        err_console.print("[red]Error:[/red] ANTHROPIC_API_KEY environment variable is not set.")
        raise SystemExit(1)


def _load_repository(config: Config):
    try:
        client = create_supabase_client(config)
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)
    return client, RecipeRepository(client)


def _reporter():
    reported: set[tuple[str, str]] = set()

    def report(event: QueueEvent, item: QueueItem) -> None:
        if event != "updated" or not item.is_terminal:
            return
        key = (item.id, item.warning or item.status)
        if key in reported:
            return
        reported.add(key)
        if item.status == "error":
            console.print(f"  [red]✗[/red] {escape(item.source)}: {escape(item.error_message or '')}")
        elif item.warning:
            console.print(f"  [yellow]![/yellow] {escape(item.title)}: {escape(item.warning)}")
        else:
            console.print(f"  [green]✓[/green] {escape(item.title)} ({item.record_id})")

    return report


def _queue_table(items: list[QueueItem]) -> Table:
    table = Table(title="Ingestion Queue")
    table.add_column("Source", style="cyan")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Extracted by")
    for item in items:
        table.add_row(
            escape(item.source),
            escape(item.title),
            STATUS_STYLES[item.status],
            item.usage.model if item.usage else "—",
        )
    return table


async def _run_ingest(
    queue: IngestionQueue,
    images: list[ImageSource],
    urls: tuple[str, ...],
    user_id: str,
    context: QueueContext,
) -> None:
    async with httpx.AsyncClient(headers=HEADERS, follow_redirects=True) as client:
        queue.http_client = client
        if images:
            queue.submit_images(images, user_id, context=context)
        for url in urls:
            queue.submit_url(url, user_id, context=context)
        console.print(f"\n[bold]Processing {len(queue.store)} recipe source(s)...[/bold]\n")
        await queue.drain()


@cli.command()
@click.argument("images", nargs=-1, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--url", "urls", multiple=True, help="Recipe page URL (repeatable).")
@click.option("--collection", "collection_id", default=None, help="Collection to add the new recipes to.")
@click.option("--user", "user_id", envvar="FORKIFY_USER_ID", required=True, help="Acting user id.")
def ingest(images: tuple[Path, ...], urls: tuple[str, ...], collection_id: str | None, user_id: str):
    """Digitize recipe photos and recipe URLs."""
    if not images and not urls:
        err_console.print("[red]Error:[/red] Give at least one image path or --url.")
        raise SystemExit(1)

    config = _load_config()
    client, repository = _load_repository(config)
    queue = IngestionQueue(
        config,
        images=ImageStore(client, config),
        repository=repository,
        extractor=RecipeExtractor(config),
    )
    queue.store.subscribe(_reporter())

    try:
        sources = [ImageSource.from_path(path) for path in images]
        asyncio.run(_run_ingest(queue, sources, urls, user_id, QueueContext(collection_id=collection_id)))
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    console.print()
    console.print(_queue_table(queue.store.all()))
    if queue.store.all(status="error"):
        raise SystemExit(1)


@cli.group("recipes")
def recipes():
    """Manage saved recipes."""
    pass


@recipes.command("list")
@click.option("--user", "user_id", envvar="FORKIFY_USER_ID", required=True, help="Acting user id.")
def recipes_list(user_id: str):
    """Show the user's saved recipes, newest first."""
    _, repository = _load_repository(_load_config())
    try:
        rows = repository.list_recipes(user_id)
    except PersistenceError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if not rows:
        console.print("No recipes yet. Run [bold]forkify ingest[/bold] to add some.")
        return

    table = Table(title="Recipes")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Source")
    for r in rows:
        table.add_row(r.id, escape(r.title), escape(r.source_url or r.source_type or "—"))
    console.print(table)


@recipes.command("delete")
@click.argument("recipe_id")
def recipes_delete(recipe_id: str):
    """Delete a saved recipe and its ingredients, steps and tools."""
    _, repository = _load_repository(_load_config())
    try:
        repository.delete_recipe(recipe_id)
    except PersistenceError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)
    console.print(f"[green]✓[/green] Deleted recipe: [bold]{escape(recipe_id)}[/bold]")
