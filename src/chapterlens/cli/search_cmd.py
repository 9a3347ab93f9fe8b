"""CLI search command: run one tiered search against the local corpus."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from chapterlens.search.exceptions import ChapterLensError

if TYPE_CHECKING:
    from chapterlens.config import Config
    from chapterlens.storage.models import TieredSearchResponse

console = Console()


async def _search(
    config: Config,
    query: str,
    plan: str,
    queries_used: int,
    load_embedder: bool,
) -> TieredSearchResponse:
    from chapterlens.search.runtime import open_runtime

    async with open_runtime(config, load_embedder=load_embedder) as runtime:
        return await runtime.service.perform_search(query, plan, queries_used)


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query string.")],
    plan: Annotated[str, typer.Option(help="Subscription plan to search as.")] = "free",
    used: Annotated[int, typer.Option(min=0, help="Queries already used this period.")] = 0,
    embed: Annotated[
        bool, typer.Option("--embed/--no-embed", help="Load the embedding model.")
    ] = True,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """Search chapters with the stages the plan allows."""
    from chapterlens.config import Config

    config = Config()
    if not config.db_path.exists():
        console.print("[red]Database not found.[/red] Run chapterlens ingest first.")
        raise typer.Exit(code=1)

    try:
        response = asyncio.run(_search(config, query, plan, used, embed))
    except ChapterLensError as e:
        console.print(f"[red]Search failed:[/red] {escape(str(e))}")
        raise typer.Exit(code=1) from e

    if output_json:
        console.print(
            json.dumps(response.model_dump(mode="json"), indent=2), soft_wrap=True, markup=False
        )
        return

    if response.upgrade_required and response.upgrade_message:
        console.print(f"[yellow]{response.upgrade_message}[/yellow]")

    if not response.results:
        console.print("[dim]No results found.[/dim]")
        return

    table = Table(
        title=f"{response.tier.name}: {response.total_chapters_found} chapters"
        f" in {response.total_books_found} books",
        show_lines=True,
    )
    table.add_column("Score", justify="right")
    table.add_column("Book", max_width=30)
    table.add_column("Chapter", max_width=30)
    table.add_column("Type")
    table.add_column("Why", max_width=50)

    for r in response.results:
        table.add_row(
            f"{r.relevance_score:.2f}",
            escape(r.book_title),
            escape(r.chapter_title),
            str(r.search_type),
            escape(r.why_relevant),
        )
    console.print(table)

    remaining = (
        "unlimited" if response.queries_remaining is None else str(response.queries_remaining)
    )
    console.print(f"Queries used: {response.queries_used} (remaining: {remaining})")
