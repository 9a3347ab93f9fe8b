"""CLI history command: an account's recent searches and search stats."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


def history_cmd(
    account: Annotated[str, typer.Argument(help="Account id.")],
    limit: Annotated[int, typer.Option(min=1, help="How many searches to show.")] = 20,
    stats: Annotated[bool, typer.Option("--stats", help="Show totals and top queries.")] = False,
    clear: Annotated[bool, typer.Option("--clear", help="Delete the account's history.")] = False,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """Show, summarize or clear the searches recorded for an account."""
    from chapterlens.config import Config
    from chapterlens.storage.sqlite_store import SQLiteStore

    config = Config()
    if not config.db_path.exists():
        console.print("[red]Database not found.[/red] Run chapterlens ingest first.")
        raise typer.Exit(code=1)

    store = SQLiteStore(config.db_path)
    try:
        if clear:
            deleted = store.clear_search_history(account)
            console.print(f"Deleted {deleted} searches for {escape(account)}")
            return

        if stats:
            summary = store.get_search_stats(account)
            if output_json:
                console.print(
                    json.dumps(summary.model_dump(), indent=2), soft_wrap=True, markup=False
                )
                return
            console.print(f"Total searches: {summary.total_searches}")
            console.print(f"This month:     {summary.this_month_searches}")
            for item in summary.top_queries:
                console.print(f"  {item.count:>3}  {escape(item.query)}")
            return

        entries = store.get_search_history(account, limit)
    finally:
        store.close()

    if output_json:
        console.print(
            json.dumps([e.model_dump() for e in entries], indent=2), soft_wrap=True, markup=False
        )
        return

    if not entries:
        console.print("[dim]No searches recorded.[/dim]")
        return

    table = Table(title=f"Search history: {escape(account)}")
    table.add_column("ID", justify="right", no_wrap=True)
    table.add_column("When", no_wrap=True)
    table.add_column("Query")
    table.add_column("Plan", no_wrap=True)
    table.add_column("Chapters", justify="right")
    table.add_column("Books", justify="right")
    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.created_at[:16].replace("T", " "),
            escape(entry.query_text),
            entry.plan,
            str(entry.results_count),
            str(entry.books_count),
        )
    console.print(table)
