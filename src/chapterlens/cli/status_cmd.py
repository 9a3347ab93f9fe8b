"""CLI status command: corpus and index health."""

from __future__ import annotations

import typer
from rich.console import Console

console = Console()


def status_cmd() -> None:
    """Show corpus counts and which search components are present."""
    import os

    from chapterlens.config import Config
    from chapterlens.storage.sqlite_store import SQLiteStore

    config = Config()

    console.print("[bold]chapterlens status[/bold]\n")
    console.print(f"Config dir: {config.base_dir}")
    console.print(f"Database:   {config.db_path}")
    console.print(f"Vectors:    {config.lance_path}")
    console.print()

    if not config.db_path.exists():
        console.print("[red]Database: NOT FOUND[/red]")
        raise typer.Exit(code=1)

    store = SQLiteStore(config.db_path)
    try:
        console.print("[green]Database: OK[/green]")
        console.print(f"  Books:    {store.count_books()}")
        console.print(f"  Chapters: {store.count_chapters()}")
    finally:
        store.close()

    if config.lance_path.exists():
        console.print("[green]Vector index: OK[/green]")
    else:
        console.print("[yellow]Vector index: NOT FOUND[/yellow]")

    if os.environ.get("ANTHROPIC_API_KEY"):
        console.print("[green]Relevance analysis: ENABLED[/green]")
    else:
        console.print("[yellow]Relevance analysis: DISABLED (no ANTHROPIC_API_KEY)[/yellow]")
