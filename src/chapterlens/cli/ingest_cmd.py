"""CLI ingest command: load a JSON corpus of books and chapters."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

console = Console()


def ingest_cmd(
    corpus: Annotated[Path, typer.Argument(help="JSON file with a list of books.")],
    embed: Annotated[
        bool, typer.Option("--embed/--no-embed", help="Index chapter vectors in LanceDB.")
    ] = True,
) -> None:
    """Add books and chapters to the corpus. Existing titles are skipped."""
    import json

    from chapterlens.config import Config
    from chapterlens.logging.logger import SearchLogger
    from chapterlens.search.embedder import Embedder
    from chapterlens.search.lance_store import LanceStore
    from chapterlens.storage.ingest import ingest_corpus, load_corpus
    from chapterlens.storage.sqlite_store import SQLiteStore

    if not corpus.exists():
        console.print(f"[red]Corpus file not found:[/red] {escape(str(corpus))}")
        raise typer.Exit(code=1)

    try:
        books = load_corpus(corpus)
    except (json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Invalid corpus:[/red] {escape(str(e))}")
        raise typer.Exit(code=1) from e

    config = Config()
    config.ensure_dirs()
    store = SQLiteStore(config.db_path)
    try:
        lance_store = None
        if embed:
            embedder = Embedder(config)
            if embedder.load():
                lance_store = LanceStore(config, embedder)
                lance_store.connect()
            else:
                console.print("[yellow]Embedding model unavailable, skipping vectors.[/yellow]")

        stats = ingest_corpus(
            store,
            books,
            lance_store=lance_store,
            event_logger=SearchLogger(config.log_dir, store.conn),
        )
    finally:
        store.close()

    console.print(
        f"[green]Ingested[/green] {stats.books} books, {stats.chapters} chapters"
        f" ({stats.skipped_books} skipped, {stats.vectors} vectors)"
    )
