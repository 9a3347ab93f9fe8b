"""Root Typer app for the chapterlens CLI."""

from __future__ import annotations

import typer

app = typer.Typer(
    name="chapterlens",
    help="chapterlens: Tiered chapter discovery across a book corpus.",
    no_args_is_help=True,
)


def _register_commands() -> None:
    """Register all CLI commands."""
    from chapterlens.cli.history_cmd import history_cmd
    from chapterlens.cli.ingest_cmd import ingest_cmd
    from chapterlens.cli.search_cmd import search_cmd
    from chapterlens.cli.serve_cmd import serve_cmd
    from chapterlens.cli.status_cmd import status_cmd
    from chapterlens.cli.tiers_cmd import tiers_cmd

    app.command(name="ingest")(ingest_cmd)
    app.command(name="search")(search_cmd)
    app.command(name="tiers")(tiers_cmd)
    app.command(name="status")(status_cmd)
    app.command(name="history")(history_cmd)
    app.command(name="serve")(serve_cmd)


_register_commands()
