"""CLI serve command: run the HTTP search service."""

from __future__ import annotations

from typing import Annotated

import typer


def serve_cmd(
    host: Annotated[str | None, typer.Option(help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port.")] = None,
) -> None:
    """Serve /api/search and the account endpoints under uvicorn."""
    from chapterlens.api.server import run_server
    from chapterlens.config import Config

    config = Config()
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    run_server(config)
