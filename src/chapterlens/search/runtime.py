"""Wire the search service to its real collaborators."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiosqlite

from chapterlens.logging.logger import SearchLogger
from chapterlens.search.analysis_cache import AnalysisCache
from chapterlens.search.embedder import Embedder
from chapterlens.search.lance_store import LanceStore
from chapterlens.search.orchestrator import TieredSearchService
from chapterlens.search.text_store import TextSearchStore
from chapterlens.storage.sqlite_store import SQLiteStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chapterlens.config import Config
    from chapterlens.search.analyzer import RelevanceAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class SearchRuntime:
    """Everything a process needs to serve searches."""

    service: TieredSearchService
    store: SQLiteStore
    db: aiosqlite.Connection
    embedder: Embedder
    lance_store: LanceStore | None
    analyzer: RelevanceAnalyzer | None


async def open_db(config: Config) -> aiosqlite.Connection:
    db = await aiosqlite.connect(str(config.db_path))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await db.execute("PRAGMA busy_timeout=3000")
    return db


def _connect_lance(config: Config, embedder: Embedder) -> LanceStore | None:
    store = LanceStore(config, embedder)
    try:
        store.connect()
    except Exception:
        logger.warning("LanceDB unavailable, vector stages disabled.", exc_info=True)
        return None
    return store


def _build_analyzer(config: Config, db: aiosqlite.Connection) -> RelevanceAnalyzer | None:
    if not os.environ.get("ANTHROPIC_API_KEY"):
        logger.info("ANTHROPIC_API_KEY not set, relevance analysis disabled.")
        return None
    from chapterlens.search.analyzer import RelevanceAnalyzer

    return RelevanceAnalyzer(config, cache=AnalysisCache(db))


@asynccontextmanager
async def open_runtime(config: Config, *, load_embedder: bool = True) -> AsyncIterator[SearchRuntime]:
    """Open stores, load the embedding model and build the service.

    A component that fails to start is left out; the service degrades around it.
    """
    config.ensure_dirs()
    store = SQLiteStore(config.db_path)  # runs migrations
    db = await open_db(config)

    embedder = Embedder(config)
    if load_embedder:
        await asyncio.to_thread(embedder.load)
    lance_store = await asyncio.to_thread(_connect_lance, config, embedder)
    analyzer = _build_analyzer(config, db)
    text_store = TextSearchStore(db)

    service = TieredSearchService(
        config,
        embedder=embedder,
        vector_store=lance_store,
        fulltext_store=text_store,
        substring_store=text_store,
        analyzer=analyzer,
        event_logger=SearchLogger(config.log_dir, store.conn),
    )
    try:
        yield SearchRuntime(
            service=service,
            store=store,
            db=db,
            embedder=embedder,
            lance_store=lance_store,
            analyzer=analyzer,
        )
    finally:
        if analyzer is not None:
            await analyzer.close()
        await db.close()
        store.close()
