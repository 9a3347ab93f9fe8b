"""Shared fixtures for all test modules."""

import sqlite3
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from chapterlens.config import Config
from chapterlens.logging.logger import SearchLogger
from chapterlens.storage.migrations import migrate
from chapterlens.storage.sqlite_store import SQLiteStore


@pytest.fixture
def tmp_config(tmp_path):
    """Config pointing to a temp directory with a fresh DB and small vectors."""
    config = Config(base_dir=tmp_path / ".chapterlens", embedding_dim=8)
    config.ensure_dirs()
    return config


@pytest.fixture
def store(tmp_config):
    """SQLiteStore with migrated DB."""
    s = SQLiteStore(tmp_config.db_path)
    yield s
    s.close()


@pytest.fixture
def logger(tmp_config, store):
    """SearchLogger writing to temp dir."""
    return SearchLogger(tmp_config.log_dir, store.conn)


@pytest.fixture
def seeded_store(store):
    """Two books, five chapters, FTS populated."""
    leadership = store.add_book("The Servant Leader", author_name="R. Greenleaf")
    trust = store.add_book("Speed of Trust", author_name="S. Covey")
    store.add_chapter(
        book_id=leadership.id,
        chapter_title="Leading by Serving",
        chapter_text="Leadership begins with listening. A leader who serves builds loyalty.",
        chapter_summary="Servant leadership and the habit of listening first.",
        chapter_number=1,
    )
    store.add_chapter(
        book_id=leadership.id,
        chapter_title="Stewardship",
        chapter_text="Stewardship means holding the organisation in trust for others.",
        chapter_summary="Holding institutions in trust for future generations.",
        chapter_number=2,
    )
    store.add_chapter(
        book_id=leadership.id,
        chapter_title="Foresight",
        chapter_text="Foresight lets a leader see the likely outcome of a situation.",
        chapter_summary="Anticipating consequences as a leadership discipline.",
        chapter_number=3,
    )
    store.add_chapter(
        book_id=trust.id,
        chapter_title="The Economics of Trust",
        chapter_text="When trust goes down, speed goes down and cost goes up.",
        chapter_summary="Low trust acts as a tax on every transaction.",
        chapter_number=1,
    )
    store.add_chapter(
        book_id=trust.id,
        chapter_title="Self Trust",
        chapter_text="Credibility starts with keeping commitments you make to yourself.",
        chapter_summary="The four cores of credibility.",
        chapter_number=2,
    )
    return store


@pytest.fixture
def mock_embedder(tmp_config):
    """Embedder with deterministic fake vectors, no real model needed."""
    import numpy as np

    from chapterlens.search.embedder import Embedder

    e = Embedder(tmp_config)
    e._available = True
    e._model = None
    dim = tmp_config.embedding_dim

    def fake_embed_texts(texts, query_type="document"):
        rng = np.random.default_rng(42)
        vecs = rng.standard_normal((len(texts), dim))
        norms = np.linalg.norm(vecs, axis=1, keepdims=True)
        return (vecs / norms).tolist()

    def fake_embed_single(text, query_type="document"):
        return fake_embed_texts([text], query_type)[0]

    e.embed_texts = fake_embed_texts  # type: ignore[method-assign]
    e.embed_single = fake_embed_single  # type: ignore[method-assign]
    return e


@pytest.fixture
def lance_store(tmp_config, mock_embedder):
    """LanceDB store with mock embedder for fast tests."""
    from chapterlens.search.lance_store import LanceStore

    store = LanceStore(tmp_config, mock_embedder)
    store.connect()
    return store


@pytest.fixture
async def async_db(tmp_config):
    """Async SQLite connection with migrated schema."""
    sync_conn = sqlite3.connect(str(tmp_config.db_path))
    migrate(sync_conn)
    sync_conn.close()

    db = await aiosqlite.connect(str(tmp_config.db_path))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await db.execute("PRAGMA busy_timeout=3000")

    yield db
    await db.close()


# -----------------------------------------------------------------------
# Orchestrator collaborators
# -----------------------------------------------------------------------


@pytest.fixture
def embedder():
    e = MagicMock()
    e.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return e


@pytest.fixture
def vector_store():
    s = MagicMock()
    s.search = AsyncMock(return_value=[])
    return s


@pytest.fixture
def text_store():
    s = MagicMock()
    s.search_fulltext = AsyncMock(return_value=[])
    s.search_substring = AsyncMock(return_value=[])
    return s


@pytest.fixture
def analyzer():
    a = MagicMock()
    a.analyze = AsyncMock(return_value=[])
    return a
