"""Load a JSON book corpus into SQLite and, when available, LanceDB."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, TypeAdapter

if TYPE_CHECKING:
    from pathlib import Path

    from chapterlens.logging.logger import SearchLogger
    from chapterlens.search.lance_store import LanceStore
    from chapterlens.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class CorpusChapter(BaseModel):
    chapter_title: str
    chapter_text: str = ""
    chapter_summary: str = ""
    chapter_number: int | None = None


class CorpusBook(BaseModel):
    title: str
    author_name: str | None = None
    cover_url: str | None = None
    isbn_13: str | None = None
    chapters: list[CorpusChapter] = Field(default_factory=list)


_CORPUS = TypeAdapter(list[CorpusBook])


@dataclass
class IngestStats:
    books: int = 0
    chapters: int = 0
    skipped_books: int = 0
    vectors: int = 0


def load_corpus(path: Path) -> list[CorpusBook]:
    """Parse and validate a corpus file. Raises pydantic.ValidationError on bad shape."""
    return _CORPUS.validate_python(json.loads(path.read_text()))


def ingest_corpus(
    store: SQLiteStore,
    books: list[CorpusBook],
    *,
    lance_store: LanceStore | None = None,
    event_logger: SearchLogger | None = None,
) -> IngestStats:
    """Insert books and chapters. Books whose title already exists are skipped.

    A book and its chapters land in one transaction. If vector indexing then
    fails the book is deleted again before the error propagates, so a re-run
    picks it up instead of skipping it.
    """
    stats = IngestStats()
    for corpus_book in books:
        if store.find_book(corpus_book.title) is not None:
            stats.skipped_books += 1
            continue

        book, chapter_ids = store.add_book_with_chapters(
            corpus_book.title,
            [
                {
                    "chapter_title": chapter.chapter_title,
                    "chapter_text": chapter.chapter_text,
                    "chapter_summary": chapter.chapter_summary,
                    "chapter_number": chapter.chapter_number or number,
                }
                for number, chapter in enumerate(corpus_book.chapters, start=1)
            ],
            author_name=corpus_book.author_name,
            cover_url=corpus_book.cover_url,
            isbn_13=corpus_book.isbn_13,
        )

        if lance_store is not None and chapter_ids:
            try:
                vectors = lance_store.add_chapters(store.chapter_rows(chapter_ids))
            except Exception:
                logger.exception("Indexing failed for %r, rolling back book", book.title)
                store.delete_book(book.id)
                raise
            stats.vectors += vectors

        stats.books += 1
        stats.chapters += len(chapter_ids)

        if event_logger is not None:
            event_logger.log(
                "ingest.book",
                {"book_id": book.id, "title": book.title, "chapters": len(chapter_ids)},
            )

    logger.info(
        "Ingested %d books, %d chapters (%d skipped)",
        stats.books,
        stats.chapters,
        stats.skipped_books,
    )
    return stats
