"""SQLite FTS5 full-text search and LIKE substring fallback over the chapter corpus."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

_SELECT_CHAPTER = (
    "SELECT c.id, b.title AS book_title, c.chapter_title, "
    "c.chapter_summary, c.chapter_text"
)

_TOKEN = re.compile(r"\w+", re.UNICODE)


def fts_match_expression(query: str) -> str:
    """Quote each word so user input can't inject FTS5 syntax. Words are ANDed."""
    return " ".join(f'"{token}"' for token in _TOKEN.findall(query))


def like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class TextSearchStore:
    """Lexical search over the chapters table on an async SQLite connection."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def search_fulltext(self, query: str, limit: int) -> list[dict]:
        """FTS5 search ordered by bm25 rank (most relevant first)."""
        match = fts_match_expression(query)
        if not match:
            return []
        cursor = await self.db.execute(
            f"{_SELECT_CHAPTER}, chapters_fts.rank AS rank "
            "FROM chapters_fts "
            "JOIN chapters c ON c.id = chapters_fts.rowid "
            "JOIN books b ON b.id = c.book_id "
            "WHERE chapters_fts MATCH ? "
            "ORDER BY chapters_fts.rank LIMIT ?",
            (match, limit),
        )
        return [dict(r) for r in await cursor.fetchall()]

    async def search_substring(self, query: str, limit: int) -> list[dict]:
        """Case-insensitive substring match on chapter, summary and book-title fields.

        The three lookups are independent and run concurrently; rows are
        deduplicated by id in field order.
        """
        pattern = like_pattern(query)
        batches = await asyncio.gather(
            self._like(
                "c.chapter_title LIKE ? ESCAPE '\\' OR c.chapter_text LIKE ? ESCAPE '\\'",
                (pattern, pattern),
                limit,
            ),
            self._like("c.chapter_summary LIKE ? ESCAPE '\\'", (pattern,), limit),
            self._like("b.title LIKE ? ESCAPE '\\'", (pattern,), limit),
        )
        seen: set[int] = set()
        rows: list[dict] = []
        for batch in batches:
            for row in batch:
                if row["id"] in seen:
                    continue
                seen.add(row["id"])
                rows.append(row)
        return rows[:limit]

    async def _like(self, condition: str, params: tuple, limit: int) -> list[dict]:
        cursor = await self.db.execute(
            f"{_SELECT_CHAPTER} FROM chapters c JOIN books b ON b.id = c.book_id "
            f"WHERE {condition} ORDER BY c.id LIMIT ?",
            (*params, limit),
        )
        return [dict(r) for r in await cursor.fetchall()]
