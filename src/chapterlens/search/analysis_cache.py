"""SQLite cache of analyzer output per (chapter, query, level)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from chapterlens.storage.models import AnalyzedResult
from chapterlens.storage.sqlite_store import normalize_query

if TYPE_CHECKING:
    import aiosqlite

    from chapterlens.storage.models import AnalysisLevel


class AnalysisCache:
    """Avoids paying for the same analysis twice. Queries match case-insensitively."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def lookup(
        self,
        query: str,
        level: AnalysisLevel,
        chapter_ids: list[int],
    ) -> dict[int, AnalyzedResult]:
        """Cached analyses for the given chapters; bumps hit_count on each hit."""
        if not chapter_ids:
            return {}
        placeholders = ", ".join("?" for _ in chapter_ids)
        key = normalize_query(query)
        cursor = await self.db.execute(
            f"""SELECT chapter_id, enhanced_score, relevance_reason, key_topics, analysis_text
                FROM analysis_cache
                WHERE query_text = ? AND analysis_level = ?
                  AND chapter_id IN ({placeholders})""",
            (key, str(level), *chapter_ids),
        )
        rows = await cursor.fetchall()
        if not rows:
            return {}

        hits = {
            row["chapter_id"]: AnalyzedResult(
                id=row["chapter_id"],
                enhanced_score=row["enhanced_score"],
                relevance_reason=row["relevance_reason"],
                key_topics=json.loads(row["key_topics"]),
                analysis=row["analysis_text"],
            )
            for row in rows
        }
        hit_placeholders = ", ".join("?" for _ in hits)
        await self.db.execute(
            f"""UPDATE analysis_cache SET hit_count = hit_count + 1
                WHERE query_text = ? AND analysis_level = ?
                  AND chapter_id IN ({hit_placeholders})""",
            (key, str(level), *hits),
        )
        await self.db.commit()
        return hits

    async def store(
        self,
        query: str,
        level: AnalysisLevel,
        analyses: list[AnalyzedResult],
    ) -> None:
        if not analyses:
            return
        key = normalize_query(query)
        await self.db.executemany(
            """INSERT OR REPLACE INTO analysis_cache
               (chapter_id, query_text, analysis_level, enhanced_score,
                relevance_reason, key_topics, analysis_text)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    a.id,
                    key,
                    str(level),
                    a.enhanced_score,
                    a.relevance_reason,
                    json.dumps(a.key_topics),
                    a.analysis,
                )
                for a in analyses
            ],
        )
        await self.db.commit()
