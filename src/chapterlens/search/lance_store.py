"""LanceDB table management for summary and chapter-body vector search."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import pyarrow as pa

from chapterlens.search.protocols import VectorTarget

if TYPE_CHECKING:
    from chapterlens.config import Config
    from chapterlens.search.embedder import Embedder

logger = logging.getLogger(__name__)

TABLE_NAME = "chapters_vec"

_VECTOR_COLUMNS: dict[VectorTarget, str] = {
    VectorTarget.SUMMARY: "summary_vector",
    VectorTarget.CHAPTER: "chapter_vector",
}

_ROW_FIELDS = ("id", "book_title", "chapter_title", "chapter_summary", "chapter_text")


def _chapter_schema(dim: int) -> pa.Schema:
    return pa.schema(
        [
            pa.field("id", pa.int64()),
            pa.field("book_title", pa.string()),
            pa.field("chapter_title", pa.string()),
            pa.field("chapter_summary", pa.string()),
            pa.field("chapter_text", pa.string()),
            pa.field("summary_vector", pa.list_(pa.float32(), dim)),
            pa.field("chapter_vector", pa.list_(pa.float32(), dim)),
        ]
    )


def _id_filter(candidate_ids: list[int]) -> str:
    return f"id IN ({', '.join(str(int(i)) for i in candidate_ids)})"


class LanceStore:
    """Holds one row per chapter with a summary vector and a chapter-body vector."""

    def __init__(self, config: Config, embedder: Embedder) -> None:
        self.config = config
        self.embedder = embedder
        self._db: Any = None
        self._table: Any = None

    def connect(self) -> None:
        """Connect to LanceDB and ensure the chapter table exists."""
        import lancedb

        self._db = lancedb.connect(str(self.config.lance_path))
        if TABLE_NAME not in set(self._db.table_names()):
            self._db.create_table(TABLE_NAME, schema=_chapter_schema(self.config.embedding_dim))
        self._table = self._db.open_table(TABLE_NAME)

    def count(self) -> int:
        return int(self._table.count_rows())

    def add_chapters(self, rows: list[dict]) -> int:
        """Embed summaries and chapter bodies, then store them. Returns rows added.

        Each row needs id, book_title, chapter_title, chapter_summary, chapter_text.
        A chapter without a summary is embedded from its title.
        """
        if not rows:
            return 0
        summaries = [r.get("chapter_summary") or r["chapter_title"] for r in rows]
        bodies = [r.get("chapter_text") or r["chapter_title"] for r in rows]
        summary_vectors = self.embedder.embed_texts(summaries, query_type="document")
        chapter_vectors = self.embedder.embed_texts(bodies, query_type="document")

        ids = [int(r["id"]) for r in rows]
        self._table.delete(_id_filter(ids))
        self._table.add(
            [
                {
                    "id": int(row["id"]),
                    "book_title": row.get("book_title") or "",
                    "chapter_title": row.get("chapter_title") or "",
                    "chapter_summary": row.get("chapter_summary") or "",
                    "chapter_text": row.get("chapter_text") or "",
                    "summary_vector": summary_vec,
                    "chapter_vector": chapter_vec,
                }
                for row, summary_vec, chapter_vec in zip(
                    rows, summary_vectors, chapter_vectors, strict=True
                )
            ]
        )
        logger.info("Indexed %d chapters into %s", len(rows), TABLE_NAME)
        return len(rows)

    def search_sync(
        self,
        vector: list[float],
        *,
        target: VectorTarget,
        threshold: float,
        limit: int,
        candidate_ids: list[int] | None = None,
    ) -> list[dict]:
        """Cosine search on one vector column, keeping rows with similarity >= threshold."""
        if self._table.count_rows() == 0:
            return []
        query = (
            self._table.search(vector, vector_column_name=_VECTOR_COLUMNS[target])
            .distance_type("cosine")
            .limit(limit)
        )
        if candidate_ids is not None:
            if not candidate_ids:
                return []
            query = query.where(_id_filter(candidate_ids), prefilter=True)

        max_distance = 1.0 - threshold
        rows = []
        for r in query.to_list():
            if r["_distance"] > max_distance:
                continue
            row = {name: r.get(name) for name in _ROW_FIELDS}
            row["distance"] = float(r["_distance"])
            rows.append(row)
        return rows

    async def search(
        self,
        vector: list[float],
        *,
        target: VectorTarget,
        threshold: float,
        limit: int,
        candidate_ids: list[int] | None = None,
    ) -> list[dict]:
        return await asyncio.to_thread(
            self.search_sync,
            vector,
            target=target,
            threshold=threshold,
            limit=limit,
            candidate_ids=candidate_ids,
        )
