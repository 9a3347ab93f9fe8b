"""Collaborator interfaces injected into the search orchestrator."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chapterlens.storage.models import AnalysisLevel, AnalyzedResult, SearchResult


class VectorTarget(StrEnum):
    SUMMARY = "summary"
    CHAPTER = "chapter"


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class VectorStore(Protocol):
    """Rows carry id, book_title, chapter_title, chapter_summary, chapter_text, distance."""

    async def search(
        self,
        vector: list[float],
        *,
        target: VectorTarget,
        threshold: float,
        limit: int,
        candidate_ids: list[int] | None = None,
    ) -> list[dict]: ...


class FullTextStore(Protocol):
    """Rows carry the chapter fields plus a `rank`."""

    async def search_fulltext(self, query: str, limit: int) -> list[dict]: ...


class SubstringStore(Protocol):
    """Rows carry the chapter fields, unranked."""

    async def search_substring(self, query: str, limit: int) -> list[dict]: ...


class Analyzer(Protocol):
    async def analyze(
        self,
        query: str,
        results: list[SearchResult],
        level: AnalysisLevel,
    ) -> list[AnalyzedResult]: ...
