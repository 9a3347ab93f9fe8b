"""Retrieval stage selection and per-stage row adapters."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from chapterlens.search.topics import (
    extract_snippet,
    extract_topics,
    summary_snippet,
    why_relevant,
)
from chapterlens.storage.models import Capability, SearchResult, SearchType

if TYPE_CHECKING:
    from chapterlens.storage.models import SearchTier


class Stage(StrEnum):
    SUMMARY = "summary_search"
    CHAPTER = "chapter_search"
    FULLTEXT = "fulltext_search"
    SUBSTRING = "substring_fallback"


def plan_stages(tier: SearchTier, has_embedding: bool) -> list[Stage]:
    """Ordered stages to attempt for this tier and embedding state.

    Vector stages need an embedding. Full-text runs when the tier has it, and
    always stands in for the vector stages when there is no embedding. The
    substring fallback is always planned last; the orchestrator only runs it
    when nothing before it produced a result.
    """
    stages: list[Stage] = []
    if has_embedding:
        if tier.enables(Capability.SUMMARY_SEARCH):
            stages.append(Stage.SUMMARY)
        if tier.enables(Capability.CHAPTER_SEARCH):
            stages.append(Stage.CHAPTER)
    if tier.enables(Capability.FULLTEXT_SEARCH) or not has_embedding:
        stages.append(Stage.FULLTEXT)
    stages.append(Stage.SUBSTRING)
    return stages


def similarity(distance: float) -> float:
    """Cosine distance to similarity."""
    return 1.0 - float(distance)


def rank_to_score(rank: float) -> float:
    """Map an FTS5 bm25 rank (negative, lower is better) into 0..1."""
    magnitude = abs(float(rank))
    return magnitude / (1.0 + magnitude)


def _topic_source(row: dict) -> str:
    return row.get("chapter_summary") or row.get("chapter_text") or ""


def summary_results(rows: list[dict], query: str) -> list[SearchResult]:
    results = []
    for row in rows:
        summary = row.get("chapter_summary") or ""
        results.append(
            SearchResult(
                id=row["id"],
                book_title=row.get("book_title") or "",
                chapter_title=row.get("chapter_title") or "",
                relevance_score=similarity(row["distance"]),
                snippet=summary_snippet(summary),
                summary_snippet=summary or None,
                search_type=SearchType.SUMMARY,
                why_relevant=why_relevant(SearchType.SUMMARY, query),
                key_topics=extract_topics(summary),
            )
        )
    return results


def chapter_results(rows: list[dict], query: str) -> list[SearchResult]:
    """Chapter-body hits. Scoping to the summary candidates is the store's job."""
    results = []
    for row in rows:
        text = row.get("chapter_text") or ""
        results.append(
            SearchResult(
                id=row["id"],
                book_title=row.get("book_title") or "",
                chapter_title=row.get("chapter_title") or "",
                relevance_score=similarity(row["distance"]),
                snippet=extract_snippet(text, query),
                search_type=SearchType.CHAPTER,
                why_relevant=why_relevant(SearchType.CHAPTER, query),
                key_topics=extract_topics(_topic_source(row)),
            )
        )
    return results


def fulltext_results(rows: list[dict], query: str) -> list[SearchResult]:
    return [
        SearchResult(
            id=row["id"],
            book_title=row.get("book_title") or "",
            chapter_title=row.get("chapter_title") or "",
            relevance_score=rank_to_score(row["rank"]),
            snippet=extract_snippet(row.get("chapter_text") or "", query),
            search_type=SearchType.FULLTEXT,
            why_relevant=why_relevant(SearchType.FULLTEXT, query),
            key_topics=extract_topics(_topic_source(row)),
        )
        for row in rows
    ]


def substring_results(rows: list[dict], query: str, score: float) -> list[SearchResult]:
    """Unranked matches, all given the same constant score."""
    return [
        SearchResult(
            id=row["id"],
            book_title=row.get("book_title") or "",
            chapter_title=row.get("chapter_title") or "",
            relevance_score=score,
            snippet=extract_snippet(
                row.get("chapter_text") or row.get("chapter_summary") or "", query
            ),
            search_type=SearchType.FULLTEXT,
            why_relevant=why_relevant(SearchType.FULLTEXT, query),
            key_topics=extract_topics(_topic_source(row)),
        )
        for row in rows
    ]
