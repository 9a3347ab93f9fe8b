"""Merge, deduplicate and rank results across retrieval stages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chapterlens.storage.models import BookGroup

if TYPE_CHECKING:
    from chapterlens.storage.models import AnalyzedResult, SearchResult


def sort_by_relevance(results: list[SearchResult]) -> list[SearchResult]:
    """Stable sort, highest relevance_score first."""
    return sorted(results, key=lambda r: r.relevance_score, reverse=True)


def merge_results(
    existing: list[SearchResult],
    incoming: list[SearchResult],
) -> list[SearchResult]:
    """Fold `incoming` into `existing`, keeping one entry per id.

    A duplicate replaces the existing entry only when its score is strictly
    higher; the replacement keeps any existing field the incoming copy leaves
    unset. Scores from different stages are compared as-is.
    """
    merged = list(existing)
    positions = {r.id: i for i, r in enumerate(merged)}

    for result in incoming:
        index = positions.get(result.id)
        if index is None:
            positions[result.id] = len(merged)
            merged.append(result)
            continue
        current = merged[index]
        if result.relevance_score > current.relevance_score:
            merged[index] = current.model_copy(update=result.model_dump(exclude_none=True))

    return sort_by_relevance(merged)


def count_books(results: list[SearchResult]) -> int:
    return len({r.book_title for r in results})


def group_by_book(results: list[SearchResult]) -> list[BookGroup]:
    """Group chapters under their book, best average relevance first."""
    groups: dict[str, list[SearchResult]] = {}
    for result in results:
        groups.setdefault(result.book_title, []).append(result)

    book_groups = [
        BookGroup(
            book_title=title,
            chapters=chapters,
            average_relevance=sum(c.relevance_score for c in chapters) / len(chapters),
        )
        for title, chapters in groups.items()
    ]
    return sorted(book_groups, key=lambda g: g.average_relevance, reverse=True)


def apply_analysis(
    results: list[SearchResult],
    analyzed: list[AnalyzedResult],
) -> list[SearchResult]:
    """Overwrite score, explanation and topics of analyzed ids, then re-rank.

    Results the analyzer did not return keep their retrieval-stage values.
    """
    by_id = {a.id: a for a in analyzed}
    updated = []
    for result in results:
        analysis = by_id.get(result.id)
        if analysis is None:
            updated.append(result)
            continue
        changes: dict = {
            "relevance_score": analysis.enhanced_score,
            "why_relevant": analysis.relevance_reason or result.why_relevant,
        }
        if analysis.key_topics:
            changes["key_topics"] = analysis.key_topics
        if analysis.analysis:
            changes["analysis"] = analysis.analysis
        updated.append(result.model_copy(update=changes))
    return sort_by_relevance(updated)
