"""Tests for the tiered search orchestrator with mocked collaborators."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import pytest

from chapterlens.search.exceptions import (
    InvalidQueryError,
    ProviderUnavailableError,
    SearchUnavailableError,
)
from chapterlens.search.orchestrator import TieredSearchService
from chapterlens.search.protocols import VectorTarget
from chapterlens.storage.models import AnalysisLevel, AnalyzedResult, SearchType, StageStatus


def make_row(chapter_id, *, distance=0.2, rank=None, book="Book A"):
    """Row in the shape the vector and text stores return."""
    row = {
        "id": chapter_id,
        "book_title": book,
        "chapter_title": f"Chapter {chapter_id}",
        "chapter_summary": f"Summary of chapter {chapter_id} about leadership",
        "chapter_text": f"Chapter {chapter_id} text on leadership and trust.",
        "distance": distance,
    }
    if rank is not None:
        row["rank"] = rank
    return row


def route_vectors(summary_rows, chapter_rows):
    """side_effect for VectorStore.search dispatching on the target column."""

    async def _search(vector, *, target, threshold, limit, candidate_ids=None):
        return summary_rows if target is VectorTarget.SUMMARY else chapter_rows

    return _search


@pytest.fixture
def make_service(tmp_config, embedder, vector_store, text_store, analyzer):
    def _make(**overrides):
        kwargs = {
            "embedder": embedder,
            "vector_store": vector_store,
            "fulltext_store": text_store,
            "substring_store": text_store,
            "analyzer": analyzer,
        }
        kwargs.update(overrides)
        return TieredSearchService(tmp_config, **kwargs)

    return _make


def stage_status(response, stage):
    return next(r.status for r in response.stages if r.stage == stage)


# ---------------------------------------------------------------------------
# Input validation and quota gate
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    async def test_blank_query_rejected(self, make_service, query):
        with pytest.raises(InvalidQueryError):
            await make_service().perform_search(query, "free", 0)

    async def test_negative_counter_rejected(self, make_service):
        with pytest.raises(InvalidQueryError):
            await make_service().perform_search("leadership", "free", -1)

    async def test_query_is_trimmed(self, make_service, text_store):
        text_store.search_substring.return_value = [make_row(1)]
        response = await make_service(embedder=None).perform_search("  trust  ", "free", 0)
        assert response.query == "trust"
        text_store.search_fulltext.assert_awaited_once()
        assert text_store.search_fulltext.call_args[0][0] == "trust"


class TestQuotaGate:
    async def test_exhausted_quota_calls_nothing(
        self, make_service, embedder, vector_store, text_store, analyzer
    ):
        """Free tier at 10/10: no collaborator is touched and the counter is unchanged."""
        response = await make_service().perform_search("leadership", "free", 10)

        assert response.upgrade_required is True
        assert response.results == []
        assert response.queries_used == 10
        assert response.queries_remaining == 0
        assert "10 monthly search limit" in response.upgrade_message
        assert "Scholar" in response.upgrade_message
        embedder.embed.assert_not_called()
        vector_store.search.assert_not_called()
        text_store.search_fulltext.assert_not_called()
        text_store.search_substring.assert_not_called()
        analyzer.analyze.assert_not_called()

    async def test_over_quota_also_gated(self, make_service):
        response = await make_service().perform_search("leadership", "scholar", 750)
        assert response.upgrade_required is True
        assert response.queries_used == 750

    async def test_last_query_in_quota_allowed(self, make_service, vector_store):
        vector_store.search.side_effect = route_vectors([make_row(1)], [])
        response = await make_service().perform_search("leadership", "free", 9)
        assert response.upgrade_required is False
        assert response.queries_used == 10
        assert response.queries_remaining == 0

    async def test_unlimited_tier_never_gated(self, make_service, vector_store):
        vector_store.search.side_effect = route_vectors([make_row(1)], [])
        response = await make_service().perform_search("leadership", "institution", 1_000_000)
        assert response.upgrade_required is False
        assert response.queries_used == 1_000_001
        assert response.queries_remaining is None

    async def test_unknown_plan_uses_free_tier(self, make_service):
        response = await make_service().perform_search("leadership", "platinum", 10)
        assert response.tier.name == "Free"
        assert response.upgrade_required is True


# ---------------------------------------------------------------------------
# Retrieval chain
# ---------------------------------------------------------------------------


class TestRetrievalChain:
    async def test_free_tier_summary_then_chapter(self, make_service, vector_store, text_store):
        """8 summary hits, chapter stage adds 2 more: 10 found, 5 returned."""
        summary_rows = [make_row(i, distance=0.05 * i) for i in range(1, 9)]
        chapter_rows = [make_row(i, distance=0.5) for i in range(1, 7)] + [
            make_row(9, distance=0.45, book="Book B"),
            make_row(10, distance=0.45, book="Book B"),
        ]
        vector_store.search.side_effect = route_vectors(summary_rows, chapter_rows)

        response = await make_service().perform_search("leadership", "free", 0)

        assert response.total_chapters_found == 10
        assert response.total_books_found == 2
        assert len(response.results) == 5
        assert [r.id for r in response.results] == [1, 2, 3, 4, 5]
        assert response.queries_used == 1
        assert response.queries_remaining == 9
        assert response.upgrade_required is False
        assert response.embedding_used is True
        # Free tier has neither full-text nor analysis.
        text_store.search_fulltext.assert_not_called()
        assert stage_status(response, "substring_fallback") == StageStatus.SKIPPED

    async def test_chapter_stage_scoped_to_summary_ids(self, make_service, vector_store):
        summary_rows = [make_row(1), make_row(2), make_row(3)]
        vector_store.search.side_effect = route_vectors(summary_rows, [])

        await make_service().perform_search("leadership", "free", 0)

        chapter_call = next(
            c for c in vector_store.search.call_args_list if c.kwargs["target"] is VectorTarget.CHAPTER
        )
        assert sorted(chapter_call.kwargs["candidate_ids"]) == [1, 2, 3]
        summary_call = next(
            c for c in vector_store.search.call_args_list if c.kwargs["target"] is VectorTarget.SUMMARY
        )
        assert summary_call.kwargs.get("candidate_ids") is None

    async def test_chapter_stage_skipped_without_summary_hits(self, make_service, vector_store, text_store):
        text_store.search_substring.return_value = []
        response = await make_service().perform_search("leadership", "free", 0)

        targets = [c.kwargs["target"] for c in vector_store.search.call_args_list]
        assert targets == [VectorTarget.SUMMARY]
        assert stage_status(response, "chapter_search") == StageStatus.SKIPPED

    async def test_stage_thresholds_from_config(self, make_service, vector_store, tmp_config):
        vector_store.search.side_effect = route_vectors([make_row(1)], [])
        await make_service().perform_search("leadership", "free", 0)

        by_target = {c.kwargs["target"]: c.kwargs for c in vector_store.search.call_args_list}
        assert by_target[VectorTarget.SUMMARY]["threshold"] == tmp_config.summary_threshold
        assert by_target[VectorTarget.SUMMARY]["limit"] == tmp_config.summary_limit
        assert by_target[VectorTarget.CHAPTER]["threshold"] == tmp_config.chapter_threshold
        assert by_target[VectorTarget.CHAPTER]["limit"] == tmp_config.chapter_limit

    async def test_duplicate_ids_keep_stronger_score(self, make_service, vector_store):
        vector_store.search.side_effect = route_vectors(
            [make_row(1, distance=0.4), make_row(2, distance=0.1)],
            [make_row(1, distance=0.05), make_row(2, distance=0.3)],
        )
        response = await make_service().perform_search("leadership", "free", 0)

        by_id = {r.id: r for r in response.results}
        assert len(response.results) == 2
        assert by_id[1].relevance_score == pytest.approx(0.95)
        assert by_id[1].search_type == SearchType.CHAPTER
        assert by_id[2].relevance_score == pytest.approx(0.9)
        assert by_id[2].search_type == SearchType.SUMMARY

    async def test_professional_runs_fulltext_after_vectors(self, make_service, vector_store, text_store):
        vector_store.search.side_effect = route_vectors([make_row(1, distance=0.1)], [])
        text_store.search_fulltext.return_value = [make_row(7, rank=-3.0)]

        response = await make_service().perform_search("leadership", "professional", 0)

        ids = [r.id for r in response.results]
        assert ids == [1, 7]
        fulltext = response.results[1]
        assert fulltext.search_type == SearchType.FULLTEXT
        assert fulltext.relevance_score == pytest.approx(0.75)

    async def test_results_sorted_descending(self, make_service, vector_store, text_store):
        vector_store.search.side_effect = route_vectors(
            [make_row(1, distance=0.45), make_row(2, distance=0.2)], [make_row(3, distance=0.3)]
        )
        response = await make_service().perform_search("leadership", "professional", 0)
        scores = [r.relevance_score for r in response.results]
        assert scores == sorted(scores, reverse=True)


class TestFallback:
    async def test_no_embedding_reaches_substring(self, make_service, embedder, vector_store, text_store):
        """Embedding down, full-text empty: substring matches come back at the fixed score."""
        embedder.embed.side_effect = ProviderUnavailableError("model not loaded")
        text_store.search_fulltext.return_value = []
        text_store.search_substring.return_value = [make_row(4), make_row(5)]

        response = await make_service().perform_search("trust", "free", 0)

        vector_store.search.assert_not_called()
        text_store.search_fulltext.assert_awaited_once()
        text_store.search_substring.assert_awaited_once()
        assert response.embedding_used is False
        assert [r.id for r in response.results] == [4, 5]
        assert all(r.relevance_score == 0.5 for r in response.results)
        assert all(r.search_type == SearchType.FULLTEXT for r in response.results)
        assert response.queries_used == 1

    async def test_missing_embedder_behaves_like_down(self, make_service, text_store):
        text_store.search_fulltext.return_value = [make_row(2, rank=-1.0)]
        response = await make_service(embedder=None).perform_search("trust", "free", 0)
        assert response.embedding_used is False
        assert [r.id for r in response.results] == [2]

    async def test_empty_vector_treated_as_failure(self, make_service, embedder, vector_store, text_store):
        embedder.embed.return_value = []
        text_store.search_substring.return_value = [make_row(3)]
        response = await make_service().perform_search("trust", "free", 0)
        vector_store.search.assert_not_called()
        assert response.embedding_used is False

    async def test_substring_skipped_when_fulltext_found(self, make_service, embedder, text_store):
        embedder.embed.side_effect = RuntimeError("boom")
        text_store.search_fulltext.return_value = [make_row(2, rank=-1.0)]
        response = await make_service().perform_search("trust", "free", 0)
        text_store.search_substring.assert_not_called()
        assert stage_status(response, "substring_fallback") == StageStatus.SKIPPED

    async def test_failed_vector_stage_falls_through(self, make_service, vector_store, text_store):
        vector_store.search.side_effect = RuntimeError("lance down")
        text_store.search_substring.return_value = [make_row(6)]

        response = await make_service().perform_search("trust", "free", 0)

        assert stage_status(response, "summary_search") == StageStatus.FAILED
        assert [r.id for r in response.results] == [6]

    async def test_stage_timeout_is_a_stage_failure(self, make_service, vector_store, text_store, tmp_config):
        async def _slow(*args, **kwargs):
            await asyncio.sleep(1)
            return [make_row(1)]

        vector_store.search.side_effect = _slow
        text_store.search_substring.return_value = [make_row(2)]
        service = make_service()
        service.config = replace(tmp_config, stage_timeout_s=0.05)

        response = await service.perform_search("trust", "free", 0)

        summary = next(r for r in response.stages if r.stage == "summary_search")
        assert summary.status == StageStatus.FAILED
        assert summary.reason == "timeout"
        assert [r.id for r in response.results] == [2]

    async def test_empty_but_reachable_is_not_an_error(self, make_service, embedder):
        embedder.embed.side_effect = RuntimeError("no model")
        response = await make_service().perform_search("zzzz", "free", 3)
        assert response.results == []
        assert response.queries_used == 4
        assert response.upgrade_required is False

    async def test_all_stores_down_raises(self, make_service, embedder, text_store):
        embedder.embed.side_effect = RuntimeError("no model")
        text_store.search_fulltext.side_effect = RuntimeError("db locked")
        text_store.search_substring.side_effect = RuntimeError("db locked")
        with pytest.raises(SearchUnavailableError):
            await make_service().perform_search("trust", "free", 0)

    async def test_no_collaborators_raises(self, tmp_config):
        service = TieredSearchService(tmp_config)
        with pytest.raises(SearchUnavailableError):
            await service.perform_search("trust", "professional", 0)


# ---------------------------------------------------------------------------
# Relevance analysis
# ---------------------------------------------------------------------------


class TestAnalysis:
    async def test_free_tier_never_analyzes(self, make_service, vector_store, analyzer):
        vector_store.search.side_effect = route_vectors([make_row(1)], [])
        await make_service().perform_search("leadership", "free", 0)
        analyzer.analyze.assert_not_called()

    async def test_analysis_rescores_and_reorders(self, make_service, vector_store, analyzer):
        vector_store.search.side_effect = route_vectors(
            [make_row(1, distance=0.1), make_row(2, distance=0.3)], []
        )
        analyzer.analyze.return_value = [
            AnalyzedResult(
                id=2,
                enhanced_score=0.98,
                relevance_reason="Directly about servant leadership.",
                key_topics=["Service", "Listening"],
                analysis="Chapter 2 develops the central idea.",
            )
        ]

        response = await make_service().perform_search("leadership", "scholar", 0)

        top = response.results[0]
        assert top.id == 2
        assert top.relevance_score == pytest.approx(0.98)
        assert top.why_relevant == "Directly about servant leadership."
        assert top.key_topics == ["Service", "Listening"]
        assert top.analysis == "Chapter 2 develops the central idea."
        # Untouched result keeps its stage values.
        assert response.results[1].id == 1
        assert response.results[1].relevance_score == pytest.approx(0.9)
        assert analyzer.analyze.call_args[0][2] == AnalysisLevel.ADVANCED

    async def test_analyzer_failure_is_transparent(self, make_service, vector_store, analyzer):
        vector_store.search.side_effect = route_vectors(
            [make_row(1, distance=0.1), make_row(2, distance=0.3)], []
        )
        analyzer.analyze.side_effect = RuntimeError("rate limited")

        response = await make_service().perform_search("leadership", "scholar", 0)
        baseline = await make_service(analyzer=None).perform_search("leadership", "scholar", 0)

        # The analysis stage report carries a different reason, so compare results only.
        assert [r.model_dump() for r in response.results] == [
            r.model_dump() for r in baseline.results
        ]
        assert [r.id for r in response.results] == [1, 2]
        assert response.results[0].why_relevant.startswith("The chapter summary")
        assert stage_status(response, "ai_analysis") == StageStatus.FAILED
        assert response.queries_used == baseline.queries_used == 1

    async def test_missing_analyzer_is_transparent(self, make_service, vector_store):
        vector_store.search.side_effect = route_vectors([make_row(1)], [])
        response = await make_service(analyzer=None).perform_search("leadership", "scholar", 0)
        assert [r.id for r in response.results] == [1]
        assert stage_status(response, "ai_analysis") == StageStatus.FAILED

    async def test_only_top_k_sent_and_unknown_ids_ignored(
        self, make_service, vector_store, analyzer, tmp_config
    ):
        rows = [make_row(i, distance=0.01 * i) for i in range(1, 16)]
        vector_store.search.side_effect = route_vectors(rows, [])
        analyzer.analyze.return_value = [
            AnalyzedResult(id=15, enhanced_score=1.0, relevance_reason="outside top-k"),
            AnalyzedResult(id=99, enhanced_score=1.0, relevance_reason="never retrieved"),
        ]

        response = await make_service().perform_search("leadership", "professional", 0)

        sent = analyzer.analyze.call_args[0][1]
        assert len(sent) == tmp_config.analysis_top_k
        assert 99 not in {r.id for r in response.results}
        assert response.results[0].id == 1


class TestEventLogging:
    async def test_search_events_written(self, make_service, vector_store, logger, store):
        vector_store.search.side_effect = route_vectors([make_row(1)], [])
        service = make_service(event_logger=logger)

        await service.perform_search("leadership", "free", 0, account_id="acct-1")

        completed = store.query_events(event_type="search.completed")
        assert len(completed) == 1
        assert completed[0].account_id == "acct-1"
        data = json.loads(completed[0].data)
        assert data["status"] == "success"
        assert data["tier"] == "Free"
        assert data["returned"] == 1
        stages = store.query_events(event_type="search.stage", account_id="acct-1")
        assert {json.loads(e.data)["stage"] for e in stages} == {"summary_search", "chapter_search"}

    async def test_gated_search_logged(self, make_service, logger, store):
        await make_service(event_logger=logger).perform_search("leadership", "free", 10)
        assert len(store.query_events(event_type="search.gated")) == 1
        assert store.query_events(event_type="search.completed") == []

    async def test_unavailable_logged_as_error(self, tmp_config, logger, store):
        service = TieredSearchService(tmp_config, event_logger=logger)
        with pytest.raises(SearchUnavailableError):
            await service.perform_search("trust", "free", 0)
        events = store.query_events(event_type="search.completed")
        assert json.loads(events[0].data)["status"] == "error"
