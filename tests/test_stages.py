"""Tests for stage planning and per-stage row adapters."""

from __future__ import annotations

import pytest

from chapterlens.search.stages import (
    Stage,
    chapter_results,
    fulltext_results,
    plan_stages,
    rank_to_score,
    similarity,
    substring_results,
    summary_results,
)
from chapterlens.search.tiers import FREE, INSTITUTION, PROFESSIONAL, SCHOLAR
from chapterlens.storage.models import SearchType

ROW = {
    "id": 12,
    "book_title": "The Servant Leader",
    "chapter_title": "Leading by Serving",
    "chapter_summary": "Servant leadership and the habit of listening first.",
    "chapter_text": "Leadership begins with listening. A leader who serves builds loyalty.",
    "distance": 0.25,
    "rank": -4.0,
}


class TestPlanStages:
    def test_free_with_embedding(self):
        assert plan_stages(FREE, True) == [Stage.SUMMARY, Stage.CHAPTER, Stage.SUBSTRING]

    def test_free_without_embedding_uses_fulltext(self):
        assert plan_stages(FREE, False) == [Stage.FULLTEXT, Stage.SUBSTRING]

    def test_scholar_has_no_fulltext_with_embedding(self):
        assert Stage.FULLTEXT not in plan_stages(SCHOLAR, True)

    @pytest.mark.parametrize("tier", [PROFESSIONAL, INSTITUTION])
    def test_full_chain(self, tier):
        assert plan_stages(tier, True) == [
            Stage.SUMMARY,
            Stage.CHAPTER,
            Stage.FULLTEXT,
            Stage.SUBSTRING,
        ]

    @pytest.mark.parametrize("tier", [FREE, SCHOLAR, PROFESSIONAL, INSTITUTION])
    def test_no_vector_stage_without_embedding(self, tier):
        stages = plan_stages(tier, False)
        assert Stage.SUMMARY not in stages
        assert Stage.CHAPTER not in stages
        assert stages[-1] is Stage.SUBSTRING


class TestScores:
    def test_similarity(self):
        assert similarity(0.0) == 1.0
        assert similarity(0.25) == pytest.approx(0.75)

    def test_rank_to_score_monotonic(self):
        assert rank_to_score(0.0) == 0.0
        assert rank_to_score(-1.0) == pytest.approx(0.5)
        assert rank_to_score(-9.0) > rank_to_score(-1.0)
        assert rank_to_score(-1e6) < 1.0


class TestAdapters:
    def test_summary_results(self):
        [result] = summary_results([ROW], "leadership")
        assert result.id == 12
        assert result.search_type == SearchType.SUMMARY
        assert result.relevance_score == pytest.approx(0.75)
        assert result.summary_snippet == ROW["chapter_summary"]
        assert result.snippet.startswith("Servant leadership")
        assert "leadership" in result.why_relevant
        assert result.key_topics[0] == "Servant"

    def test_chapter_results_snippet_around_query(self):
        [result] = chapter_results([ROW], "listening")
        assert result.search_type == SearchType.CHAPTER
        assert result.snippet.startswith("...")
        assert "listening" in result.snippet
        assert result.summary_snippet is None

    def test_fulltext_results_use_rank(self):
        [result] = fulltext_results([ROW], "leadership")
        assert result.search_type == SearchType.FULLTEXT
        assert result.relevance_score == pytest.approx(0.8)

    def test_substring_results_constant_score(self):
        rows = [ROW, {**ROW, "id": 13, "chapter_text": ""}]
        results = substring_results(rows, "servant", 0.5)
        assert [r.relevance_score for r in results] == [0.5, 0.5]
        assert all(r.search_type == SearchType.FULLTEXT for r in results)
        # Falls back to the summary when there is no chapter text.
        assert "Servant" in results[1].snippet

    def test_missing_titles_become_empty(self):
        [result] = summary_results([{"id": 1, "distance": 0.1}], "x")
        assert result.book_title == ""
        assert result.chapter_title == ""
        assert result.key_topics == []
