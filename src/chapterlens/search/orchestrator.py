"""Tiered search orchestration: quota gate, retrieval chain, merge, analysis."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chapterlens.config import Config
from chapterlens.search.exceptions import (
    InvalidQueryError,
    ProviderUnavailableError,
    SearchUnavailableError,
)
from chapterlens.search.outcome import FailureReason, Outcome, guarded
from chapterlens.search.protocols import VectorTarget
from chapterlens.search.ranking import apply_analysis, count_books, merge_results
from chapterlens.search.stages import (
    Stage,
    chapter_results,
    fulltext_results,
    plan_stages,
    substring_results,
    summary_results,
)
from chapterlens.search.tiers import quota_message, resolve_tier
from chapterlens.storage.models import (
    Capability,
    SearchResult,
    StageReport,
    StageStatus,
    TieredSearchResponse,
)

if TYPE_CHECKING:
    from chapterlens.logging.logger import SearchLogger
    from chapterlens.search.protocols import (
        Analyzer,
        EmbeddingProvider,
        FullTextStore,
        SubstringStore,
        VectorStore,
    )
    from chapterlens.storage.models import AnalysisLevel, AnalyzedResult, SearchTier

logger = logging.getLogger(__name__)


def _require(collaborator, name: str):
    if collaborator is None:
        msg = f"{name} not configured"
        raise ProviderUnavailableError(msg)
    return collaborator


class TieredSearchService:
    """Runs one tier-gated search across the retrieval stages.

    Every collaborator is optional; a missing one behaves like one that is down.
    The quota counter is taken by value and the incremented value returned;
    persisting it is the caller's job.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        embedder: EmbeddingProvider | None = None,
        vector_store: VectorStore | None = None,
        fulltext_store: FullTextStore | None = None,
        substring_store: SubstringStore | None = None,
        analyzer: Analyzer | None = None,
        event_logger: SearchLogger | None = None,
    ) -> None:
        self.config = config or Config()
        self.embedder = embedder
        self.vector_store = vector_store
        self.fulltext_store = fulltext_store
        self.substring_store = substring_store
        self.analyzer = analyzer
        self.event_logger = event_logger

    async def perform_search(
        self,
        query: str,
        plan: str = "free",
        queries_used: int = 0,
        *,
        account_id: str | None = None,
    ) -> TieredSearchResponse:
        """Search for `query` under `plan`, given `queries_used` so far this period.

        Raises:
            InvalidQueryError: blank query or negative counter.
            SearchUnavailableError: no retrieval stage reached its backing store.
        """
        text = (query or "").strip()
        if not text:
            msg = "Search query must not be empty"
            raise InvalidQueryError(msg)
        if queries_used < 0:
            msg = f"queries_used must be >= 0, got {queries_used}"
            raise InvalidQueryError(msg)

        tier = resolve_tier(plan)

        if tier.max_queries is not None and queries_used >= tier.max_queries:
            self._log(
                "search.gated",
                {"query": text, "tier": tier.name, "queries_used": queries_used},
                account_id=account_id,
            )
            return TieredSearchResponse(
                query=text,
                results=[],
                tier=tier,
                queries_used=queries_used,
                queries_remaining=0,
                upgrade_required=True,
                upgrade_message=quota_message(tier),
            )

        if self.event_logger is None:
            return await self._search(text, tier, queries_used)

        with self.event_logger.timed("search.completed", account_id=account_id) as ctx:
            response = await self._search(text, tier, queries_used, account_id=account_id)
            ctx.update(
                query=text,
                tier=tier.name,
                embedding_used=response.embedding_used,
                total_chapters_found=response.total_chapters_found,
                returned=len(response.results),
            )
        return response

    # -----------------------------------------------------------------------
    # Retrieval chain
    # -----------------------------------------------------------------------
    async def _search(
        self,
        query: str,
        tier: SearchTier,
        queries_used: int,
        *,
        account_id: str | None = None,
    ) -> TieredSearchResponse:
        embedding = await self._embed(query)
        reports: list[StageReport] = []
        results: list[SearchResult] = []
        summary_ids: list[int] = []
        reached_store = False

        for stage in plan_stages(tier, embedding is not None):
            if stage is Stage.SUBSTRING and results:
                reports.append(StageReport(stage=stage, status=StageStatus.SKIPPED))
                continue
            if stage is Stage.CHAPTER and not summary_ids:
                reports.append(
                    StageReport(
                        stage=stage,
                        status=StageStatus.SKIPPED,
                        reason="no summary candidates",
                    )
                )
                continue

            outcome = await self._run_stage(stage, query, embedding, summary_ids)
            report = self._report(stage, outcome)
            reports.append(report)
            self._log("search.stage", report.model_dump(mode="json"), account_id=account_id)
            if not outcome.ok:
                continue

            reached_store = True
            found = outcome.value or []
            if stage is Stage.SUMMARY:
                summary_ids = [r.id for r in found]
            results = merge_results(results, found)

        if not results and not reached_store:
            msg = "Search is temporarily unavailable: no search backend could be reached"
            raise SearchUnavailableError(msg)

        total_chapters = len(results)
        total_books = count_books(results)

        if tier.enables(Capability.AI_ANALYSIS) and results:
            results, report = await self._analyze(query, results, tier.analysis_level)
            reports.append(report)

        results = results[: tier.max_results]
        queries_used += 1

        return TieredSearchResponse(
            query=query,
            results=results,
            tier=tier,
            queries_used=queries_used,
            queries_remaining=tier.remaining(queries_used),
            upgrade_required=False,
            total_books_found=total_books,
            total_chapters_found=total_chapters,
            embedding_used=embedding is not None,
            stages=reports,
        )

    async def _embed(self, query: str) -> list[float] | None:
        """Query embedding, or None when the provider is down or absent."""
        outcome = await guarded(
            self._call_embedder(query),
            label="embedding provider",
            timeout=self.config.stage_timeout_s,
        )
        if not outcome.ok:
            logger.info("Continuing without embeddings (%s)", outcome.failure)
            return None
        return outcome.value

    async def _call_embedder(self, query: str) -> list[float]:
        vector = await _require(self.embedder, "embedding provider").embed(query)
        if not vector:
            msg = "embedding provider returned an empty vector"
            raise ValueError(msg)
        return list(vector)

    async def _run_stage(
        self,
        stage: Stage,
        query: str,
        embedding: list[float] | None,
        summary_ids: list[int],
    ) -> Outcome[list[SearchResult]]:
        cfg = self.config
        if stage is Stage.SUMMARY:
            call = self._summary_stage(query, embedding)
        elif stage is Stage.CHAPTER:
            call = self._chapter_stage(query, embedding, summary_ids)
        elif stage is Stage.FULLTEXT:
            call = self._fulltext_stage(query)
        else:
            call = self._substring_stage(query)
        return await guarded(call, label=str(stage), timeout=cfg.stage_timeout_s)

    async def _summary_stage(self, query: str, embedding: list[float] | None) -> list[SearchResult]:
        store = _require(self.vector_store, "vector store")
        rows = await store.search(
            embedding,
            target=VectorTarget.SUMMARY,
            threshold=self.config.summary_threshold,
            limit=self.config.summary_limit,
        )
        return summary_results(rows, query)

    async def _chapter_stage(
        self,
        query: str,
        embedding: list[float] | None,
        scope: list[int],
    ) -> list[SearchResult]:
        store = _require(self.vector_store, "vector store")
        rows = await store.search(
            embedding,
            target=VectorTarget.CHAPTER,
            threshold=self.config.chapter_threshold,
            limit=self.config.chapter_limit,
            candidate_ids=list(scope),
        )
        return chapter_results(rows, query)

    async def _fulltext_stage(self, query: str) -> list[SearchResult]:
        store = _require(self.fulltext_store, "full-text store")
        rows = await store.search_fulltext(query, self.config.fulltext_limit)
        return fulltext_results(rows, query)

    async def _substring_stage(self, query: str) -> list[SearchResult]:
        store = _require(self.substring_store, "substring store")
        rows = await store.search_substring(query, self.config.substring_limit)
        return substring_results(rows, query, self.config.substring_score)

    # -----------------------------------------------------------------------
    # Analysis
    # -----------------------------------------------------------------------
    async def _analyze(
        self,
        query: str,
        results: list[SearchResult],
        level: AnalysisLevel,
    ) -> tuple[list[SearchResult], StageReport]:
        """Best-effort enrichment of the top-K results. Failure leaves results untouched."""
        top = results[: self.config.analysis_top_k]
        outcome = await guarded(
            self._call_analyzer(query, top, level),
            label="relevance analyzer",
            timeout=self.config.analysis_timeout_s,
        )
        report = StageReport(
            stage="ai_analysis",
            status=StageStatus.OK if outcome.ok else StageStatus.FAILED,
            count=len(outcome.value or []),
            reason=str(outcome.failure) if outcome.failure else None,
        )
        if not outcome.ok:
            return results, report
        top_ids = {r.id for r in top}
        analyzed = [a for a in outcome.value or [] if a.id in top_ids]
        return apply_analysis(results, analyzed), report

    async def _call_analyzer(
        self,
        query: str,
        results: list[SearchResult],
        level: AnalysisLevel,
    ) -> list[AnalyzedResult]:
        analyzer = _require(self.analyzer, "relevance analyzer")
        return await analyzer.analyze(query, results, level)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------
    @staticmethod
    def _report(stage: Stage, outcome: Outcome[list[SearchResult]]) -> StageReport:
        if outcome.ok:
            return StageReport(stage=stage, status=StageStatus.OK, count=len(outcome.value or []))
        return StageReport(
            stage=stage,
            status=StageStatus.FAILED,
            reason=str(outcome.failure or FailureReason.ERROR),
        )

    def _log(self, event_type: str, data: dict, *, account_id: str | None = None) -> None:
        if self.event_logger is not None:
            self.event_logger.log(event_type, data, account_id=account_id)

