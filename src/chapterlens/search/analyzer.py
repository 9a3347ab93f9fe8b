"""LLM relevance analysis via Anthropic SDK with structured outputs."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic, RateLimitError

from chapterlens.search.exceptions import NonRetryableError, RetryableError
from chapterlens.search.prompts import ANALYSIS_SCHEMA, build_analysis_prompt
from chapterlens.storage.models import AnalyzedResult

if TYPE_CHECKING:
    from chapterlens.config import Config
    from chapterlens.search.analysis_cache import AnalysisCache
    from chapterlens.storage.models import AnalysisLevel, SearchResult

logger = logging.getLogger(__name__)

MAX_TOPICS = 5


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


class RelevanceAnalyzer:
    """Rescore and explain a batch of results for a query via Claude."""

    MAX_ATTEMPTS = 2
    BACKOFF_BASE = 0.5

    def __init__(
        self,
        config: Config,
        *,
        cache: AnalysisCache | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.client = client or AsyncAnthropic()  # reads ANTHROPIC_API_KEY from env
        self.model = config.analysis_model
        self.max_tokens = config.analysis_max_tokens
        self.cache = cache

    async def analyze(
        self,
        query: str,
        results: list[SearchResult],
        level: AnalysisLevel,
    ) -> list[AnalyzedResult]:
        """Analyses in input order. Cached chapters are not sent to the API."""
        if not results:
            return []

        cached: dict[int, AnalyzedResult] = {}
        if self.cache is not None:
            try:
                cached = await self.cache.lookup(query, level, [r.id for r in results])
            except Exception:
                logger.warning("Analysis cache lookup failed, analyzing all results", exc_info=True)

        pending = [r for r in results if r.id not in cached]
        fresh: list[AnalyzedResult] = []
        if pending:
            logger.info("Analyzing %d results (%d cached)", len(pending), len(cached))
            fresh = await self._request_with_retry(query, pending, level)
            if self.cache is not None:
                try:
                    await self.cache.store(query, level, fresh)
                except Exception:
                    logger.warning("Analysis cache store failed", exc_info=True)

        by_id = {**cached, **{a.id: a for a in fresh}}
        return [by_id[r.id] for r in results if r.id in by_id]

    async def _request_with_retry(
        self,
        query: str,
        results: list[SearchResult],
        level: AnalysisLevel,
    ) -> list[AnalyzedResult]:
        """Retry RetryableError with exponential backoff. NonRetryableError propagates at once."""
        attempt = 1
        while True:
            try:
                return await self._request(query, results, level)
            except RetryableError as e:
                if attempt >= self.MAX_ATTEMPTS:
                    raise
                backoff = self.BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying analysis (attempt %d, backoff %.1fs): %s", attempt + 1, backoff, e
                )
                await asyncio.sleep(backoff)
                attempt += 1

    async def _request(
        self,
        query: str,
        results: list[SearchResult],
        level: AnalysisLevel,
    ) -> list[AnalyzedResult]:
        prompt = build_analysis_prompt(query, results, level)

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
                extra_body={
                    "output_config": {
                        "format": {
                            "type": "json_schema",
                            "schema": ANALYSIS_SCHEMA,
                        }
                    }
                },
            )
        except (APIConnectionError, RateLimitError) as e:
            msg = str(e)
            raise RetryableError(msg) from e
        except APIStatusError as e:
            msg = str(e)
            if e.status_code >= 500:
                raise RetryableError(msg) from e
            raise NonRetryableError(msg) from e

        text_block = response.content[0]
        assert hasattr(text_block, "text"), f"Unexpected content block type: {type(text_block)}"
        return self._parse_response(text_block.text, {r.id for r in results})

    def _parse_response(self, text: str, allowed_ids: set[int]) -> list[AnalyzedResult]:
        """Parse analyzer JSON, dropping entries for IDs that weren't in the batch."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = self._extract_json_fallback(text)

        items = data.get("results", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            msg = f"Analyzer returned {type(items).__name__}, expected a list"
            raise RetryableError(msg)

        analyzed: list[AnalyzedResult] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                result_id = int(item["id"])
                score = float(item.get("enhanced_score", item.get("enhancedScore")))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed analysis entry: %r", item)
                continue
            if result_id not in allowed_ids:
                continue
            topics = item.get("key_topics") or item.get("keyTopics") or []
            analyzed.append(
                AnalyzedResult(
                    id=result_id,
                    enhanced_score=_clamp(score),
                    relevance_reason=str(
                        item.get("relevance_reason") or item.get("relevanceReason") or ""
                    ),
                    key_topics=[str(t) for t in topics][:MAX_TOPICS],
                    analysis=item.get("analysis"),
                )
            )
        return analyzed

    def _extract_json_fallback(self, text: str) -> dict | list:
        """Last-resort JSON extraction when structured outputs fails."""
        cleaned = text.strip()

        # Strip markdown fences
        if cleaned.startswith("```"):
            cleaned = cleaned.split("\n", 1)[1]
            if cleaned.endswith("```"):
                cleaned = cleaned[:-3]
            cleaned = cleaned.strip()

        for opener, closer in (("{", "}"), ("[", "]")):
            start = cleaned.find(opener)
            end = cleaned.rfind(closer)
            if start != -1 and end != -1 and end > start:
                try:
                    result: dict | list = json.loads(cleaned[start : end + 1])
                except json.JSONDecodeError:
                    continue
                else:
                    return result

        msg = f"Could not extract JSON from response: {text[:200]}"
        raise RetryableError(msg)

    async def close(self) -> None:
        """Clean up HTTP client."""
        await self.client.close()
