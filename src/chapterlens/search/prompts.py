"""Relevance analysis prompt templates and schema."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chapterlens.storage.models import AnalysisLevel

if TYPE_CHECKING:
    from chapterlens.storage.models import SearchResult

# JSON Schema for structured outputs API -- mirrors AnalyzedResult model
ANALYSIS_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "integer", "description": "Result ID, copied exactly"},
                    "analysis": {
                        "type": "string",
                        "description": "How this chapter relates to the query",
                    },
                    "enhanced_score": {
                        "type": "number",
                        "description": "Refined relevance between 0 and 1",
                    },
                    "key_topics": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "3-5 key topics from the chapter",
                    },
                    "relevance_reason": {
                        "type": "string",
                        "description": "One sentence on why this chapter matches the query",
                    },
                },
                "required": ["id", "analysis", "enhanced_score", "key_topics", "relevance_reason"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["results"],
    "additionalProperties": False,
}

LEVEL_INSTRUCTIONS: dict[AnalysisLevel, str] = {
    AnalysisLevel.BASIC: (
        "You are a research assistant. For each result, say briefly how it relates "
        "to the query and extract 3 key topics. Keep each analysis to one sentence."
    ),
    AnalysisLevel.ADVANCED: (
        "You are an expert research analyst. For each result, explain how it "
        "specifically relates to the query in 1-2 sentences, extract 3-5 key topics, "
        "give a specific reason it matches, and rate relevance between 0 and 1."
    ),
    AnalysisLevel.PREMIUM: (
        "You are a senior research expert. For each result, give a detailed relevance "
        "assessment in 2-3 sentences citing concepts from the preview, extract 5 key "
        "topics, give a specific evidence-based reason it matches, and rate relevance "
        "between 0 and 1 by strength of the connection."
    ),
}

ANALYSIS_PROMPT = """\
{instructions}

User query: "{query}"

Analyze these {count} search results. Return a JSON object with a "results" array,
one entry per result, copying each ID exactly:

{{
  "results": [
    {{
      "id": <integer ID>,
      "analysis": "<how this chapter relates to the query>",
      "enhanced_score": <number between 0 and 1>,
      "key_topics": ["<topic>", "..."],
      "relevance_reason": "<why this chapter matches the query>"
    }}
  ]
}}

Search results:
{results}
"""

PREVIEW_CHARS = 200


def _format_result(index: int, result: SearchResult) -> str:
    preview = result.snippet[:PREVIEW_CHARS]
    return (
        f"[{index}] ID: {result.id}\n"
        f'Book: "{result.book_title}"\n'
        f'Chapter: "{result.chapter_title}"\n'
        f"Content preview: {preview}\n"
        f"Current relevance: {result.relevance_score * 100:.1f}%"
    )


def build_analysis_prompt(
    query: str,
    results: list[SearchResult],
    level: AnalysisLevel,
) -> str:
    """Build the analyzer prompt for one batch of results."""
    return ANALYSIS_PROMPT.format(
        instructions=LEVEL_INSTRUCTIONS[level],
        query=query,
        count=len(results),
        results="\n\n".join(_format_result(i, r) for i, r in enumerate(results, start=1)),
    )
