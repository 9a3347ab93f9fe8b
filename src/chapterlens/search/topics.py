"""Heuristic topic, snippet and explanation text for results the analyzer didn't touch."""

from __future__ import annotations

import re

from chapterlens.storage.models import SearchType

STOPWORDS: frozenset[str] = frozenset(
    {
        "about", "after", "again", "also", "been", "before", "being", "between",
        "both", "could", "does", "doing", "down", "during", "each", "even", "every",
        "from", "have", "having", "here", "into", "just", "like", "made", "make",
        "many", "more", "most", "much", "must", "only", "other", "over", "same",
        "should", "some", "such", "than", "that", "their", "them", "then", "there",
        "these", "they", "this", "those", "through", "under", "until", "very",
        "were", "what", "when", "where", "which", "while", "will", "with", "would",
        "your", "yours",
    }
)  # fmt: skip

MIN_TOPIC_LEN = 4
SNIPPET_BEFORE = 100
SNIPPET_AFTER = 300
SNIPPET_HEAD = 200

_PUNCT = re.compile(r"[^\w\s]")


def extract_topics(text: str, limit: int = 4) -> list[str]:
    """Crude keyword topics: first distinct non-stopword tokens, capitalized."""
    if not text:
        return []
    tokens = _PUNCT.sub(" ", text.lower()).split()
    seen: list[str] = []
    for token in tokens:
        if len(token) < MIN_TOPIC_LEN or token in STOPWORDS or token.isdigit():
            continue
        if token not in seen:
            seen.append(token)
        if len(seen) >= limit:
            break
    return [t.capitalize() for t in seen]


def extract_snippet(text: str, query: str) -> str:
    """Excerpt around the first query word found in text, else the text head."""
    if not text:
        return ""
    lowered = text.lower()
    for word in query.lower().split():
        index = lowered.find(word)
        if index != -1:
            start = max(0, index - SNIPPET_BEFORE)
            end = min(len(text), index + SNIPPET_AFTER)
            return f"...{text[start:end]}..."
    return f"{text[:SNIPPET_HEAD]}..."


def summary_snippet(summary: str) -> str:
    if not summary:
        return ""
    return f"{summary[:SNIPPET_HEAD]}..."


_WHY_TEMPLATES: dict[SearchType, str] = {
    SearchType.SUMMARY: 'The chapter summary is closely related to "{query}".',
    SearchType.CHAPTER: 'The full chapter text discusses ideas related to "{query}".',
    SearchType.FULLTEXT: 'This chapter contains wording that matches "{query}".',
}


def why_relevant(search_type: SearchType, query: str) -> str:
    """Templated justification, replaced later if the analyzer runs."""
    return _WHY_TEMPLATES[search_type].format(query=query)
