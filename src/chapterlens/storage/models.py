"""Pydantic models and enums for the corpus store and the search pipeline."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class Capability(StrEnum):
    SUMMARY_SEARCH = "summary_search"
    CHAPTER_SEARCH = "chapter_search"
    FULLTEXT_SEARCH = "fulltext_search"
    AI_ANALYSIS = "ai_analysis"


class AnalysisLevel(StrEnum):
    BASIC = "basic"
    ADVANCED = "advanced"
    PREMIUM = "premium"


class SearchType(StrEnum):
    SUMMARY = "summary"
    CHAPTER = "chapter"
    FULLTEXT = "fulltext"


class StageStatus(StrEnum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


# -----------------------------------------------------------------------
# Corpus
# -----------------------------------------------------------------------


class Book(BaseModel):
    id: int
    title: str
    author_name: str | None = None
    cover_url: str | None = None
    isbn_13: str | None = None
    created_at: str


class Chapter(BaseModel):
    id: int
    book_id: int
    chapter_number: int = 0
    chapter_title: str
    chapter_text: str = ""
    chapter_summary: str = ""
    created_at: str


class Account(BaseModel):
    """Quota counter owner. The search pipeline never writes this directly."""

    id: str
    plan: str = "free"
    queries_used: int = 0
    period_start: str
    updated_at: str


class EventLogEntry(BaseModel):
    id: str
    account_id: str | None = None
    event_type: str
    data: str = "{}"
    duration_ms: int | None = None
    created_at: str


class SearchHistoryEntry(BaseModel):
    id: int
    account_id: str
    query_text: str
    normalized_query: str
    plan: str
    results_count: int = 0
    books_count: int = 0
    created_at: str


class QueryCount(BaseModel):
    query: str
    count: int


class SearchStats(BaseModel):
    total_searches: int = 0
    this_month_searches: int = 0
    top_queries: list[QueryCount] = Field(default_factory=list)


# -----------------------------------------------------------------------
# Search pipeline
# -----------------------------------------------------------------------


class SearchTier(BaseModel):
    """Static subscription tier. max_queries=None means unlimited."""

    model_config = ConfigDict(frozen=True)

    name: str
    max_queries: int | None
    max_results: int
    capabilities: frozenset[Capability]
    analysis_level: AnalysisLevel = AnalysisLevel.BASIC
    description: str = ""
    upgrade_message: str = ""

    @property
    def unlimited(self) -> bool:
        return self.max_queries is None

    def enables(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def remaining(self, queries_used: int) -> int | None:
        """Queries left after `queries_used`; None for unlimited tiers."""
        if self.max_queries is None:
            return None
        return max(0, self.max_queries - queries_used)


class SearchResult(BaseModel):
    """Single chapter hit. `id` is the deduplication key."""

    id: int
    book_title: str
    chapter_title: str
    relevance_score: float
    snippet: str = ""
    summary_snippet: str | None = None
    search_type: SearchType
    why_relevant: str = ""
    key_topics: list[str] = Field(default_factory=list)
    analysis: str | None = None


class StageReport(BaseModel):
    """How one retrieval stage went, for observability."""

    stage: str
    status: StageStatus
    count: int = 0
    reason: str | None = None


class TieredSearchResponse(BaseModel):
    query: str
    results: list[SearchResult]
    tier: SearchTier
    queries_used: int
    queries_remaining: int | None
    upgrade_required: bool = False
    upgrade_message: str | None = None
    total_books_found: int = 0
    total_chapters_found: int = 0
    embedding_used: bool = False
    stages: list[StageReport] = Field(default_factory=list)


class AnalyzedResult(BaseModel):
    """Relevance analyzer output for one chapter."""

    id: int
    enhanced_score: float
    relevance_reason: str
    key_topics: list[str] = Field(default_factory=list)
    analysis: str | None = None


class BookGroup(BaseModel):
    book_title: str
    chapters: list[SearchResult]
    average_relevance: float
