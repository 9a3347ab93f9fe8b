"""Subscription tier table and plan resolution."""

from __future__ import annotations

from chapterlens.storage.models import AnalysisLevel, Capability, SearchTier

FREE = SearchTier(
    name="Free",
    max_queries=10,
    max_results=5,
    capabilities=frozenset({Capability.SUMMARY_SEARCH, Capability.CHAPTER_SEARCH}),
    analysis_level=AnalysisLevel.BASIC,
    description="Perfect for casual readers and students getting started",
    upgrade_message="Upgrade to Scholar for AI relevance insights and more queries!",
)

SCHOLAR = SearchTier(
    name="Scholar",
    max_queries=500,
    max_results=15,
    capabilities=frozenset(
        {Capability.SUMMARY_SEARCH, Capability.CHAPTER_SEARCH, Capability.AI_ANALYSIS}
    ),
    analysis_level=AnalysisLevel.ADVANCED,
    description="Ideal for researchers and serious learners",
    upgrade_message="Upgrade to Professional for word-by-word precision search!",
)

PROFESSIONAL = SearchTier(
    name="Professional",
    max_queries=2000,
    max_results=25,
    capabilities=frozenset(Capability),
    analysis_level=AnalysisLevel.PREMIUM,
    description="Built for professionals and content creators",
)

INSTITUTION = SearchTier(
    name="Institution",
    max_queries=None,
    max_results=25,
    capabilities=frozenset(Capability),
    analysis_level=AnalysisLevel.PREMIUM,
    description="Enterprise-grade search for institutions and large teams",
)

SEARCH_TIERS: dict[str, SearchTier] = {
    "free": FREE,
    "scholar": SCHOLAR,
    "professional": PROFESSIONAL,
    "institution": INSTITUTION,
}

# Unrecognised plans get the most restrictive tier.
DEFAULT_TIER = FREE


def resolve_tier(plan: str | None) -> SearchTier:
    """Map a plan identifier to its tier. Never raises."""
    if not plan:
        return DEFAULT_TIER
    return SEARCH_TIERS.get(plan.strip().lower(), DEFAULT_TIER)


def quota_message(tier: SearchTier) -> str:
    """Message shown when the tier's monthly quota is exhausted."""
    suffix = tier.upgrade_message or "Upgrade for more searches!"
    return f"You've reached your {tier.max_queries} monthly search limit. {suffix}"
