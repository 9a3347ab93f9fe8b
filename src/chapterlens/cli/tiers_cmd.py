"""CLI tiers command: show the subscription catalog."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from chapterlens.search.tiers import SEARCH_TIERS

console = Console()


def tiers_cmd() -> None:
    """List plans with their quotas, result caps and capabilities."""
    table = Table(title="Search Tiers")
    table.add_column("Plan", no_wrap=True)
    table.add_column("Queries/month", justify="right", no_wrap=True)
    table.add_column("Results", justify="right")
    table.add_column("Capabilities")
    table.add_column("Analysis", no_wrap=True)

    for plan, tier in SEARCH_TIERS.items():
        table.add_row(
            plan,
            "unlimited" if tier.unlimited else str(tier.max_queries),
            str(tier.max_results),
            ", ".join(sorted(str(c) for c in tier.capabilities)),
            str(tier.analysis_level),
        )
    console.print(table)
