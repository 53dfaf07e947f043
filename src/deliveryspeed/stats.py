"""Statistics and formatting helpers for delivery-speed reporting.

This module provides utilities for:
- Computing mean, median and nearest-rank percentiles over samples.
- Aggregating a metric field into ``FieldStats`` (count, mean, median, P95).
- Formatting hour durations and percentages.
- Building a human-readable report comparing two periods per repository.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

from .models import FieldStats, MetricDelta, UsageStats


def _clean(values: Iterable[Optional[float]]) -> List[float]:
    return [
        float(value)
        for value in values
        if value is not None and not (isinstance(value, float) and math.isnan(value))
    ]


def mean(values: Sequence[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of the available values, ``None`` when there are none."""
    clean_values = _clean(values)
    if not clean_values:
        return None
    return sum(clean_values) / len(clean_values)


def median(values: Sequence[Optional[float]]) -> Optional[float]:
    """Median of the available values; an even count averages the two middle values."""
    clean_values = sorted(_clean(values))
    if not clean_values:
        return None

    middle = len(clean_values) // 2
    if len(clean_values) % 2 == 0:
        return (clean_values[middle - 1] + clean_values[middle]) / 2
    return clean_values[middle]


def nearest_rank_percentile(values: Sequence[Optional[float]], p: float) -> Optional[float]:
    """Calculate a percentile using the nearest-rank method.

    The value at sorted index ``ceil(p / 100 * n) - 1`` is returned, with the
    index clamped at zero.

    Args:
        values: Numeric samples in any order.
        p: Percentile in the inclusive range ``[0, 100]``.

    Returns:
        Percentile value as ``float`` or ``None`` when input is empty.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    clean_values = sorted(_clean(values))
    if not clean_values:
        return None

    index = math.ceil((p / 100.0) * len(clean_values)) - 1
    return clean_values[max(0, index)]


def summarize_values(values: Sequence[Optional[float]]) -> FieldStats:
    """Compute count, mean, median and P95 over the available values."""
    clean_values = _clean(values)
    return FieldStats(
        count=len(clean_values),
        mean=mean(clean_values),
        median=median(clean_values),
        p95=nearest_rank_percentile(clean_values, 95),
    )


def format_hours(hours: Optional[float]) -> str:
    """Format an hour value with one decimal, ``"n/a"`` when missing."""
    if hours is None:
        return "n/a"
    return f"{hours:.1f}h"


def format_number(value: Optional[float]) -> str:
    """Format a plain number with one decimal, ``"n/a"`` when missing."""
    if value is None:
        return "n/a"
    return f"{value:.1f}"


def format_percent(value: Optional[float]) -> str:
    """Format a signed percentage such as ``+12.5%``."""
    if value is None:
        return "n/a"
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.1f}%"


def _delta_line(label: str, delta: Optional[MetricDelta], unit_hours: bool) -> str:
    if delta is None:
        return f"   {label}: n/a"

    formatter = format_hours if unit_hours else format_number
    arrow = "improved" if delta.isImprovement else "regressed"
    return (
        f"   {label}: {formatter(delta.oldValue)} -> {formatter(delta.newValue)} "
        f"({format_percent(delta.improvement)}, {arrow})"
    )


def generate_report(analyses: Sequence[dict], usage: Optional[UsageStats] = None) -> str:
    """Generate a human-readable period comparison report.

    Each analysis is the dictionary produced by the orchestrator for one
    repository: either ``{"repository", "error"}`` or one carrying
    ``periods`` and ``comparison``.

    Args:
        analyses: Per-repository analysis results.
        usage: Optional API usage counters appended to the report.

    Returns:
        Formatted multi-line text report.
    """
    lines = [
        "Delivery Speed Report",
        "=" * 60,
    ]
    improvements: List[float] = []

    for analysis in analyses:
        lines.append("")
        lines.append(f"Repository: {analysis['repository']}")

        if analysis.get("error"):
            lines.append(f"   Error: {analysis['error']}")
            continue

        periods = analysis["periods"]
        comparison = analysis["comparison"]
        lines.append(f"   Current period: {periods['current']['start']} to {periods['current']['end']}")
        lines.append(f"   Previous period: {periods['previous']['start']} to {periods['previous']['end']}")
        lines.append(f"   {comparison.summary}")
        improvements.append(comparison.overallImprovement)

        lines.append(_delta_line("Cycle Time", comparison.deltas.get("cycle_time"), unit_hours=True))
        lines.append(_delta_line("Review Time", comparison.deltas.get("review_time"), unit_hours=True))
        lines.append(_delta_line("PR Size (Changes)", comparison.deltas.get("pr_size"), unit_hours=False))
        lines.append(_delta_line("Total PRs", comparison.deltas.get("total_prs"), unit_hours=False))

        contributors = periods["current"]["summary"].topContributors[:5]
        if contributors:
            lines.append("   Top Contributors (Current Period):")
            for rank, contributor in enumerate(contributors, start=1):
                lines.append(
                    f"     {rank}. {contributor.author}: {contributor.totalPRs} PRs, "
                    f"{format_hours(contributor.avgCycleTime)} avg cycle time"
                )

        current_commits = periods["current"].get("commit_frequency")
        previous_commits = periods["previous"].get("commit_frequency")
        if current_commits is not None and previous_commits is not None:
            lines.append(
                f"   Commits/day: {previous_commits.avgCommitsPerDay:.1f} -> {current_commits.avgCommitsPerDay:.1f}"
            )

    if improvements:
        overall = sum(improvements) / len(improvements)
        direction = "faster" if overall > 0 else "slower"
        lines.append("")
        lines.append("=" * 60)
        lines.append(f"Overall: {abs(overall):.1f}% {direction} delivery across {len(improvements)} repositories")

    if usage is not None:
        lines.append("")
        lines.append("API Usage:")
        lines.append(f"   Requests issued: {usage.requestsIssued}")
        lines.append(f"   Cache hits: {usage.cacheHits}")
        lines.append(f"   Cache efficiency: {usage.cacheEfficiency:.1f}%")
        lines.append(f"   Rate limit hits: {usage.rateLimitHits}")
        lines.append(f"   Backoff events: {usage.backoffEvents}")
        lines.append(f"   Total wait: {math.ceil(usage.totalWaitMs / 1000)}s")
        if usage.remainingHourly is not None and usage.remainingBurst is not None:
            lines.append(f"   Remaining (hour): {usage.remainingHourly}")
            lines.append(f"   Remaining (burst): {usage.remainingBurst}")
        if usage.cacheEnabled:
            lines.append(f"   Cache entries: {usage.cacheEntries} ({usage.cacheSize})")

    return "\n".join(lines)
