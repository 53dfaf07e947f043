"""Delivery metric extraction and period comparison.

This module turns pull request records into:
- per-PR metrics (cycle time, time to first approval, change size)
- a per-period ``MetricsSummary`` with top contributors
- a ``PeriodComparison`` where a positive improvement always means "better"
- commit cadence for a period

All functions are pure: they never mutate their inputs and keep no state
between calls.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .models import (
    CommitFrequency,
    CommitRecord,
    ContributorStats,
    MetricDelta,
    MetricsSummary,
    PeriodComparison,
    PullRequestMetric,
    PullRequestRecord,
)
from .stats import mean, summarize_values

logger = logging.getLogger(__name__)

APPROVED = "APPROVED"
TOP_CONTRIBUTORS = 10

DEFAULT_LOWER_IS_BETTER: Dict[str, bool] = {
    "cycle_time": True,
    "review_time": True,
    "pr_size": True,
    "total_prs": False,
}


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def per_record_metric(record: PullRequestRecord) -> Optional[PullRequestMetric]:
    """Compute cycle time, review time and size for one pull request.

    Business logic:
    - Only merged pull requests are measured; unmerged ones return ``None``.
    - Cycle time is hours from creation to merge.
    - Review time is hours from creation to the earliest ``APPROVED`` review
      (ties keep their original order); ``None`` without an approval.
    - Size is ``additions + deletions``, with missing counts taken as zero.
    - Approvals whose timestamps cannot be compared with ``createdAt`` leave
      review time ``None``.
    """
    if record.mergedAt is None or record.createdAt is None:
        return None

    try:
        cycle_time = _hours_between(record.createdAt, record.mergedAt)
    except TypeError:
        logger.debug("Skipping PR with incompatible datetime types", extra={"pr_number": record.number})
        return None

    approvals = [
        review
        for review in record.reviews
        if review.state == APPROVED and review.submittedAt is not None
    ]
    review_time: Optional[float] = None
    if approvals:
        try:
            first_approval = min(approvals, key=lambda review: review.submittedAt)
            review_time = _hours_between(record.createdAt, first_approval.submittedAt)
        except TypeError:
            logger.debug("Ignoring approvals with incompatible datetime types", extra={"pr_number": record.number})

    return PullRequestMetric(
        number=record.number,
        author=record.author,
        cycleTimeHours=cycle_time,
        reviewTimeHours=review_time,
        size=(record.additions or 0) + (record.deletions or 0),
        changedFilesCount=record.changedFilesCount or 0,
        title=record.title,
        labels=list(record.labels or []),
    )


def top_contributors(metrics: Sequence[PullRequestMetric], limit: int = TOP_CONTRIBUTORS) -> List[ContributorStats]:
    """Rank authors by PR count; ties keep first-encounter order."""
    pr_counts: Dict[str, int] = {}
    cycle_times: Dict[str, List[float]] = {}
    review_times: Dict[str, List[float]] = {}

    for metric in metrics:
        pr_counts[metric.author] = pr_counts.get(metric.author, 0) + 1
        cycle_times.setdefault(metric.author, []).append(metric.cycleTimeHours)
        if metric.reviewTimeHours is not None:
            review_times.setdefault(metric.author, []).append(metric.reviewTimeHours)

    # sorted() is stable, so equal counts stay in encounter order
    ranked = sorted(pr_counts, key=pr_counts.__getitem__, reverse=True)
    return [
        ContributorStats(
            author=author,
            totalPRs=pr_counts[author],
            avgCycleTime=mean(cycle_times.get(author, [])),
            avgReviewTime=mean(review_times.get(author, [])),
        )
        for author in ranked[:limit]
    ]


def summarize(records: Sequence[PullRequestRecord]) -> MetricsSummary:
    """Aggregate per-PR metrics for one period.

    Each field is filtered independently, so a merged PR without an approval
    still contributes its cycle time and size.
    """
    metrics = [metric for metric in (per_record_metric(record) for record in records) if metric is not None]

    return MetricsSummary(
        count=len(metrics),
        cycleTime=summarize_values([metric.cycleTimeHours for metric in metrics]),
        reviewTime=summarize_values([metric.reviewTimeHours for metric in metrics]),
        size=summarize_values([float(metric.size) for metric in metrics]),
        topContributors=top_contributors(metrics),
        pullRequests=metrics,
    )


def calculate_delta(
    old_value: Optional[float],
    new_value: Optional[float],
    lower_is_better: bool = True,
) -> Optional[MetricDelta]:
    """Return the normalized change between two values, ``None`` if either is missing or zero."""
    if not old_value or not new_value:
        return None

    percent_change = (new_value - old_value) / old_value * 100.0
    improvement = -percent_change if lower_is_better else percent_change
    return MetricDelta(
        oldValue=old_value,
        newValue=new_value,
        percentChange=percent_change,
        improvement=improvement,
        isImprovement=improvement > 0,
    )


def impact_band(overall_improvement: float) -> str:
    magnitude = abs(overall_improvement)
    if magnitude < 5:
        return "minimal"
    if magnitude < 15:
        return "moderate"
    return "significant"


def _paired_values(summary: Optional[MetricsSummary]) -> Dict[str, Optional[float]]:
    if summary is None:
        return {name: None for name in DEFAULT_LOWER_IS_BETTER}
    return {
        "cycle_time": summary.cycleTime.mean,
        "review_time": summary.reviewTime.mean,
        "pr_size": summary.size.mean,
        "total_prs": float(summary.count),
    }


def compare(
    previous: Optional[MetricsSummary],
    current: Optional[MetricsSummary],
    lower_is_better: Optional[Mapping[str, bool]] = None,
) -> PeriodComparison:
    """Compare two periods' summaries metric by metric.

    ``overallImprovement`` is the mean of every available normalized
    improvement (zero when none is available) and is banded as minimal
    (< 5), moderate (< 15) or significant.
    """
    directions = dict(DEFAULT_LOWER_IS_BETTER)
    directions.update(lower_is_better or {})

    old_values = _paired_values(previous)
    new_values = _paired_values(current)

    deltas: Dict[str, Optional[MetricDelta]] = {
        name: calculate_delta(old_values.get(name), new_values.get(name), directions[name])
        for name in directions
    }

    improvements = [delta.improvement for delta in deltas.values() if delta is not None]
    overall = sum(improvements) / len(improvements) if improvements else 0.0
    band = impact_band(overall)
    direction = "faster" if overall > 0 else "slower"

    return PeriodComparison(
        deltas=deltas,
        overallImprovement=overall,
        band=band,
        summary=f"{abs(overall):.1f}% {direction} delivery ({band} impact)",
    )


def analyze_commit_frequency(commits: Sequence[CommitRecord], period_days: float) -> CommitFrequency:
    """Compute commit cadence for a period of ``period_days`` days."""
    by_day: Dict[str, Tuple[int, List[str]]] = {}
    for commit in commits:
        if commit.authoredAt is None:
            continue
        day = commit.authoredAt.date().isoformat()
        count, authors = by_day.get(day, (0, []))
        if commit.authorName not in authors:
            authors = authors + [commit.authorName]
        by_day[day] = (count + 1, authors)

    total = len(commits)
    active_days = len(by_day)
    return CommitFrequency(
        totalCommits=total,
        activeDays=active_days,
        avgCommitsPerDay=total / period_days if period_days > 0 else 0.0,
        avgCommitsPerActiveDay=total / active_days if active_days else 0.0,
        commitsByDay=by_day,
    )
