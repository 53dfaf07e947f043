"""Domain models for GitHub pull-request delivery metrics.

These dataclasses intentionally model only the subset of API payload fields that
are required for metric computation and period comparison.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple


@dataclass(slots=True, frozen=True)
class TimeWindow:
    """Half-open ``[since, until)`` interval used to select records."""

    since: datetime
    until: datetime

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return self.since <= moment < self.until

    @property
    def days(self) -> float:
        return (self.until - self.since).total_seconds() / 86400.0


@dataclass(slots=True)
class Review:
    """A single pull request review state transition."""

    state: str
    submittedAt: Optional[datetime]


@dataclass(slots=True)
class PullRequestRecord:
    """Represents the minimal pull request data required for delivery metrics."""

    number: int
    author: str
    createdAt: Optional[datetime]
    mergedAt: Optional[datetime]
    additions: int = 0
    deletions: int = 0
    changedFilesCount: int = 0
    reviews: List[Review] = field(default_factory=list)
    title: str = ""
    labels: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CommitRecord:
    """Represents one commit used for commit-frequency analysis."""

    sha: str
    authorName: str
    authoredAt: Optional[datetime]


@dataclass(slots=True)
class PullRequestMetric:
    """Per-PR measurements in hours (and changed lines for size)."""

    number: int
    author: str
    cycleTimeHours: float
    reviewTimeHours: Optional[float]
    size: int
    changedFilesCount: int = 0
    title: str = ""
    labels: List[str] = field(default_factory=list)


@dataclass(slots=True)
class FieldStats:
    """Aggregate statistics for one metric field; values are ``None`` when empty."""

    count: int
    mean: Optional[float]
    median: Optional[float]
    p95: Optional[float]


@dataclass(slots=True)
class ContributorStats:
    """Per-author PR count with their own mean cycle and review time."""

    author: str
    totalPRs: int
    avgCycleTime: Optional[float]
    avgReviewTime: Optional[float]


@dataclass(slots=True)
class MetricsSummary:
    """Aggregated metrics for one repository over one time window."""

    count: int
    cycleTime: FieldStats
    reviewTime: FieldStats
    size: FieldStats
    topContributors: List[ContributorStats] = field(default_factory=list)
    pullRequests: List[PullRequestMetric] = field(default_factory=list)


@dataclass(slots=True)
class MetricDelta:
    """Period-over-period change for one metric.

    ``improvement`` is sign-adjusted so that a positive value always means
    the current period is better than the previous one.
    """

    oldValue: float
    newValue: float
    percentChange: float
    improvement: float
    isImprovement: bool


@dataclass(slots=True)
class PeriodComparison:
    """Normalized comparison of two periods' metrics summaries."""

    deltas: Dict[str, Optional[MetricDelta]]
    overallImprovement: float
    band: str
    summary: str


@dataclass(slots=True)
class CommitFrequency:
    """Commit cadence for one period; ``commitsByDay`` maps ISO date to (count, authors)."""

    totalCommits: int
    activeDays: int
    avgCommitsPerDay: float
    avgCommitsPerActiveDay: float
    commitsByDay: Dict[str, Tuple[int, List[str]]] = field(default_factory=dict)


@dataclass(slots=True)
class UsageStats:
    """API usage counters and cache state exposed to the reporting layer.

    ``cacheEfficiency`` is the percentage of requests served from the cache;
    ``remainingHourly``/``remainingBurst`` are the unused client-side budgets.
    """

    requestsIssued: int
    cacheHits: int
    rateLimitHits: int
    totalWaitMs: float
    backoffEvents: int = 0
    cacheEfficiency: float = 0.0
    remainingHourly: Optional[int] = None
    remainingBurst: Optional[int] = None
    cacheEnabled: bool = False
    cacheMisses: int = 0
    cacheEntries: int = 0
    cacheSize: str = "0 Bytes"


@dataclass(slots=True)
class Repository:
    """Represents a repository returned by organization discovery."""

    name: str
    fullName: str
    archived: bool = False
    fork: bool = False
    size: int = 0
    language: Optional[str] = None
    updatedAt: Optional[str] = None
