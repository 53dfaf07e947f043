"""Configuration parsing and validation for the GitHub delivery-speed analyzer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

from .errors import AuthenticationError, ConfigurationError

PERIOD_PRESETS = {
    "weekly": 7,
    "monthly": 30,
    "quarterly": 90,
    "6months": 180,
    "yearly": 365,
}


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the analyzer."""

    organization: str
    repositories: Tuple[str, ...]
    current_days: int
    previous_days: int
    gap_days: int
    token: str
    cache_dir: Path = Path(".cache")
    cache_enabled: bool = True
    cache_max_age_hours: float = 4.0
    requests_per_hour: int = 4500
    burst_limit: int = 100
    output_dir: Path = Path("reports")
    exclude_repositories: Tuple[str, ...] = ()

    @property
    def cache_max_age_ms(self) -> float:
        return self.cache_max_age_hours * 60 * 60 * 1000


def _split_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(
    organization: Optional[str],
    repositories: Optional[Sequence[str]],
    current_days: int,
    previous_days: Optional[int] = None,
    gap_days: int = 0,
    cache_dir: Optional[str] = None,
    cache_enabled: bool = True,
    output_dir: Optional[str] = None,
    requests_per_hour: int = 4500,
    burst_limit: int = 100,
    require_repositories: bool = True,
) -> Config:
    """Build and validate application configuration.

    Explicit arguments win over environment variables. ``GITHUB_ORG``,
    ``GITHUB_REPOS``, ``GITHUB_EXCLUDE_REPOS``, ``GITHUB_OUTPUT_DIR`` and
    ``DELIVERY_CACHE_DIR`` fill in values that were not supplied.

    Args:
        organization: GitHub organization (owner) name.
        repositories: Repository names to analyze.
        current_days: Length of the current period in days.
        previous_days: Length of the comparison period; defaults to ``current_days``.
        gap_days: Days skipped between the two periods.
        cache_dir: Directory holding cached API responses.
        cache_enabled: Whether the response cache is used at all.
        output_dir: Directory the JSON report is written to.
        requests_per_hour: Client-side hourly request budget.
        burst_limit: Client-side per-minute request budget.
        require_repositories: Reject an empty repository list when true.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a value is missing or out of range.
        AuthenticationError: If ``GITHUB_TOKEN`` is not configured.
    """
    organization = (organization or os.getenv("GITHUB_ORG", "")).strip()
    if not organization:
        raise ConfigurationError(
            "Organization name is required. Pass --org or set the 'GITHUB_ORG' environment variable."
        )

    repos: Tuple[str, ...] = tuple(r.strip() for r in repositories or () if r.strip())
    if not repos:
        repos = _split_list(os.getenv("GITHUB_REPOS"))
    excluded = _split_list(os.getenv("GITHUB_EXCLUDE_REPOS"))
    repos = tuple(repo for repo in repos if repo not in excluded)
    if require_repositories and not repos:
        raise ConfigurationError(
            "At least one repository is required. Pass --repos, use --discover-repos, "
            "or set the 'GITHUB_REPOS' environment variable."
        )

    if previous_days is None:
        previous_days = current_days
    if current_days <= 0:
        raise ConfigurationError("Invalid value for 'days': expected an integer greater than 0.")
    if previous_days <= 0:
        raise ConfigurationError("Invalid value for 'compare-days': expected an integer greater than 0.")
    if gap_days < 0:
        raise ConfigurationError("Invalid value for 'gap-days': expected a non-negative integer.")
    if requests_per_hour <= 0 or burst_limit <= 0:
        raise ConfigurationError("Request budgets must be greater than 0.")

    token: str = os.getenv("GITHUB_TOKEN", "").strip()
    if not token:
        raise AuthenticationError(
            "Missing required GitHub token. "
            "Set the 'GITHUB_TOKEN' environment variable before running the analyzer."
        )

    resolved_cache_dir = cache_dir or os.getenv("DELIVERY_CACHE_DIR") or ".cache"
    resolved_output_dir = output_dir or os.getenv("GITHUB_OUTPUT_DIR") or "reports"

    return Config(
        organization=organization,
        repositories=repos,
        current_days=current_days,
        previous_days=previous_days,
        gap_days=gap_days,
        token=token,
        cache_dir=Path(resolved_cache_dir),
        cache_enabled=cache_enabled,
        requests_per_hour=requests_per_hour,
        burst_limit=burst_limit,
        output_dir=Path(resolved_output_dir),
        exclude_repositories=excluded,
    )
