"""Command-line argument parsing for the GitHub delivery-speed analyzer."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .config import PERIOD_PRESETS


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("must not be negative")

    return parsed


def _repo_list(value: str) -> list:
    return [repo.strip() for repo in value.split(",") if repo.strip()]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for a delivery-speed analysis.

    Returns:
        Parsed CLI arguments. ``days`` is resolved from ``--period`` when
        ``--days`` is not supplied.
    """
    parser = argparse.ArgumentParser(
        prog="github-delivery-speed",
        description=(
            "Compare pull-request delivery speed (cycle time, review time, size) "
            "between two periods for GitHub repositories."
        ),
    )

    parser.add_argument("--org", default=None, help="GitHub organization name (or GITHUB_ORG).")
    parser.add_argument(
        "--repos",
        type=_repo_list,
        default=[],
        help="Comma-separated list of repositories to analyze (or GITHUB_REPOS).",
    )
    parser.add_argument(
        "--period",
        choices=sorted(PERIOD_PRESETS),
        default="quarterly",
        help="Time period preset for the current period (default: quarterly).",
    )
    parser.add_argument(
        "--days",
        type=_positive_int,
        default=None,
        help="Custom number of days for the current period; overrides --period.",
    )
    parser.add_argument(
        "--compare-days",
        type=_positive_int,
        default=None,
        help="Number of days in the comparison period (default: same as current).",
    )
    parser.add_argument(
        "--gap-days",
        type=_non_negative_int,
        default=0,
        help="Days skipped between the comparison and current periods (default: 0).",
    )
    parser.add_argument("--output-dir", default=None, help="Directory for the JSON report (default: reports).")
    parser.add_argument("--cache-dir", default=None, help="Directory for cached API responses (default: .cache).")
    parser.add_argument("--no-cache", action="store_true", help="Disable the response cache.")
    parser.add_argument(
        "--discover-repos",
        action="store_true",
        help="Analyze every non-archived, non-fork repository of the organization.",
    )
    parser.add_argument(
        "--discover-active",
        action="store_true",
        help="Like --discover-repos but keep only repositories with recent commits.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    args = parser.parse_args(argv)
    if args.days is None:
        args.days = PERIOD_PRESETS[args.period]
    return args
