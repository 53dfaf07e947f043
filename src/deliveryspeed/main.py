"""Entry point orchestrating a two-period delivery-speed analysis."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .cli import parse_args
from .config import Config, load_config
from .errors import ApiError, AuthenticationError, ConfigurationError, PartialRecordError
from .github_client import GitHubClient, parse_commit, parse_pull_request
from .kpi import analyze_commit_frequency, compare, summarize
from .models import PullRequestRecord, TimeWindow
from .stats import generate_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_API = 4

_PROGRESS_EVERY = 25
_ACTIVITY_CHECK_LIMIT = 20


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_periods(
    now: datetime,
    current_days: int,
    previous_days: int,
    gap_days: int = 0,
) -> Tuple[TimeWindow, TimeWindow]:
    """Return ``(current, previous)`` windows ending at ``now``.

    The previous window ends ``current_days + gap_days`` before ``now`` and
    spans ``previous_days``.
    """
    current = TimeWindow(since=now - timedelta(days=current_days), until=now)
    previous_end = now - timedelta(days=current_days + gap_days)
    previous = TimeWindow(since=previous_end - timedelta(days=previous_days), until=previous_end)
    return current, previous


def collect_records(
    client: GitHubClient,
    owner: str,
    repo: str,
    pulls: Sequence[Dict[str, Any]],
) -> List[PullRequestRecord]:
    """Fetch details for each listed pull request, skipping ones that fail."""
    records: List[PullRequestRecord] = []
    skipped = 0

    for processed, pull in enumerate(pulls, start=1):
        number = pull.get("number")
        if number is None:
            skipped += 1
            continue

        try:
            detail = client.fetch_detail(owner, repo, int(number), pull.get("updated_at"))
        except PartialRecordError as exc:
            skipped += 1
            logger.warning(
                "Skipping pull request after failed detail fetch",
                extra={"repository": f"{owner}/{repo}", "pr_number": number, "error": str(exc)},
            )
            continue

        records.append(parse_pull_request(detail))

        if processed % _PROGRESS_EVERY == 0:
            logger.info(
                "Processed pull requests",
                extra={"repository": f"{owner}/{repo}", "processed": processed, "total": len(pulls)},
            )

    logger.info(
        "Collected pull request records",
        extra={"repository": f"{owner}/{repo}", "records": len(records), "skipped": skipped},
    )
    return records


def analyze_repository(client: GitHubClient, config: Config, repo: str, now: datetime) -> Dict[str, Any]:
    """Fetch both periods for one repository and compare them.

    API failures are reported in the result instead of aborting the run.
    """
    owner = config.organization
    current_window, previous_window = build_periods(
        now, config.current_days, config.previous_days, config.gap_days
    )

    try:
        current_pulls = client.fetch_records_in_window(owner, repo, current_window)
        previous_pulls = client.fetch_records_in_window(owner, repo, previous_window)
        current_commits = client.fetch_commits_in_window(owner, repo, current_window)
        previous_commits = client.fetch_commits_in_window(owner, repo, previous_window)

        print(f"  Found {len(current_pulls)} current PRs, {len(previous_pulls)} previous PRs")

        current_summary = summarize(collect_records(client, owner, repo, current_pulls))
        previous_summary = summarize(collect_records(client, owner, repo, previous_pulls))
    except ApiError as exc:
        logger.error("Repository analysis failed", extra={"repository": f"{owner}/{repo}", "error": str(exc)})
        print(f"  Error analyzing {owner}/{repo}: {exc}", file=sys.stderr)
        return {"repository": repo, "error": str(exc), "generated_at": now.isoformat()}

    return {
        "repository": repo,
        "periods": {
            "current": {
                "start": current_window.since.date().isoformat(),
                "end": current_window.until.date().isoformat(),
                "summary": current_summary,
                "commit_frequency": analyze_commit_frequency(
                    [parse_commit(item) for item in current_commits], config.current_days
                ),
            },
            "previous": {
                "start": previous_window.since.date().isoformat(),
                "end": previous_window.until.date().isoformat(),
                "summary": previous_summary,
                "commit_frequency": analyze_commit_frequency(
                    [parse_commit(item) for item in previous_commits], config.previous_days
                ),
            },
        },
        "comparison": compare(previous_summary, current_summary),
        "generated_at": now.isoformat(),
    }


def discover_repositories(client: GitHubClient, config: Config, active_only: bool = False) -> List[str]:
    """List organization repositories, optionally keeping only recently active ones."""
    repositories = [
        repo.name
        for repo in client.list_repositories(config.organization)
        if repo.name not in config.exclude_repositories
    ]
    if not active_only:
        return repositories

    active: List[str] = []
    for name in repositories[:_ACTIVITY_CHECK_LIMIT]:
        activity = client.recent_activity(config.organization, name)
        if activity["recent_commits"] > 0:
            active.append(name)
    return active


def _json_default(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_report(output_dir: Path, analyses: Sequence[Dict[str, Any]], usage: Any, now: datetime) -> Path:
    """Write the full analysis as JSON and return the file path."""
    improvements = [
        analysis["comparison"].overallImprovement for analysis in analyses if "comparison" in analysis
    ]
    payload = {
        "summary": {
            "total_repositories": len(analyses),
            "overall_improvement_percent": sum(improvements) / len(improvements) if improvements else 0.0,
            "generated_at": now.isoformat(),
        },
        "repositories": list(analyses),
        "usage": usage,
    }

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"delivery-analysis-{now.strftime('%Y-%m-%d-%H-%M')}.json"
    path.write_text(json.dumps(payload, indent=2, default=_json_default), encoding="utf-8")
    return path


def orchestrate_analysis(argv: Optional[Sequence[str]] = None) -> int:
    """Run the analysis and map failures to process exit codes.

    Returns:
        0 on success, 2 for configuration errors, 3 for authentication
        errors, 4 for API errors that abort the run and 1 otherwise.
    """
    try:
        args = parse_args(argv)
        configure_logging(args.verbose)

        discover = bool(args.discover_repos or args.discover_active)
        config = load_config(
            organization=args.org,
            repositories=args.repos,
            current_days=args.days,
            previous_days=args.compare_days,
            gap_days=args.gap_days,
            cache_dir=args.cache_dir,
            cache_enabled=not args.no_cache,
            output_dir=args.output_dir,
            require_repositories=not discover,
        )
        client = GitHubClient(config=config)

        if discover:
            repositories = discover_repositories(client, config, active_only=args.discover_active)
            if not repositories:
                print("No repositories found matching criteria.", file=sys.stderr)
                return EXIT_CONFIGURATION
        else:
            repositories = list(config.repositories)

        client.sweep_cache()

        gap_text = f" (with {config.gap_days} day gap)" if config.gap_days else ""
        print(
            f"Comparing last {config.current_days} days vs previous {config.previous_days} days{gap_text} "
            f"for {len(repositories)} repositories"
        )

        now = datetime.now(timezone.utc)
        analyses: List[Dict[str, Any]] = []
        for index, repo in enumerate(repositories, start=1):
            print(f"Repository {index}/{len(repositories)}: {config.organization}/{repo}")
            analyses.append(analyze_repository(client, config, repo, now))

        usage = client.usage_stats()
        print(generate_report(analyses, usage))

        report_path = write_report(config.output_dir, analyses, usage, now)
        print(f"Full report saved to: {report_path}")
        return EXIT_OK
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        print(f"Authentication error: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except ApiError as exc:
        print(f"GitHub API error: {exc}", file=sys.stderr)
        return EXIT_API
    except Exception:
        logger.exception("Unexpected failure during delivery-speed analysis")
        return EXIT_UNEXPECTED


def main() -> None:
    raise SystemExit(orchestrate_analysis())


if __name__ == "__main__":
    main()
