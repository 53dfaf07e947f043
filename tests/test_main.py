"""Tests for application orchestration in the main module."""

import json
import sys
from argparse import Namespace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock, call, patch

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deliveryspeed.config import Config
from deliveryspeed.errors import ApiError, AuthenticationError, ConfigurationError, PartialRecordError
from deliveryspeed.kpi import compare, summarize
from deliveryspeed.main import (
    analyze_repository,
    build_periods,
    collect_records,
    discover_repositories,
    orchestrate_analysis,
    write_report,
)
from deliveryspeed.models import Repository, UsageStats

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _args(**overrides) -> Namespace:
    values = dict(
        org="org",
        repos=["api", "web"],
        days=30,
        compare_days=None,
        gap_days=0,
        output_dir=None,
        cache_dir=None,
        no_cache=False,
        discover_repos=False,
        discover_active=False,
        verbose=False,
    )
    values.update(overrides)
    return Namespace(**values)


def _config(**overrides) -> Config:
    values = dict(
        organization="org",
        repositories=("api", "web"),
        current_days=30,
        previous_days=30,
        gap_days=0,
        token="secret",
    )
    values.update(overrides)
    return Config(**values)


def _detail(number: int) -> dict:
    return {
        "number": number,
        "user": {"login": "octocat"},
        "created_at": "2026-02-01T00:00:00Z",
        "merged_at": "2026-02-01T04:00:00Z",
        "additions": 3,
        "deletions": 1,
        "reviews": [],
    }


def test_orchestrate_analysis_success(capsys, tmp_path):
    """Verify orchestration returns 0 and wires components correctly on success."""
    config = _config(output_dir=tmp_path)
    client = Mock()
    client.usage_stats.return_value = UsageStats(requestsIssued=1, cacheHits=0, rateLimitHits=0, totalWaitMs=0)

    with patch("deliveryspeed.main.parse_args", return_value=_args()) as parse_args_mock, patch(
        "deliveryspeed.main.load_config", return_value=config
    ) as load_config_mock, patch(
        "deliveryspeed.main.GitHubClient", return_value=client
    ) as client_ctor_mock, patch(
        "deliveryspeed.main.analyze_repository", side_effect=lambda c, cfg, repo, now: {"repository": repo}
    ) as analyze_mock, patch(
        "deliveryspeed.main.generate_report", return_value="REPORT"
    ) as report_mock, patch(
        "deliveryspeed.main.write_report", return_value=tmp_path / "report.json"
    ) as write_mock:
        exit_code = orchestrate_analysis(["--org", "org"])

    assert exit_code == 0
    parse_args_mock.assert_called_once_with(["--org", "org"])
    load_config_mock.assert_called_once_with(
        organization="org",
        repositories=["api", "web"],
        current_days=30,
        previous_days=None,
        gap_days=0,
        cache_dir=None,
        cache_enabled=True,
        output_dir=None,
        require_repositories=True,
    )
    client_ctor_mock.assert_called_once_with(config=config)
    client.sweep_cache.assert_called_once_with()
    assert [c.args[2] for c in analyze_mock.call_args_list] == ["api", "web"]
    report_mock.assert_called_once_with([{"repository": "api"}, {"repository": "web"}], client.usage_stats.return_value)
    write_mock.assert_called_once()
    output = capsys.readouterr().out
    assert "REPORT" in output
    assert "Comparing last 30 days vs previous 30 days for 2 repositories" in output


def test_orchestrate_analysis_configuration_error_returns_2(capsys):
    """Verify configuration failures map to exit code 2."""
    with patch("deliveryspeed.main.parse_args", return_value=_args()), patch(
        "deliveryspeed.main.load_config", side_effect=ConfigurationError("bad config")
    ):
        exit_code = orchestrate_analysis([])

    assert exit_code == 2
    assert "Configuration error: bad config" in capsys.readouterr().err


def test_orchestrate_analysis_authentication_error_returns_3(capsys):
    """Verify authentication failures map to exit code 3."""
    with patch("deliveryspeed.main.parse_args", return_value=_args()), patch(
        "deliveryspeed.main.load_config", side_effect=AuthenticationError("missing token")
    ):
        exit_code = orchestrate_analysis([])

    assert exit_code == 3
    assert "Authentication error: missing token" in capsys.readouterr().err


def test_orchestrate_analysis_api_error_returns_4(capsys):
    """Verify API failures outside per-repository analysis map to exit code 4."""
    client = Mock()
    client.list_repositories.side_effect = ApiError("forbidden", status_code=403)

    with patch("deliveryspeed.main.parse_args", return_value=_args(discover_repos=True)), patch(
        "deliveryspeed.main.load_config", return_value=_config(repositories=())
    ), patch("deliveryspeed.main.GitHubClient", return_value=client):
        exit_code = orchestrate_analysis([])

    assert exit_code == 4
    assert "GitHub API error: forbidden" in capsys.readouterr().err


def test_orchestrate_analysis_unexpected_error_returns_1():
    """Verify unexpected exceptions map to exit code 1."""
    with patch("deliveryspeed.main.parse_args", return_value=_args()), patch(
        "deliveryspeed.main.load_config", side_effect=RuntimeError("boom")
    ):
        exit_code = orchestrate_analysis([])

    assert exit_code == 1


def test_orchestrate_analysis_discovery_without_results_returns_2(capsys):
    """Verify discovery that finds nothing is reported as a configuration problem."""
    client = Mock()
    client.list_repositories.return_value = []

    with patch("deliveryspeed.main.parse_args", return_value=_args(discover_repos=True)), patch(
        "deliveryspeed.main.load_config", return_value=_config(repositories=())
    ), patch("deliveryspeed.main.GitHubClient", return_value=client):
        exit_code = orchestrate_analysis([])

    assert exit_code == 2
    assert "No repositories found" in capsys.readouterr().err


def test_build_periods_with_gap():
    """Verify the previous window ends current_days + gap_days before now."""
    current, previous = build_periods(NOW, current_days=30, previous_days=14, gap_days=7)

    assert current.since == NOW - timedelta(days=30)
    assert current.until == NOW
    assert previous.until == NOW - timedelta(days=37)
    assert previous.since == NOW - timedelta(days=51)


def test_build_periods_without_gap_are_adjacent():
    """Verify windows without a gap share their boundary."""
    current, previous = build_periods(NOW, current_days=30, previous_days=30)

    assert previous.until == current.since


def test_collect_records_skips_partial_failures():
    """Verify a failing detail fetch skips only that pull request."""
    client = Mock()
    client.fetch_detail.side_effect = [_detail(1), PartialRecordError("reviews failed"), _detail(3)]
    pulls = [
        {"number": 1, "updated_at": "t1"},
        {"number": 2, "updated_at": "t2"},
        {"number": 3, "updated_at": "t3"},
    ]

    records = collect_records(client, "org", "api", pulls)

    assert [record.number for record in records] == [1, 3]
    assert client.fetch_detail.call_args_list == [
        call("org", "api", 1, "t1"),
        call("org", "api", 2, "t2"),
        call("org", "api", 3, "t3"),
    ]


def test_collect_records_propagates_non_partial_errors():
    """Verify errors other than partial failures abort collection."""
    client = Mock()
    client.fetch_detail.side_effect = ApiError("rate limited twice", status_code=403)

    with pytest.raises(ApiError):
        collect_records(client, "org", "api", [{"number": 1}])


def test_analyze_repository_compares_both_periods():
    """Verify both windows are fetched and summarized into a comparison."""
    client = Mock()
    client.fetch_records_in_window.side_effect = [[{"number": 1, "updated_at": "t"}], []]
    client.fetch_commits_in_window.return_value = []
    client.fetch_detail.return_value = _detail(1)

    analysis = analyze_repository(client, _config(), "api", NOW)

    assert analysis["repository"] == "api"
    current = analysis["periods"]["current"]
    assert current["start"] == "2026-01-30"
    assert current["end"] == "2026-03-01"
    assert current["summary"].count == 1
    assert current["summary"].cycleTime.mean == 4.0
    assert analysis["periods"]["previous"]["summary"].count == 0
    assert analysis["comparison"].deltas["cycle_time"] is None
    windows = [c.args[2] for c in client.fetch_records_in_window.call_args_list]
    assert windows[0].since == windows[1].until


def test_analyze_repository_reports_api_error():
    """Verify an API failure is captured in the analysis instead of raised."""
    client = Mock()
    client.fetch_records_in_window.side_effect = ApiError("not found", status_code=404)

    analysis = analyze_repository(client, _config(), "missing", NOW)

    assert analysis["repository"] == "missing"
    assert analysis["error"] == "not found"
    assert "periods" not in analysis


def test_discover_repositories_filters_excluded_and_inactive():
    """Verify discovery drops excluded repositories and, optionally, inactive ones."""
    client = Mock()
    client.list_repositories.return_value = [
        Repository(name="api", fullName="org/api"),
        Repository(name="legacy", fullName="org/legacy"),
        Repository(name="web", fullName="org/web"),
    ]
    client.recent_activity.side_effect = lambda owner, name: {"recent_commits": 5 if name == "api" else 0}
    config = _config(repositories=(), exclude_repositories=("legacy",))

    assert discover_repositories(client, config) == ["api", "web"]
    assert discover_repositories(client, config, active_only=True) == ["api"]


def test_write_report_serializes_dataclasses(tmp_path):
    """Verify the JSON report contains summaries, comparison and usage."""
    summary = summarize([])
    analyses = [
        {"repository": "api", "comparison": compare(summary, summary), "periods": {"current": {"summary": summary}}},
        {"repository": "broken", "error": "boom"},
    ]
    usage = UsageStats(requestsIssued=3, cacheHits=2, rateLimitHits=0, totalWaitMs=0)

    path = write_report(tmp_path / "reports", analyses, usage, NOW)

    assert path.name == "delivery-analysis-2026-03-01-12-00.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["summary"]["total_repositories"] == 2
    assert payload["summary"]["overall_improvement_percent"] == 0.0
    assert payload["repositories"][0]["comparison"]["band"] == "minimal"
    assert payload["usage"]["cacheHits"] == 2


def test_write_report_includes_usage_budget_and_per_pr_details(tmp_path):
    """Verify the JSON report carries budget and cache usage and per-PR details."""
    summary = summarize([])
    analyses = [{"repository": "api", "comparison": compare(summary, summary), "periods": {"current": {"summary": summary}}}]
    usage = UsageStats(
        requestsIssued=5,
        cacheHits=5,
        rateLimitHits=0,
        totalWaitMs=0,
        cacheEfficiency=50.0,
        remainingHourly=4495,
        remainingBurst=95,
        cacheEnabled=True,
        cacheEntries=3,
        cacheSize="2 KB",
    )

    path = write_report(tmp_path, analyses, usage, NOW)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["usage"]["cacheEfficiency"] == 50.0
    assert payload["usage"]["remainingHourly"] == 4495
    assert payload["usage"]["cacheEntries"] == 3
    assert payload["repositories"][0]["periods"]["current"]["summary"]["pullRequests"] == []
