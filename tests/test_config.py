"""Tests for configuration loading and validation."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deliveryspeed.config import load_config
from deliveryspeed.errors import AuthenticationError, ConfigurationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "GITHUB_TOKEN",
        "GITHUB_ORG",
        "GITHUB_REPOS",
        "GITHUB_EXCLUDE_REPOS",
        "GITHUB_OUTPUT_DIR",
        "DELIVERY_CACHE_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_config_with_explicit_values(monkeypatch):
    """Verify explicit arguments build a config and previous days default to current days."""
    monkeypatch.setenv("GITHUB_TOKEN", " secret ")

    config = load_config(organization="org", repositories=["api", " web "], current_days=30)

    assert config.organization == "org"
    assert config.repositories == ("api", "web")
    assert config.previous_days == 30
    assert config.token == "secret"
    assert config.cache_dir == Path(".cache")
    assert config.output_dir == Path("reports")
    assert config.cache_max_age_ms == 4 * 60 * 60 * 1000


def test_load_config_falls_back_to_environment(monkeypatch):
    """Verify organization, repositories and directories fall back to env vars."""
    monkeypatch.setenv("GITHUB_TOKEN", "secret")
    monkeypatch.setenv("GITHUB_ORG", "env-org")
    monkeypatch.setenv("GITHUB_REPOS", "api, web,legacy")
    monkeypatch.setenv("GITHUB_EXCLUDE_REPOS", "legacy")
    monkeypatch.setenv("GITHUB_OUTPUT_DIR", "out")
    monkeypatch.setenv("DELIVERY_CACHE_DIR", "/tmp/delivery-cache")

    config = load_config(organization=None, repositories=None, current_days=7, previous_days=14, gap_days=3)

    assert config.organization == "env-org"
    assert config.repositories == ("api", "web")
    assert config.exclude_repositories == ("legacy",)
    assert config.previous_days == 14
    assert config.gap_days == 3
    assert config.output_dir == Path("out")
    assert config.cache_dir == Path("/tmp/delivery-cache")


def test_load_config_missing_organization_raises(monkeypatch):
    """Verify a missing organization is a configuration error."""
    monkeypatch.setenv("GITHUB_TOKEN", "secret")

    with pytest.raises(ConfigurationError, match="Organization"):
        load_config(organization="", repositories=["api"], current_days=30)


def test_load_config_missing_repositories_raises(monkeypatch):
    """Verify an empty repository list is rejected unless discovery is used."""
    monkeypatch.setenv("GITHUB_TOKEN", "secret")

    with pytest.raises(ConfigurationError, match="repository"):
        load_config(organization="org", repositories=[], current_days=30)

    config = load_config(organization="org", repositories=[], current_days=30, require_repositories=False)
    assert config.repositories == ()


def test_load_config_invalid_periods_raise(monkeypatch):
    """Verify non-positive periods and negative gaps are rejected."""
    monkeypatch.setenv("GITHUB_TOKEN", "secret")

    with pytest.raises(ConfigurationError, match="days"):
        load_config(organization="org", repositories=["api"], current_days=0)
    with pytest.raises(ConfigurationError, match="compare-days"):
        load_config(organization="org", repositories=["api"], current_days=30, previous_days=-1)
    with pytest.raises(ConfigurationError, match="gap-days"):
        load_config(organization="org", repositories=["api"], current_days=30, gap_days=-2)


def test_load_config_missing_token_raises_authentication_error():
    """Verify a missing GITHUB_TOKEN is an authentication error."""
    with pytest.raises(AuthenticationError, match="GITHUB_TOKEN"):
        load_config(organization="org", repositories=["api"], current_days=30)
