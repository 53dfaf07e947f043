"""GitHub REST API client with rate budgeting, response caching and pagination."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests
from requests.structures import CaseInsensitiveDict

from .cache import ResponseCache, make_key
from .config import Config
from .errors import ApiError, PartialRecordError, RateLimitError
from .models import CommitRecord, PullRequestRecord, Repository, Review, TimeWindow, UsageStats
from .rate_governor import RateGovernor

logger = logging.getLogger(__name__)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub ISO8601 timestamps into timezone-aware datetimes."""
    if not value or not isinstance(value, str):
        return None

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: datetime) -> str:
    """Format a datetime as UTC ISO8601 suitable for GitHub query params."""
    utc_value = value.astimezone(timezone.utc)
    return utc_value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_pull_request(detail: Mapping[str, Any]) -> PullRequestRecord:
    """Convert a pull request detail payload (with ``reviews``) into a record.

    Missing or malformed fields degrade to empty values instead of raising.
    """
    user = detail.get("user") or {}
    reviews: List[Review] = []
    for item in detail.get("reviews") or []:
        if not isinstance(item, Mapping):
            continue
        reviews.append(
            Review(
                state=str(item.get("state") or ""),
                submittedAt=parse_datetime(item.get("submitted_at")),
            )
        )

    labels = [
        str(label.get("name"))
        for label in detail.get("labels") or []
        if isinstance(label, Mapping) and label.get("name")
    ]

    return PullRequestRecord(
        number=_as_int(detail.get("number")),
        author=str(user.get("login") or "unknown") if isinstance(user, Mapping) else "unknown",
        createdAt=parse_datetime(detail.get("created_at")),
        mergedAt=parse_datetime(detail.get("merged_at")),
        additions=_as_int(detail.get("additions")),
        deletions=_as_int(detail.get("deletions")),
        changedFilesCount=_as_int(detail.get("changed_files")),
        reviews=reviews,
        title=str(detail.get("title") or ""),
        labels=labels,
    )


def parse_commit(item: Mapping[str, Any]) -> CommitRecord:
    """Convert a commit list item into a ``CommitRecord``."""
    commit = item.get("commit") or {}
    author = commit.get("author") or {} if isinstance(commit, Mapping) else {}
    return CommitRecord(
        sha=str(item.get("sha") or ""),
        authorName=str(author.get("name") or "unknown"),
        authoredAt=parse_datetime(author.get("date")),
    )


@dataclass
class ApiResponse:
    """Status, headers and decoded JSON payload of one API call."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    payload: Any = None

    def __post_init__(self) -> None:
        self.headers = CaseInsensitiveDict(self.headers or {})

    def _int_header(self, name: str) -> Optional[int]:
        value = self.headers.get(name)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def remaining_quota(self) -> Optional[int]:
        return self._int_header("X-RateLimit-Remaining")

    @property
    def reset_at(self) -> Optional[int]:
        return self._int_header("X-RateLimit-Reset")


class GitHubClient:
    """Sequential GitHub client that budgets, caches and paginates requests."""

    _BASE_URL = "https://api.github.com"
    _API_VERSION = "2022-11-28"
    PAGE_SIZE = 100
    SUB_RESOURCE_DELAY_SECONDS = 0.1
    _MAX_RETRIES = 3
    _MAX_BACKOFF_SECONDS = 30
    _LOW_QUOTA_WARNING = 100
    _CRITICAL_QUOTA = 10

    def __init__(
        self,
        config: Config,
        cache: Optional[ResponseCache] = None,
        governor: Optional[RateGovernor] = None,
        sleeper: Callable[[float], None] = time.sleep,
        timeout_seconds: int = 30,
    ) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            config: Validated runtime configuration including the token.
            cache: Response cache; built from ``config`` when omitted.
            governor: Request budget tracker; built from ``config`` when omitted.
            sleeper: Blocks for the given number of seconds.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._config = config
        self._timeout_seconds = timeout_seconds
        self._sleeper = sleeper
        self._cache = cache or ResponseCache.at(
            config.cache_dir,
            max_age_ms=config.cache_max_age_ms,
            enabled=config.cache_enabled,
        )
        self._governor = governor or RateGovernor(
            hourly_limit=config.requests_per_hour,
            burst_limit=config.burst_limit,
        )

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": self._API_VERSION,
                "User-Agent": "github-delivery-speed",
            }
        )

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def governor(self) -> RateGovernor:
        return self._governor

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below the API root."""
        return f"{self._BASE_URL}/{path.lstrip('/')}"

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _rate_limit_reset(self, response: requests.Response) -> Optional[int]:
        """Return the reset epoch second if ``response`` is a rate-limit rejection."""
        if response.status_code not in (403, 429):
            return None

        headers = response.headers
        reset_header = headers.get("X-RateLimit-Reset")
        exhausted = (
            headers.get("X-RateLimit-Remaining") == "0"
            or "rate limit" in (response.text or "").lower()
            or response.status_code == 429
        )
        if reset_header and exhausted:
            try:
                return int(reset_header)
            except ValueError:
                pass

        retry_after = headers.get("Retry-After")
        if retry_after:
            try:
                return int(self._governor.now_ms() / 1000) + int(retry_after)
            except ValueError:
                pass

        return None

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        """Execute a GET request, retrying transport errors and 5xx responses.

        Raises:
            RateLimitError: If GitHub rejects the request for quota reasons.
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                or does not return valid JSON.
        """
        url = self._build_url(path)
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"GitHub request failed after retries: GET {url}") from exc
                self._sleeper(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code

            reset_at = self._rate_limit_reset(response)
            if reset_at is not None:
                raise RateLimitError(
                    f"GitHub rate limit exceeded: GET {url}",
                    reset_at=reset_at,
                    status_code=status_code,
                )

            if 500 <= status_code <= 599 and attempt < self._MAX_RETRIES:
                self._sleeper(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code >= 400:
                raise ApiError(
                    f"GitHub API request failed: GET {url} returned {status_code} - {response.text}",
                    status_code=status_code,
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"GitHub API returned invalid JSON: GET {url}") from exc

            return ApiResponse(status=status_code, headers=response.headers, payload=payload)

        raise ApiError(f"GitHub request failed after retries: GET {url}") from last_error

    def _wait_for_budget(self) -> float:
        wait_ms = self._governor.compute_wait_ms()
        if wait_ms > 0:
            logger.info(
                "Rate budget exhausted, waiting before next request",
                extra={"wait_seconds": math.ceil(wait_ms / 1000)},
            )
            self._sleeper(wait_ms / 1000.0)
            self._governor.on_waited(wait_ms)
        return wait_ms

    def _inspect_quota(self, response: ApiResponse) -> None:
        remaining = response.remaining_quota
        if remaining is None:
            return

        if remaining < self._LOW_QUOTA_WARNING:
            logger.warning("GitHub API quota running low", extra={"remaining": remaining})

        reset_at = response.reset_at
        if remaining <= self._CRITICAL_QUOTA and reset_at:
            self._governor.on_hard_limit(reset_at)

    def _execute(self, op: Callable[[], ApiResponse], cache_key: Optional[str]) -> Any:
        waited_ms = self._wait_for_budget()
        response = op()

        self._governor.record_success(from_cache=False)
        self._inspect_quota(response)

        if cache_key is not None:
            self._cache.set(cache_key, response.payload)

        if waited_ms <= 0:
            self._governor.on_clean_request()

        return response.payload

    def request(self, op: Callable[[], ApiResponse], cache_key: Optional[str] = None) -> Any:
        """Run ``op`` under the rate budget and return its payload.

        A cached payload short-circuits the call without consuming budget. A
        rate-limit rejection pauses until the quota resets and retries the
        operation exactly once; a second rejection propagates. Every other
        failure propagates unchanged.
        """
        if cache_key is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._governor.record_success(from_cache=True)
                return cached

        try:
            return self._execute(op, cache_key)
        except RateLimitError as exc:
            self._governor.on_hard_limit(exc.reset_at)
            logger.warning("Rate limited by GitHub, retrying once after reset", extra={"reset_at": exc.reset_at})

        try:
            return self._execute(op, cache_key)
        except RateLimitError as exc:
            self._governor.on_hard_limit(exc.reset_at)
            raise

    def paginate(
        self,
        fetch_page: Callable[[int], Any],
        stop_condition: Optional[Callable[[List[Any]], bool]] = None,
        keep: Optional[Callable[[Any], bool]] = None,
    ) -> List[Any]:
        """Fetch consecutive pages starting at 1 and accumulate their items.

        Stops after a page shorter than ``PAGE_SIZE`` or once
        ``stop_condition(page_items)`` holds. Only items accepted by ``keep``
        are collected.
        """
        records: List[Any] = []
        page = 1

        while True:
            page_items = fetch_page(page)
            if not isinstance(page_items, list):
                raise ApiError(f"GitHub API returned unexpected payload shape for page {page}")

            records.extend(item for item in page_items if keep is None or keep(item))

            if len(page_items) < self.PAGE_SIZE:
                break
            if stop_condition is not None and stop_condition(page_items):
                break

            page += 1
            if page % 5 == 0:
                logger.info("Paginating", extra={"page": page, "records": len(records)})

        return records

    def _list_page(self, path: str, params: Dict[str, Any]) -> Callable[[int], Any]:
        def fetch_page(page: int) -> Any:
            query = dict(params, per_page=self.PAGE_SIZE, page=page)
            return self.request(lambda: self._get(path, params=query))

        return fetch_page

    def _cached(self, key: str, fetch: Callable[[], Any]) -> Any:
        fetched = False

        def run() -> Any:
            nonlocal fetched
            fetched = True
            return fetch()

        payload = self._cache.get_or_fetch(key, run)
        if not fetched:
            self._governor.record_success(from_cache=True)
        return payload

    def fetch_records_in_window(self, owner: str, repo: str, window: TimeWindow) -> List[Dict[str, Any]]:
        """List closed pull requests created inside ``window``.

        Pull requests are listed newest-created first and filtered client-side
        on ``created_at``. Paging stops at a short page or at the first full
        page whose pull requests were all created before ``window.since``.
        The whole filtered list is cached as one entry.
        """
        scope = f"{owner}/{repo}"
        key = make_key(
            "pulls",
            scope,
            {
                "since": window.since.date().isoformat(),
                "until": window.until.date().isoformat(),
                "state": "closed",
            },
        )

        def created_in_window(item: Any) -> bool:
            return isinstance(item, Mapping) and window.contains(parse_datetime(item.get("created_at")))

        def past_window(page_items: List[Any]) -> bool:
            for item in page_items:
                created_at = parse_datetime(item.get("created_at")) if isinstance(item, Mapping) else None
                if created_at is None or created_at >= window.since:
                    return False
            return True

        def fetch_all() -> List[Dict[str, Any]]:
            logger.info("Fetching pull requests", extra={"repository": scope})
            fetch_page = self._list_page(
                f"repos/{owner}/{repo}/pulls",
                {"state": "closed", "sort": "created", "direction": "desc"},
            )
            pulls = self.paginate(fetch_page, stop_condition=past_window, keep=created_in_window)
            logger.info("Found pull requests", extra={"repository": scope, "count": len(pulls)})
            return pulls

        return self._cached(key, fetch_all)

    def fetch_detail(
        self,
        owner: str,
        repo: str,
        number: int,
        version_tag: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Fetch one pull request with its reviews and commits.

        The three sub-resources are requested one after another with a short
        pause in between. The combined payload is cached under the pull
        request number and ``version_tag`` (its ``updated_at``), so an edited
        pull request is fetched again. Without a version tag nothing is cached.

        Raises:
            PartialRecordError: If any sub-resource cannot be fetched.
            RateLimitError: If the rate-limit retry was exhausted.
        """
        scope = f"{owner}/{repo}"
        key = (
            make_key("pr-details", scope, {"number": number, "updated_at": version_tag})
            if version_tag
            else None
        )
        base_path = f"repos/{owner}/{repo}/pulls/{number}"

        def fetch_all() -> Dict[str, Any]:
            try:
                detail = self.request(lambda: self._get(base_path))
                if not isinstance(detail, dict):
                    raise ApiError(f"GitHub API returned unexpected payload shape: GET {base_path}")

                self._sleeper(self.SUB_RESOURCE_DELAY_SECONDS)
                reviews = self.paginate(self._list_page(f"{base_path}/reviews", {}))

                self._sleeper(self.SUB_RESOURCE_DELAY_SECONDS)
                commits = self.paginate(self._list_page(f"{base_path}/commits", {}))
            except RateLimitError:
                raise
            except ApiError as exc:
                raise PartialRecordError(
                    f"Could not fetch details for PR #{number} in {scope}: {exc}",
                    status_code=exc.status_code,
                ) from exc

            result = dict(detail)
            result["reviews"] = reviews
            result["commits"] = commits
            return result

        if key is None:
            return fetch_all()
        return self._cached(key, fetch_all)

    def fetch_commits_in_window(self, owner: str, repo: str, window: TimeWindow) -> List[Dict[str, Any]]:
        """List commits authored inside ``window`` using server-side filtering."""
        scope = f"{owner}/{repo}"
        key = make_key(
            "commits",
            scope,
            {"since": window.since.date().isoformat(), "until": window.until.date().isoformat()},
        )

        def fetch_all() -> List[Dict[str, Any]]:
            logger.info("Fetching commits", extra={"repository": scope})
            fetch_page = self._list_page(
                f"repos/{owner}/{repo}/commits",
                {"since": format_datetime(window.since), "until": format_datetime(window.until)},
            )
            commits = self.paginate(fetch_page)
            logger.info("Found commits", extra={"repository": scope, "count": len(commits)})
            return commits

        return self._cached(key, fetch_all)

    def list_repositories(
        self,
        owner: str,
        exclude_archived: bool = True,
        exclude_forks: bool = True,
        min_size: int = 0,
    ) -> List[Repository]:
        """Discover repositories of an organization, applying simple filters."""
        filters = {"exclude_archived": exclude_archived, "exclude_forks": exclude_forks, "min_size": min_size}
        key = make_key("org-repos", owner, {"type": "all", "filters": filters})

        def acceptable(item: Any) -> bool:
            if not isinstance(item, Mapping) or not item.get("name"):
                return False
            if exclude_archived and item.get("archived"):
                return False
            if exclude_forks and item.get("fork"):
                return False
            return _as_int(item.get("size")) >= min_size

        def fetch_all() -> List[Dict[str, Any]]:
            logger.info("Discovering repositories", extra={"organization": owner})
            fetch_page = self._list_page(
                f"orgs/{owner}/repos",
                {"type": "all", "sort": "updated", "direction": "desc"},
            )
            return [
                {
                    "name": item.get("name"),
                    "full_name": item.get("full_name"),
                    "archived": bool(item.get("archived")),
                    "fork": bool(item.get("fork")),
                    "size": _as_int(item.get("size")),
                    "language": item.get("language"),
                    "updated_at": item.get("updated_at"),
                }
                for item in self.paginate(fetch_page, keep=acceptable)
            ]

        return [
            Repository(
                name=str(item["name"]),
                fullName=str(item.get("full_name") or f"{owner}/{item['name']}"),
                archived=bool(item.get("archived")),
                fork=bool(item.get("fork")),
                size=_as_int(item.get("size")),
                language=item.get("language"),
                updatedAt=item.get("updated_at"),
            )
            for item in self._cached(key, fetch_all)
        ]

    def recent_activity(self, owner: str, repo: str, days: int = 90, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Count commits in the trailing ``days``; failures degrade to zero activity."""
        until = now or datetime.now(timezone.utc)
        window = TimeWindow(since=until - timedelta(days=days), until=until)
        try:
            commits = self.fetch_commits_in_window(owner, repo, window)
        except ApiError as exc:
            logger.warning("Could not fetch recent activity", extra={"repository": f"{owner}/{repo}", "error": str(exc)})
            return {"recent_commits": 0, "last_commit_date": None, "error": str(exc)}

        last_commit = parse_commit(commits[0]).authoredAt if commits else None
        return {
            "recent_commits": len(commits),
            "last_commit_date": last_commit.isoformat() if last_commit else None,
        }

    def sweep_cache(self) -> int:
        """Remove expired cache entries before a run."""
        return self._cache.sweep_expired()

    def usage_stats(self) -> UsageStats:
        """Return request, budget and cache counters for the end-of-run report."""
        stats = self._governor.stats()
        remaining = self._governor.remaining()
        cache_summary = self._cache.summary()
        return UsageStats(
            requestsIssued=stats.total_requests,
            cacheHits=stats.cached_requests,
            rateLimitHits=stats.rate_limit_hits,
            totalWaitMs=stats.total_wait_ms,
            backoffEvents=stats.backoff_events,
            cacheEfficiency=stats.efficiency,
            remainingHourly=remaining["hourly"],
            remainingBurst=remaining["burst"],
            cacheEnabled=cache_summary["enabled"],
            cacheMisses=self._cache.stats.miss,
            cacheEntries=cache_summary["entries"],
            cacheSize=cache_summary["size_formatted"],
        )
