"""Client-side request budgeting for the GitHub REST API.

Two independent sliding windows are tracked: an hourly window mirroring the
remote quota and a one-minute burst window. Both are plain deques of
millisecond timestamps pruned lazily whenever a budget check runs, so no
background timer is required.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
MINUTE_MS = 60 * 1000


@dataclass(slots=True)
class BackoffState:
    """Escalating wait applied after budget pressure or a hard rate limit."""

    is_limited: bool = False
    reset_at_ms: Optional[float] = None
    current_delay_ms: float = 1000.0
    multiplier: float = 1.5
    ceiling_ms: float = 60000.0
    floor_ms: float = 1000.0


@dataclass(slots=True)
class GovernorStats:
    """Counters accumulated over the lifetime of a governor."""

    total_requests: int = 0
    cached_requests: int = 0
    rate_limit_hits: int = 0
    backoff_events: int = 0
    total_wait_ms: float = 0.0

    @property
    def efficiency(self) -> float:
        """Percentage of requests served from the cache."""
        served = self.total_requests + self.cached_requests
        if served == 0:
            return 0.0
        return self.cached_requests / served * 100.0


class RateGovernor:
    """Tracks hourly and burst request budgets and computes wait durations."""

    _HOURLY_SAFETY_MARGIN = 10

    def __init__(
        self,
        hourly_limit: int = 4500,
        burst_limit: int = 100,
        multiplier: float = 1.5,
        floor_ms: float = 1000.0,
        ceiling_ms: float = 60000.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Create a governor.

        Args:
            hourly_limit: Requests allowed in any sliding hour.
            burst_limit: Requests allowed in any sliding minute.
            multiplier: Factor applied to the delay after every taken wait.
            floor_ms: Delay restored after a clean request.
            ceiling_ms: Upper bound of the escalating delay.
            clock: Returns the current time in epoch seconds.
        """
        self.hourly_limit = hourly_limit
        self.burst_limit = burst_limit
        self.backoff = BackoffState(
            current_delay_ms=floor_ms,
            multiplier=multiplier,
            ceiling_ms=ceiling_ms,
            floor_ms=floor_ms,
        )
        self._clock = clock
        self._hourly_window: Deque[float] = deque()
        self._burst_window: Deque[float] = deque()
        self._stats = GovernorStats()

    def now_ms(self) -> float:
        """Return the injected clock reading in epoch milliseconds."""
        return self._clock() * 1000.0

    def _prune(self, now_ms: float) -> None:
        hour_horizon = now_ms - HOUR_MS
        minute_horizon = now_ms - MINUTE_MS
        while self._hourly_window and self._hourly_window[0] <= hour_horizon:
            self._hourly_window.popleft()
        while self._burst_window and self._burst_window[0] <= minute_horizon:
            self._burst_window.popleft()

    def remaining(self) -> Dict[str, int]:
        """Return the unused hourly and burst budget."""
        self._prune(self.now_ms())
        return {
            "hourly": max(0, self.hourly_limit - len(self._hourly_window)),
            "burst": max(0, self.burst_limit - len(self._burst_window)),
        }

    def record_success(self, from_cache: bool) -> None:
        """Account for one served request; only network requests consume budget."""
        if from_cache:
            self._stats.cached_requests += 1
            return

        now_ms = self.now_ms()
        self._hourly_window.append(now_ms)
        self._burst_window.append(now_ms)
        self._stats.total_requests += 1

    def compute_wait_ms(self) -> float:
        """Return how long the next request must wait, in milliseconds.

        A hard limit wins over the sliding windows. Once its reset moment has
        passed the limit is lifted and the backoff delay returns to the floor.
        """
        now_ms = self.now_ms()
        state = self.backoff

        if state.is_limited and state.reset_at_ms is not None:
            if now_ms < state.reset_at_ms:
                return state.reset_at_ms - now_ms
            state.is_limited = False
            state.reset_at_ms = None
            state.current_delay_ms = state.floor_ms

        self._prune(now_ms)

        if len(self._burst_window) >= self.burst_limit:
            return max(0.0, self._burst_window[0] + MINUTE_MS - now_ms)

        hourly_remaining = self.hourly_limit - len(self._hourly_window)
        if hourly_remaining <= self._HOURLY_SAFETY_MARGIN and self._hourly_window:
            until_expiry = self._hourly_window[0] + HOUR_MS - now_ms
            if until_expiry > 0:
                return min(until_expiry, state.current_delay_ms)

        return 0.0

    def on_hard_limit(self, reset_at_epoch_seconds: float) -> None:
        """Block all requests until the remote quota resets."""
        self.backoff.is_limited = True
        self.backoff.reset_at_ms = float(reset_at_epoch_seconds) * 1000.0
        self._stats.rate_limit_hits += 1

        wait_minutes = math.ceil(max(0.0, self.backoff.reset_at_ms - self.now_ms()) / MINUTE_MS)
        logger.warning(
            "GitHub rate limit reached; requests paused until reset",
            extra={"reset_at": reset_at_epoch_seconds, "wait_minutes": wait_minutes},
        )

    def on_waited(self, wait_ms: float = 0.0) -> None:
        """Escalate the backoff delay after a non-zero wait was taken."""
        state = self.backoff
        state.current_delay_ms = min(state.current_delay_ms * state.multiplier, state.ceiling_ms)
        self._stats.backoff_events += 1
        self._stats.total_wait_ms += wait_ms

    def on_clean_request(self) -> None:
        """Reset the backoff delay after a request that needed no wait."""
        self.backoff.current_delay_ms = self.backoff.floor_ms

    def stats(self) -> GovernorStats:
        """Return a snapshot of the accumulated counters."""
        return GovernorStats(
            total_requests=self._stats.total_requests,
            cached_requests=self._stats.cached_requests,
            rate_limit_hits=self._stats.rate_limit_hits,
            backoff_events=self._stats.backoff_events,
            total_wait_ms=self._stats.total_wait_ms,
        )
