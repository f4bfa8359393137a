"""Rate limit policy and sliding-window counting for integrations.

``get_rate_limit`` resolves the effective limits carried on an integration
(flat per-minute/hour/day values, or a compact per-scope override such as
``"100/minute"``). ``IntegrationRateLimiter`` enforces them with an
in-memory sliding window keyed by caller identity and route domain.

Production note: replace the in-memory counter with Redis for
multi-instance deployments.
"""

import hashlib
import re
import threading
import time
from typing import Any, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from core.exceptions import RateLimitExceededError

_COMPACT_LIMIT = re.compile(r"(\d+)/(minute|hour|day)")

PERIOD_SECONDS = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


class RateLimits(BaseModel):
    """Rate limits stored on an integration."""

    model_config = ConfigDict(extra="ignore")

    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None
    burst_limit: Optional[int] = None
    scope_limits: dict[str, str] = Field(default_factory=dict)


def parse_rate_limit(value: str) -> dict[str, int]:
    """Parse ``"100/minute"`` into ``{"requests_per_minute": 100}``.

    Unparseable strings give an empty dict.
    """
    match = _COMPACT_LIMIT.search(value or "")
    if not match:
        return {}
    count, period = match.groups()
    return {f"requests_per_{period}": int(count)}


def get_rate_limit(rate_limits: Optional[Mapping[str, Any]], key: str = "default") -> dict[str, Optional[int]]:
    """Effective limits for ``key``.

    A per-scope override wins; otherwise the flat limits are returned with
    absent fields as None.
    """
    limits = RateLimits.model_validate(rate_limits or {})
    if key in limits.scope_limits:
        return parse_rate_limit(limits.scope_limits[key])
    return {
        "requests_per_minute": limits.requests_per_minute,
        "requests_per_hour": limits.requests_per_hour,
        "requests_per_day": limits.requests_per_day,
        "burst_limit": limits.burst_limit,
    }


class SlidingWindowCounter:
    """Thread-safe sliding window rate counter.

    Uses a two-bucket sliding window algorithm for accuracy
    without per-request storage overhead.
    """

    def __init__(self, max_keys: int = 50_000):
        self._lock = threading.Lock()
        # Key: (identifier, group) -> (current_count, prev_count, current_window_start)
        self._windows: dict[Tuple[str, str], Tuple[int, int, float]] = {}
        self._max_keys = max_keys

    def _evaluate(
        self, bucket_key: Tuple[str, str], max_requests: int, window_seconds: int, now: float
    ) -> Tuple[bool, int, float, Tuple[int, int, float]]:
        """Decide one window without writing.

        Returns:
            (allowed, count_before_request, retry_after_seconds, entry_to_store)
        """
        entry = self._windows.get(bucket_key)
        if entry is None:
            return (True, 0, 0, (1, 0, now))

        current_count, prev_count, window_start = entry
        elapsed = now - window_start

        if elapsed >= window_seconds:
            # Roll over: current becomes prev, or both expire
            carried = 0 if elapsed >= window_seconds * 2 else current_count
            return (True, 0, 0, (1, carried, now))

        # Weighted count: prev * remaining_fraction + current
        weight = 1 - (elapsed / window_seconds)
        estimated = prev_count * weight + current_count

        if estimated >= max_requests:
            return (False, int(estimated), window_seconds - elapsed, entry)
        return (True, int(estimated), 0, (current_count + 1, prev_count, window_start))

    def peek(
        self, key: str, group: str, max_requests: int, window_seconds: int
    ) -> Tuple[bool, int, int, float]:
        """Same answer as ``check_and_increment`` but nothing is counted.

        Returns:
            (allowed, current_count, limit, retry_after_seconds)
        """
        with self._lock:
            allowed, count, retry_after, _ = self._evaluate(
                (key, group), max_requests, window_seconds, time.monotonic()
            )
        return (allowed, count, max_requests, retry_after)

    def check_and_increment(
        self, key: str, group: str, max_requests: int, window_seconds: int
    ) -> Tuple[bool, int, int, float]:
        """Check if request is allowed and increment counter.

        Returns:
            (allowed, current_count, limit, retry_after_seconds)
        """
        (result,) = self.check_and_increment_all(key, [(group, max_requests, window_seconds)])
        return result

    def check_and_increment_all(
        self, key: str, windows: Iterable[Tuple[str, int, int]]
    ) -> list[Tuple[bool, int, int, float]]:
        """Count one request against several windows, all or nothing.

        ``windows`` holds ``(group, max_requests, window_seconds)`` triples.
        If any window rejects, no window is incremented.

        Returns:
            One (allowed, current_count, limit, retry_after_seconds) per window
        """
        now = time.monotonic()
        with self._lock:
            decisions = [
                ((key, group), max_requests, self._evaluate((key, group), max_requests, window_seconds, now))
                for group, max_requests, window_seconds in windows
            ]
            if not all(decision[0] for _, _, decision in decisions):
                return [
                    (allowed, count, max_requests, retry_after)
                    for _, max_requests, (allowed, count, retry_after, _) in decisions
                ]

            added = False
            for bucket_key, _, (_, _, _, entry) in decisions:
                added = added or bucket_key not in self._windows
                self._windows[bucket_key] = entry
            if added:
                self._maybe_cleanup()
            return [
                (True, count + 1, max_requests, 0)
                for _, max_requests, (_, count, _, _) in decisions
            ]

    def _maybe_cleanup(self):
        """Evict oldest entries if memory bound exceeded."""
        if len(self._windows) > self._max_keys:
            # Remove oldest 20%
            to_remove = int(self._max_keys * 0.2)
            sorted_keys = sorted(
                self._windows.keys(),
                key=lambda k: self._windows[k][2],
            )
            for k in sorted_keys[:to_remove]:
                del self._windows[k]


def request_signature(domain: str, identity: str) -> str:
    """Counter key for a caller on a route domain."""
    return hashlib.sha1(f"{domain}|{identity}".encode()).hexdigest()


class IntegrationRateLimiter:
    """Enforces an integration's effective limits per period.

    Every configured period (minute, hour, day) is its own window. A
    request is counted in all of them only when every window has room;
    otherwise the first exhausted window rejects it and nothing is counted.
    """

    def __init__(self, counter: Optional[SlidingWindowCounter] = None):
        self.counter = counter or SlidingWindowCounter()

    def hit(self, signature: str, limits: Mapping[str, Optional[int]]) -> Tuple[Optional[int], Optional[int]]:
        """Count one request.

        Returns:
            (limit, remaining) for the tightest window, or (None, None)
            when the integration has no limits.

        Raises:
            RateLimitExceededError: If any window is exhausted
        """
        windows = [
            (period, limits[f"requests_per_{period}"], window_seconds)
            for period, window_seconds in PERIOD_SECONDS.items()
            if limits.get(f"requests_per_{period}")
        ]
        if not windows:
            return (None, None)

        results = self.counter.check_and_increment_all(signature, windows)
        for allowed, _, limit, retry_after in results:
            if not allowed:
                raise RateLimitExceededError(limit=limit, retry_after=retry_after)

        # Tightest window is the one with the fewest requests left
        _, current, limit, _ = min(results, key=lambda result: result[2] - result[1])
        return (limit, max(0, limit - current))


# Singleton limiter shared by the HTTP dependencies
_limiter = IntegrationRateLimiter()


def get_rate_limiter() -> IntegrationRateLimiter:
    return _limiter
