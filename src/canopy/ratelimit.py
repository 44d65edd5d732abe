"""Advisory in-process rate limiter.

A sliding-window log per (category, caller) pair: each bucket keeps the
timestamps of its accepted requests inside the window. Each process
keeps its own table, so limits are best effort rather than global;
nothing in the scheduler relies on it for correctness.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: float


DEFAULT_LIMITS: dict[str, RateLimit] = {
    "agent": RateLimit(max_requests=10, window_seconds=60.0),
    "credits": RateLimit(max_requests=20, window_seconds=60.0),
    "promo": RateLimit(max_requests=5, window_seconds=60.0),
}

CLEANUP_INTERVAL_SECONDS = 5 * 60.0


@dataclass(frozen=True)
class RateDecision:
    """Result of one rate-limit check."""

    allowed: bool
    remaining: float
    retry_after: float = 0.0

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up (for a Retry-After header)."""
        return math.ceil(self.retry_after)


class RateLimiter:
    """Per-caller sliding-window counter with periodic eviction of idle buckets.

    Rejected requests are not recorded, so a caller that keeps retrying
    gets through as soon as its oldest accepted request leaves the window.

    Args:
        limits: Limits by category. Unknown categories use ``agent``.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        limits: dict[str, RateLimit] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits = dict(limits or DEFAULT_LIMITS)
        self._longest_window = max(limit.window_seconds for limit in self._limits.values())
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def __len__(self) -> int:
        return len(self._hits)

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        idle = [
            key
            for key, hits in self._hits.items()
            if not hits or now - hits[-1] >= self._longest_window
        ]
        for key in idle:
            del self._hits[key]

    def check(self, key: str | None, category: str = "agent") -> RateDecision:
        """Record one request for *key* if it fits in the window.

        Anonymous callers (``key`` is None or empty) are never limited.
        """
        if not key:
            return RateDecision(allowed=True, remaining=math.inf)

        limit = self._limits.get(category) or self._limits["agent"]
        bucket = f"{category}:{key}"
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            hits = self._hits.setdefault(bucket, deque())
            cutoff = now - limit.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= limit.max_requests:
                return RateDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=hits[0] + limit.window_seconds - now,
                )
            hits.append(now)
            return RateDecision(allowed=True, remaining=limit.max_requests - len(hits))
