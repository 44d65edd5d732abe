"""Tests for the advisory rate limiter."""

from __future__ import annotations

import math

from canopy.ratelimit import CLEANUP_INTERVAL_SECONDS, RateLimit, RateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_within_limit():
    limiter = RateLimiter({"agent": RateLimit(3, 60)}, clock=FakeClock())
    decisions = [limiter.check("u1") for _ in range(3)]
    assert all(d.allowed for d in decisions)
    assert [d.remaining for d in decisions] == [2, 1, 0]


def test_over_limit_reports_retry_after():
    clock = FakeClock()
    limiter = RateLimiter({"agent": RateLimit(1, 60)}, clock=clock)
    limiter.check("u1")
    clock.now += 10.5
    decision = limiter.check("u1")
    assert not decision.allowed
    assert decision.retry_after == 49.5
    assert decision.retry_after_seconds == 50


def test_window_resets():
    clock = FakeClock()
    limiter = RateLimiter({"agent": RateLimit(1, 60)}, clock=clock)
    limiter.check("u1")
    assert not limiter.check("u1").allowed
    clock.now += 61
    assert limiter.check("u1").allowed


def test_anonymous_callers_are_unlimited():
    limiter = RateLimiter({"agent": RateLimit(1, 60)}, clock=FakeClock())
    for key in (None, "", None):
        decision = limiter.check(key)
        assert decision.allowed
        assert decision.remaining == math.inf


def test_categories_and_callers_are_independent():
    limiter = RateLimiter(
        {"agent": RateLimit(1, 60), "credits": RateLimit(1, 60)}, clock=FakeClock()
    )
    assert limiter.check("u1").allowed
    assert limiter.check("u1", "credits").allowed
    assert limiter.check("u2").allowed
    assert not limiter.check("u1").allowed


def test_unknown_category_uses_agent_limit():
    limiter = RateLimiter({"agent": RateLimit(1, 60)}, clock=FakeClock())
    assert limiter.check("u1", "mystery").allowed
    assert not limiter.check("u1", "mystery").allowed


def test_expired_windows_are_evicted():
    clock = FakeClock()
    limiter = RateLimiter({"agent": RateLimit(5, 60)}, clock=clock)
    limiter.check("u1")
    limiter.check("u2")
    assert len(limiter) == 2
    clock.now += CLEANUP_INTERVAL_SECONDS + 1
    limiter.check("u3")
    assert len(limiter) == 1


def test_window_slides_with_oldest_request():
    clock = FakeClock(start=0.0)
    limiter = RateLimiter({"agent": RateLimit(2, 60)}, clock=clock)
    limiter.check("u1")
    clock.now = 50.0
    limiter.check("u1")

    clock.now = 70.0
    assert limiter.check("u1").allowed  # the t=0 request has left the window

    clock.now = 75.0
    decision = limiter.check("u1")
    assert not decision.allowed
    assert decision.retry_after == 35.0  # the t=50 request leaves at t=110


def test_rejected_requests_do_not_extend_the_window():
    clock = FakeClock(start=0.0)
    limiter = RateLimiter({"agent": RateLimit(1, 60)}, clock=clock)
    limiter.check("u1")
    for t in (10.0, 30.0, 59.0):
        clock.now = t
        assert not limiter.check("u1").allowed
    clock.now = 60.0
    assert limiter.check("u1").allowed
