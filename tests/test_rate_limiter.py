from concurrent.futures import ThreadPoolExecutor

import pytest

from graphgate.context import RateLimits
from graphgate.services.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_minute_limit_blocks_after_budget():
    clock = FakeClock(100.0)
    limiter = SlidingWindowRateLimiter(max_entries=100, clock=clock)
    limits = RateLimits(per_minute=2, per_hour=100, per_day=100)

    assert limiter.hit("acme", "read_graph", limits).allowed
    clock.now += 10
    assert limiter.hit("acme", "read_graph", limits).allowed

    blocked = limiter.hit("acme", "read_graph", limits)
    assert not blocked.allowed
    assert blocked.window == "minute"
    assert blocked.retry_after_seconds == 50

    clock.now += 50
    assert limiter.hit("acme", "read_graph", limits).allowed


def test_rejected_hits_are_not_recorded():
    clock = FakeClock(0.0)
    limiter = SlidingWindowRateLimiter(max_entries=100, clock=clock)
    limits = RateLimits(per_minute=1, per_hour=100, per_day=100)

    assert limiter.hit("acme", "read_graph", limits).allowed
    for _ in range(5):
        assert not limiter.hit("acme", "read_graph", limits).allowed
    clock.now = 60.0
    assert limiter.hit("acme", "read_graph", limits).allowed


def test_hour_window_applies_after_minute_resets():
    clock = FakeClock(0.0)
    limiter = SlidingWindowRateLimiter(max_entries=100, clock=clock)
    limits = RateLimits(per_minute=10, per_hour=2, per_day=100)

    limiter.hit("acme", "search_nodes", limits)
    clock.now = 120.0
    limiter.hit("acme", "search_nodes", limits)
    clock.now = 240.0
    decision = limiter.hit("acme", "search_nodes", limits)
    assert not decision.allowed
    assert decision.window == "hour"
    assert decision.retry_after_seconds == 3360


def test_isolated_per_tenant_and_tool():
    limiter = SlidingWindowRateLimiter(max_entries=100, clock=FakeClock(0.0))
    limits = RateLimits(per_minute=1, per_hour=10, per_day=10)

    assert limiter.hit("acme", "read_graph", limits).allowed
    assert not limiter.hit("acme", "read_graph", limits).allowed
    assert limiter.hit("globex", "read_graph", limits).allowed
    assert limiter.hit("acme", "open_nodes", limits).allowed


def test_max_entries_evicts_oldest_key():
    limiter = SlidingWindowRateLimiter(max_entries=2, clock=FakeClock(0.0))
    limits = RateLimits(per_minute=1, per_hour=10, per_day=10)

    limiter.hit("a", "tool", limits)
    limiter.hit("b", "tool", limits)
    limiter.hit("c", "tool", limits)
    assert len(limiter) == 2
    # "a" was evicted, so its budget starts over.
    assert limiter.hit("a", "tool", limits).allowed


def test_invalid_max_entries():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_entries=0)


def test_concurrent_hits_respect_budget():
    limiter = SlidingWindowRateLimiter(max_entries=100, clock=FakeClock(0.0))
    limits = RateLimits(per_minute=25, per_hour=1000, per_day=1000)

    with ThreadPoolExecutor(max_workers=8) as executor:
        decisions = list(executor.map(lambda _: limiter.hit("acme", "read_graph", limits), range(100)))

    assert sum(1 for decision in decisions if decision.allowed) == 25
