from __future__ import annotations

import pytest

from cluster_inventory.util.ratelimit import RateLimiter, optional_limiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_rate_limiter_allows_burst_then_waits() -> None:
    clock = FakeClock()
    limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

    assert limiter.acquire() == 0.0
    assert limiter.acquire() == 0.0
    assert limiter.acquire() == pytest.approx(0.5)
    assert clock.sleeps == [pytest.approx(0.5)]


def test_rate_limiter_refills_over_time() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1, clock=clock, sleep=clock.sleep)

    assert limiter.acquire() == 0.0
    clock.now += 5.0
    # bucket is capped at one second of tokens
    assert limiter.acquire() == 0.0
    assert limiter.acquire() == pytest.approx(1.0)


def test_rate_limiter_rejects_non_positive_rate() -> None:
    with pytest.raises(ValueError):
        RateLimiter(0)


def test_optional_limiter() -> None:
    assert optional_limiter(None) is None
    assert optional_limiter(0) is None
    limiter = optional_limiter(3)
    assert isinstance(limiter, RateLimiter)
    assert limiter.rate == 3.0
