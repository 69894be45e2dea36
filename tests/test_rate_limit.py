"""
Tests for adaptive rate limiting.
"""
from decimal import Decimal

import pytest

from spend_monitor.core.rate_limit import WINDOW_SECONDS, AdaptiveRateLimiter, adaptive_rate_factor


class FakeMonotonic:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestAdaptiveRateFactor:

    @pytest.mark.parametrize("utilization,factor", [
        (0, "1"),
        ("0.39", "1"),
        ("0.4", "0.7"),
        ("0.59", "0.7"),
        ("0.6", "0.5"),
        ("0.8", "0.3"),
        ("1.2", "0.3"),
        (0.85, "0.3"),
    ])
    def test_steps(self, utilization, factor):
        assert adaptive_rate_factor(Decimal(str(utilization))) == Decimal(factor)


class TestAdaptiveRateLimiter:
    """Test the fixed-window limiter."""

    def setup_method(self):
        self.clock = FakeMonotonic()
        self.limiter = AdaptiveRateLimiter(10, clock=self.clock, sleep=self.clock.sleep)

    def test_allowance_scales_with_utilization(self):
        assert self.limiter.allowance(Decimal("0")) == 10
        assert self.limiter.allowance(Decimal("0.5")) == 7
        assert self.limiter.allowance(Decimal("0.7")) == 5
        assert self.limiter.allowance(Decimal("0.9")) == 3

    def test_allowance_never_below_one(self):
        limiter = AdaptiveRateLimiter(1, clock=self.clock, sleep=self.clock.sleep)
        assert limiter.allowance(Decimal("0.95")) == 1

    def test_permits_within_allowance_do_not_wait(self):
        waits = [self.limiter.acquire(Decimal("0")) for _ in range(10)]
        assert waits == [0.0] * 10
        assert self.limiter.request_count == 10
        assert self.clock.sleeps == []

    def test_waits_for_next_window_when_exhausted(self):
        for _ in range(3):
            self.limiter.acquire(Decimal("0.9"))
        self.clock.now += 20

        waited = self.limiter.acquire(Decimal("0.9"))

        assert waited == pytest.approx(WINDOW_SECONDS - 20)
        assert self.clock.sleeps == [pytest.approx(40.0)]
        assert self.limiter.request_count == 1

    def test_window_resets_after_a_minute(self):
        for _ in range(10):
            self.limiter.acquire(Decimal("0"))
        self.clock.now += WINDOW_SECONDS

        assert self.limiter.acquire(Decimal("0")) == 0.0
        assert self.limiter.request_count == 1

    def test_invalid_nominal_rate(self):
        with pytest.raises(ValueError):
            AdaptiveRateLimiter(0)
