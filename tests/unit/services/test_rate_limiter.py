"""Unit tests for the retry rate limiter."""

from __future__ import annotations

import pytest

from fleet_plugin_operator.core.config.models import RateLimitConfig
from fleet_plugin_operator.services.rate_limiter import ItemRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
class TestItemRateLimiter:
    """Tests for ItemRateLimiter."""

    def test_exponential_backoff(self) -> None:
        """Should double the delay per failure."""
        limiter = ItemRateLimiter(RateLimitConfig(base_delay=1, max_delay=100), clock=FakeClock())

        assert [limiter.when("a") for _ in range(4)] == [1, 2, 4, 8]
        assert limiter.num_requeues("a") == 4

    def test_backoff_is_capped(self) -> None:
        """Should never exceed the maximum delay."""
        limiter = ItemRateLimiter(RateLimitConfig(base_delay=1, max_delay=5), clock=FakeClock())

        delays = [limiter.when("a") for _ in range(6)]

        assert delays[-1] == 5

    def test_items_are_independent(self) -> None:
        """Should track failures per item."""
        limiter = ItemRateLimiter(RateLimitConfig(base_delay=1), clock=FakeClock())
        limiter.when("a")
        limiter.when("a")

        assert limiter.when("b") == 1

    def test_forget_resets(self) -> None:
        """Should restart the backoff after forget."""
        limiter = ItemRateLimiter(RateLimitConfig(base_delay=1), clock=FakeClock())
        limiter.when("a")
        limiter.when("a")

        limiter.forget("a")

        assert limiter.num_requeues("a") == 0
        assert limiter.when("a") == 1

    def test_bucket_throttles_bursts(self) -> None:
        """Should delay retries once the burst is used up."""
        clock = FakeClock()
        limiter = ItemRateLimiter(RateLimitConfig(base_delay=0.001, rate=1, burst=2), clock=clock)

        limiter.when("a")
        limiter.when("b")

        assert limiter.when("c") == pytest.approx(1.0)

    def test_bucket_refills(self) -> None:
        """Should refill tokens over time."""
        clock = FakeClock()
        limiter = ItemRateLimiter(RateLimitConfig(base_delay=0.001, rate=1, burst=1), clock=clock)
        limiter.when("a")

        clock.now = 10.0

        assert limiter.when("b") == pytest.approx(0.001)
