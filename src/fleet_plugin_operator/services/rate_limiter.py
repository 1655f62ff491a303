"""Retry throttling for reconcile failures.

Combines a per-item exponential backoff with a shared token bucket. The
larger of both delays wins, so a single failing object backs off on its own
while a storm of failures is throttled as a whole.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from fleet_plugin_operator.core.config.models import RateLimitConfig


class ItemRateLimiter:
    """Per-item exponential backoff over a token bucket.

    Thread-safe; reconcile handlers run on a worker pool.

    Args:
        config: Backoff floor and ceiling, bucket rate and burst.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, config: RateLimitConfig | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: dict[str, int] = {}
        self._tokens = float(self._config.burst)
        self._last = clock()

    def _backoff(self, item: str) -> float:
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        try:
            delay = self._config.base_delay * (2**failures)
        except OverflowError:
            return self._config.max_delay
        return min(delay, self._config.max_delay)

    def _bucket_delay(self) -> float:
        now = self._clock()
        self._tokens = min(float(self._config.burst), self._tokens + (now - self._last) * self._config.rate)
        self._last = now
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._config.rate

    def when(self, item: str) -> float:
        """Delay in seconds before ``item`` may be retried."""
        with self._lock:
            return max(self._backoff(item), self._bucket_delay())

    def forget(self, item: str) -> None:
        """Reset the backoff of an item after a successful reconcile."""
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: str) -> int:
        with self._lock:
            return self._failures.get(item, 0)
