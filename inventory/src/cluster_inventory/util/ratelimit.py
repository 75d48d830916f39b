from __future__ import annotations

import threading
import time
from typing import Callable, Optional

# Cost Explorer allows a handful of requests per second per account.
DEFAULT_COST_EXPLORER_RATE = 5.0


class RateLimiter:
    """
    Thread-safe token bucket shared by the workers of one pool.

    acquire() blocks until a token is available. The bucket holds at most
    `rate` tokens, so bursts never exceed one second worth of calls.
    """

    def __init__(
        self,
        rate_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.rate = float(rate_per_second)
        self._tokens = self.rate
        self._clock = clock
        self._sleep = sleep
        self._last_update = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_update)
        self._tokens = min(self.rate, self._tokens + elapsed * self.rate)
        self._last_update = now

    def acquire(self) -> float:
        """
        Take one token, sleeping if the bucket is empty. Returns seconds waited.
        """
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return 0.0
            wait_time = (1 - self._tokens) / self.rate
            # Holding the lock while sleeping serializes waiters in arrival order.
            self._sleep(wait_time)
            self._refill()
            self._tokens = max(0.0, self._tokens - 1)
            return wait_time


def optional_limiter(rate_per_second: Optional[float]) -> Optional[RateLimiter]:
    if not rate_per_second or rate_per_second <= 0:
        return None
    return RateLimiter(rate_per_second)
