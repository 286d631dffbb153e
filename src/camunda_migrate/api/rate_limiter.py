"""Rate limiting for engine API calls."""

import threading
import time


class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, requests_per_second: float = 10.0):
        """Initialize rate limiter.

        Args:
            requests_per_second: Maximum requests per second allowed
        """
        if requests_per_second <= 0:
            raise ValueError('requests_per_second must be positive')
        self.requests_per_second = requests_per_second
        self.tokens = requests_per_second
        self.last_update = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self, now: float) -> float:
        elapsed = now - self.last_update
        return min(
            self.requests_per_second, self.tokens + elapsed * self.requests_per_second
        )

    def acquire(self) -> float:
        """Acquire a token, sleeping until one is available.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            now = time.monotonic()
            self.tokens = self._refill(now)
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
                return 0.0

            sleep_time = (1 - self.tokens) / self.requests_per_second
            time.sleep(sleep_time)
            self.tokens = 0
            self.last_update = time.monotonic()
            return sleep_time

    def can_proceed(self) -> bool:
        """Check if a request can proceed without blocking."""
        return self._refill(time.monotonic()) >= 1

    def time_until_next_request(self) -> float:
        """Seconds until the next request is allowed."""
        tokens = self._refill(time.monotonic())
        if tokens >= 1:
            return 0.0
        return (1 - tokens) / self.requests_per_second
