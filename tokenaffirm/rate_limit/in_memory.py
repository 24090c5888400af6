"""
In-Memory Rate Limiter
======================
Fixed-window counter for a single process.
"""

import asyncio
import time
from typing import Dict, Tuple

from .models import RateLimitInfo


class InMemoryRateLimiter:
    """
    Fixed-window rate limiter.

    Safe under concurrent checks from one event loop. Counts are per
    process; use RedisRateLimiter when several workers share limits.
    """

    def __init__(self, rate: int = 1, window: int = 10):
        """
        Args:
            rate: Number of requests allowed per window
            window: Window size in seconds
        """
        self.rate = rate
        self.window = window
        # key -> (window_start, count)
        self._buckets: Dict[str, Tuple[int, int]] = {}
        self._lock = asyncio.Lock()

    async def check(self, key: str) -> RateLimitInfo:
        """
        Count a request against ``key`` and decide whether it is allowed.

        Args:
            key: Unique identifier (e.g., identity and operation)

        Returns:
            RateLimitInfo with decision and quota
        """
        now = time.time()
        window_start = int(now // self.window) * self.window
        reset_at = int(window_start + self.window)

        async with self._lock:
            self._evict(window_start)
            saved_window, count = self._buckets.get(key, (window_start, 0))
            if saved_window < window_start:
                count = 0

            if count >= self.rate:
                return RateLimitInfo(
                    allowed=False,
                    remaining=0,
                    limit=self.rate,
                    reset_at=reset_at,
                    retry_after=max(reset_at - int(now), 1),
                )

            count += 1
            self._buckets[key] = (window_start, count)

        return RateLimitInfo(
            allowed=True,
            remaining=self.rate - count,
            limit=self.rate,
            reset_at=reset_at,
        )

    def _evict(self, window_start: int) -> None:
        """Drop buckets from past windows."""
        stale = [key for key, (start, _) in self._buckets.items() if start < window_start]
        for key in stale:
            del self._buckets[key]
