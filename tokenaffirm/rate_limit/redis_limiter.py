"""
Redis Rate Limiter
==================
Redis-backed fixed-window limiter using a Lua script for atomic counting.
"""

import time
from typing import Optional
import structlog

from .models import RateLimitInfo

logger = structlog.get_logger(__name__)

FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local rate = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local window_start = math.floor(now / window) * window
local reset_at = window_start + window
local count = 0

local saved = redis.call('HMGET', key, 'window', 'count')
if saved[1] and tonumber(saved[1]) >= window_start then
    count = tonumber(saved[2])
end

if count >= rate then
    return {0, 0, rate, reset_at, reset_at - now}
end

count = count + 1
redis.call('HSET', key, 'window', window_start, 'count', count)
redis.call('EXPIRE', key, window * 2)

return {1, rate - count, rate, reset_at, 0}
"""


class RedisRateLimiter:
    """
    Redis-backed fixed-window rate limiter shared across workers.

    Fails open when Redis is unavailable.
    """

    def __init__(self, redis_client, rate: int = 1, window: int = 10):
        """
        Args:
            redis_client: Async Redis client
            rate: Requests per window
            window: Window size in seconds
        """
        self.redis = redis_client
        self.rate = rate
        self.window = window
        self._script_sha: Optional[str] = None

    async def _ensure_script(self) -> str:
        """Load Lua script into Redis if needed."""
        if self._script_sha is None:
            self._script_sha = await self.redis.script_load(FIXED_WINDOW_SCRIPT)
        return self._script_sha

    async def check(self, key: str) -> RateLimitInfo:
        """
        Count a request against ``key`` in Redis.

        Args:
            key: Rate limit key

        Returns:
            RateLimitInfo with decision
        """
        now = int(time.time())

        try:
            script_sha = await self._ensure_script()
            result = await self.redis.evalsha(
                script_sha,
                1,
                key,
                self.rate,
                self.window,
                now,
            )
        except Exception as e:
            logger.error("Rate limit check failed", key=key, error=str(e))
            return RateLimitInfo.unlimited(self.rate, now + self.window)

        allowed, remaining, limit, reset_at, retry_after = result
        return RateLimitInfo(
            allowed=bool(int(allowed)),
            remaining=int(remaining),
            limit=int(limit),
            reset_at=int(reset_at),
            retry_after=int(retry_after) if int(retry_after) else None,
        )
