"""
Request Governor
================
Per-identity, per-operation throttling of engine calls.
"""

from .models import RateLimitInfo
from .in_memory import InMemoryRateLimiter
from .redis_limiter import RedisRateLimiter, FIXED_WINDOW_SCRIPT
from .governor import RequestGovernor

__all__ = [
    # Models
    "RateLimitInfo",
    # Limiters
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RequestGovernor",
    # Scripts
    "FIXED_WINDOW_SCRIPT",
]
