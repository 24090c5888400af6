"""
Rate Limit Models
=================
Result of a governor check.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class RateLimitInfo:
    """Rate limit decision with quota information."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # Unix timestamp
    retry_after: Optional[int] = None  # Seconds until retry allowed

    @classmethod
    def unlimited(cls, limit: int, reset_at: int) -> "RateLimitInfo":
        return cls(allowed=True, remaining=limit, limit=limit, reset_at=reset_at)
