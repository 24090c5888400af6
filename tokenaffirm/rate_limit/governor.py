"""
Request Governor
================
Applies one limiter per engine operation to each caller identity.
"""

from typing import Callable, Dict, Optional, Protocol
import structlog

from ..config import AffirmConfig, OPERATIONS
from ..errors import ConfigurationError
from .in_memory import InMemoryRateLimiter
from .models import RateLimitInfo
from .redis_limiter import RedisRateLimiter

logger = structlog.get_logger(__name__)


class Limiter(Protocol):
    rate: int
    window: int

    async def check(self, key: str) -> RateLimitInfo: ...


def _always(identity: str) -> bool:
    return True


class RequestGovernor:
    """
    Per-identity request governor.

    ``applies_to`` selects the identities that are throttled; others pass
    unconditionally.
    """

    def __init__(
        self,
        limiters: Dict[str, Limiter],
        applies_to: Optional[Callable[[str], bool]] = None,
        namespace: str = "tokenaffirm",
    ):
        unknown = set(limiters) - set(OPERATIONS)
        if unknown:
            raise ConfigurationError(f"Unknown operations: {', '.join(sorted(unknown))}")
        self.limiters = dict(limiters)
        self.applies_to = applies_to or _always
        self.namespace = namespace

    @classmethod
    def in_memory(
        cls,
        config: AffirmConfig,
        applies_to: Optional[Callable[[str], bool]] = None,
        namespace: str = "tokenaffirm",
    ) -> "RequestGovernor":
        limiters = {}
        for operation in OPERATIONS:
            rate, window = config.rate_limit_for(operation)
            limiters[operation] = InMemoryRateLimiter(rate=rate, window=window)
        return cls(limiters, applies_to=applies_to, namespace=namespace)

    @classmethod
    def redis(
        cls,
        redis_client,
        config: AffirmConfig,
        applies_to: Optional[Callable[[str], bool]] = None,
        namespace: str = "tokenaffirm",
    ) -> "RequestGovernor":
        limiters = {}
        for operation in OPERATIONS:
            rate, window = config.rate_limit_for(operation)
            limiters[operation] = RedisRateLimiter(redis_client, rate=rate, window=window)
        return cls(limiters, applies_to=applies_to, namespace=namespace)

    def key(self, identity: str, operation: str) -> str:
        return f"ratelimit:{self.namespace}/{operation}:{identity}"

    async def check(self, identity: str, operation: str) -> RateLimitInfo:
        """Count a call by ``identity`` to ``operation``."""
        limiter = self.limiters.get(operation)
        if limiter is None or not self.applies_to(identity):
            return RateLimitInfo.unlimited(0, 0)

        info = await limiter.check(self.key(identity, operation))
        if not info.allowed:
            logger.warning(
                "Rate limit exceeded",
                operation=operation,
                identity=identity,
                retry_after=info.retry_after,
            )
        return info
