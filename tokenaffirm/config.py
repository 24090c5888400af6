"""
TokenAffirm Configuration
=========================
Per-engine thresholds and durations, loadable from the environment.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .errors import ConfigurationError

# Operation names as bound by the transport layer
REQUEST_TOKEN = "requestToken"
VERIFY_TOKEN = "verifyToken"
INVALIDATE_SESSION = "invalidateSession"
ASSERT_OPEN_SESSION = "assertOpenSession"
VERIFY_CONTACT = "verifyContact"

OPERATIONS = (
    REQUEST_TOKEN,
    VERIFY_TOKEN,
    INVALIDATE_SESSION,
    ASSERT_OPEN_SESSION,
    VERIFY_CONTACT,
)


@dataclass
class AffirmConfig:
    """Configuration for a TokenAffirm instance."""
    expiry_seconds: int = 300  # 5 minutes
    retain_seconds: int = 300
    timeout_seconds: float = 1.0
    request_interval_seconds: int = 10
    request_count: int = 1
    profile: str = "TokenAffirm"
    token_length: int = 6
    # threads for synchronous factor sends
    delivery_workers: int = 4
    # operation -> (count, interval_seconds)
    rate_limits: Dict[str, Tuple[int, int]] = field(default_factory=dict)

    def __post_init__(self):
        if self.expiry_seconds < 0:
            raise ConfigurationError("expiry_seconds must not be negative")
        if self.retain_seconds < 0:
            raise ConfigurationError("retain_seconds must not be negative")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")
        if self.request_count <= 0 or self.request_interval_seconds <= 0:
            raise ConfigurationError("request_count and request_interval_seconds must be positive")
        if not self.profile:
            raise ConfigurationError("profile must be a non-empty string")
        if self.token_length <= 0:
            raise ConfigurationError("token_length must be positive")
        if self.delivery_workers <= 0:
            raise ConfigurationError("delivery_workers must be positive")

        for operation, (count, interval) in self.rate_limits.items():
            if operation not in OPERATIONS:
                raise ConfigurationError(f"Unknown operation in rate_limits: {operation}")
            if count <= 0 or interval <= 0:
                raise ConfigurationError(f"Invalid rate limit for {operation}")

    def rate_limit_for(self, operation: str) -> Tuple[int, int]:
        """Return (count, interval_seconds) for an operation."""
        return self.rate_limits.get(
            operation,
            (self.request_count, self.request_interval_seconds),
        )

    @classmethod
    def from_env(cls, prefix: str = "TOKENAFFIRM_", **overrides) -> "AffirmConfig":
        """
        Build configuration from environment variables.

        Unset variables fall back to the dataclass defaults; keyword
        overrides win over both.
        """
        def _get(name: str, cast) -> Optional[object]:
            raw = os.environ.get(f"{prefix}{name}")
            if raw is None or raw == "":
                return None
            try:
                return cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {prefix}{name}: {raw!r}") from e

        values = {
            "expiry_seconds": _get("EXPIRY_SECONDS", int),
            "retain_seconds": _get("RETAIN_SECONDS", int),
            "timeout_seconds": _get("TIMEOUT_SECONDS", float),
            "request_interval_seconds": _get("REQUEST_INTERVAL_SECONDS", int),
            "request_count": _get("REQUEST_COUNT", int),
            "profile": _get("PROFILE", str),
            "token_length": _get("TOKEN_LENGTH", int),
            "delivery_workers": _get("DELIVERY_WORKERS", int),
        }
        values = {k: v for k, v in values.items() if v is not None}
        values.update(overrides)
        return cls(**values)
