"""
TokenAffirm
===========
Challenge-response verification sessions for step-up confirmation flows.
"""

__version__ = "0.1.0"

# Engine
from tokenaffirm.engine import TokenAffirm

# Config
from tokenaffirm.config import AffirmConfig, OPERATIONS

# Errors
from tokenaffirm.errors import (
    TokenAffirmError,
    ConfigurationError,
    Unauthenticated,
    UnknownContact,
    UnsupportedFactor,
    SessionConflict,
    DeliveryError,
    DeliveryFailed,
    DeliveryTimeout,
    RateLimited,
    DuplicatePendingSession,
)

# Delivery
from tokenaffirm.delivery import (
    ConsoleFactor,
    DeliveryResult,
    DeliveryStatus,
    Factor,
    FactorRegistry,
    TwilioSMSFactor,
)

# Profiles
from tokenaffirm.profiles import (
    ContactProfile,
    ContactProfileResolver,
    InMemoryProfileResolver,
)

# Sessions
from tokenaffirm.session import (
    Session,
    SessionFilter,
    SessionState,
    SessionStore,
    InMemorySessionStore,
    RedisSessionStore,
)

# Rate Limiting
from tokenaffirm.rate_limit import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    RateLimitInfo,
    RequestGovernor,
)

# Tokens
from tokenaffirm.tokens import generate_token, generate_numeric_token

# Logging
from tokenaffirm.log import setup_logging

__all__ = [
    # Engine
    "TokenAffirm",
    # Config
    "AffirmConfig",
    "OPERATIONS",
    # Errors
    "TokenAffirmError",
    "ConfigurationError",
    "Unauthenticated",
    "UnknownContact",
    "UnsupportedFactor",
    "SessionConflict",
    "DeliveryError",
    "DeliveryFailed",
    "DeliveryTimeout",
    "RateLimited",
    "DuplicatePendingSession",
    # Delivery
    "ConsoleFactor",
    "DeliveryResult",
    "DeliveryStatus",
    "Factor",
    "FactorRegistry",
    "TwilioSMSFactor",
    # Profiles
    "ContactProfile",
    "ContactProfileResolver",
    "InMemoryProfileResolver",
    # Sessions
    "Session",
    "SessionFilter",
    "SessionState",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    # Rate Limiting
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimitInfo",
    "RequestGovernor",
    # Tokens
    "generate_token",
    "generate_numeric_token",
    # Logging
    "setup_logging",
]
