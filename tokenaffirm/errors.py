"""
TokenAffirm Exceptions
======================
Error taxonomy surfaced to the immediate caller of an engine operation.

Negative verification outcomes are plain ``False`` returns, not errors.
"""

from typing import Optional


class TokenAffirmError(Exception):
    """Base class for all TokenAffirm errors."""
    code = "tokenaffirm_error"


class ConfigurationError(TokenAffirmError, ValueError):
    """Invalid engine configuration or factor registration."""
    code = "configuration_error"


class Unauthenticated(TokenAffirmError):
    """No caller identity available."""
    code = "unauthenticated"


class UnknownContact(TokenAffirmError):
    """The owner's contact profile is missing or malformed."""
    code = "unknown_contact"


class UnsupportedFactor(TokenAffirmError):
    """No delivery capability registered for the factor."""
    code = "unsupported_factor"

    def __init__(self, factor: str):
        super().__init__(f"{factor} not supported")
        self.factor = factor


class SessionConflict(TokenAffirmError):
    """Another caller holds the pending session for this scope."""
    code = "session_conflict"


class DeliveryError(TokenAffirmError):
    """Token delivery did not succeed; the session was rolled back."""
    code = "delivery_error"

    def __init__(self, message: str, factor: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.factor = factor
        self.session_id = session_id


class DeliveryFailed(DeliveryError):
    """The delivery capability reported or raised an error."""
    code = "delivery_failed"


class DeliveryTimeout(DeliveryError):
    """The delivery capability exceeded its deadline."""
    code = "delivery_timeout"


class RateLimited(TokenAffirmError):
    """The request governor rejected the call."""
    code = "rate_limited"

    def __init__(self, operation: str, retry_after: Optional[int] = None):
        super().__init__(f"Too many {operation} requests")
        self.operation = operation
        self.retry_after = retry_after


class DuplicatePendingSession(TokenAffirmError):
    """Store-level unique constraint: a pending session already exists for the scope."""
    code = "duplicate_pending_session"

    def __init__(self, scope_key: str):
        super().__init__(f"Pending session already exists for scope {scope_key}")
        self.scope_key = scope_key
