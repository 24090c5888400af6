"""
Verification Sessions
=====================
Session documents and the stores that hold them.
"""

from .models import Session, SessionFilter, SessionState
from .base import SessionStore
from .memory import InMemorySessionStore
from .redis_store import RedisSessionStore, UPDATE_PENDING_SCRIPT, REMOVE_PENDING_SCRIPT

__all__ = [
    # Models
    "Session",
    "SessionFilter",
    "SessionState",
    # Stores
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    # Scripts
    "UPDATE_PENDING_SCRIPT",
    "REMOVE_PENDING_SCRIPT",
]
