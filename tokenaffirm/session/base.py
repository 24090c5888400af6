"""
Session Store Interface
=======================
Abstract document store the verification engine depends on.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from ..errors import ConfigurationError
from .models import Session, SessionFilter


class SessionStore(ABC):
    """
    Abstract session store.

    Implementations carry two passive expiry policies: pending sessions
    are purged once ``expire_at`` passes, verified sessions once
    ``verify_at`` plus the declared retention passes. Both are storage
    hygiene only; callers re-check deadlines themselves.

    A store serves one engine. Retention is declared once; a second
    declaration with a different value is rejected.
    """

    retain_seconds: int = 300
    _declared_retain: Optional[int] = None

    def declare_expiry(self, retain_seconds: int) -> None:
        """
        Declare the retention of verified sessions.

        Raises:
            ConfigurationError: If a different retention was already declared
        """
        if self._declared_retain is not None and self._declared_retain != retain_seconds:
            raise ConfigurationError(
                f"Store already declared retain_seconds={self._declared_retain}; "
                "use one store per engine"
            )
        self._declared_retain = retain_seconds
        self.retain_seconds = retain_seconds

    @abstractmethod
    async def insert(self, session: Session, now: Optional[datetime] = None) -> str:
        """
        Insert a session document.

        Raises:
            DuplicatePendingSession: If a pending session already exists
                for the session's scope
        """
        pass

    @abstractmethod
    async def find_one(
        self,
        query: SessionFilter,
        now: Optional[datetime] = None,
    ) -> Optional[Session]:
        """Return the first session matching ``query``, or None."""
        pass

    @abstractmethod
    async def update(
        self,
        session_id: str,
        changes: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically patch a session that is still pending at ``now``.

        None values unset the field. Returns False if the session is
        absent, expired or already verified.
        """
        pass

    @abstractmethod
    async def remove_where(
        self,
        query: SessionFilter,
        now: Optional[datetime] = None,
    ) -> int:
        """Remove matching sessions and return how many were removed."""
        pass
