"""
In-Memory Session Store
=======================
Session store for development and testing.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import structlog

from ..errors import DuplicatePendingSession
from .base import SessionStore
from .models import Session, SessionFilter, utcnow

logger = structlog.get_logger(__name__)


class InMemorySessionStore(SessionStore):
    """
    In-memory session store.

    Passive expiry runs lazily on every call. For a single process only;
    use RedisSessionStore when several workers share sessions.
    """

    def __init__(self, retain_seconds: int = 300):
        self.retain_seconds = retain_seconds
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def _purge(self, now: datetime) -> None:
        """Apply both expiry policies."""
        retain = timedelta(seconds=self.retain_seconds)
        expired = [
            session_id for session_id, session in self._sessions.items()
            if (session.verify_at is not None and session.verify_at + retain <= now)
            or (session.verify_at is None and (session.expire_at is None or session.expire_at <= now))
        ]
        for session_id in expired:
            del self._sessions[session_id]

    def _select(self, query: SessionFilter, now: datetime) -> List[Session]:
        if query.session_id is not None:
            session = self._sessions.get(query.session_id)
            candidates = [session] if session else []
        else:
            candidates = list(self._sessions.values())
        return [s for s in candidates if query.matches(s, now)]

    async def insert(self, session: Session, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        async with self._lock:
            self._purge(now)
            clash = self._select(SessionFilter(scope_key=session.scope_key, pending=True), now)
            if clash:
                raise DuplicatePendingSession(session.scope_key)
            self._sessions[session.id] = replace(session)
        return session.id

    async def find_one(
        self,
        query: SessionFilter,
        now: Optional[datetime] = None,
    ) -> Optional[Session]:
        now = now or utcnow()
        async with self._lock:
            self._purge(now)
            found = self._select(query, now)
            return replace(found[0]) if found else None

    async def update(
        self,
        session_id: str,
        changes: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or utcnow()
        async with self._lock:
            self._purge(now)
            session = self._sessions.get(session_id)
            if session is None or not session.is_pending(now):
                return False
            session.apply(changes)
            return True

    async def remove_where(
        self,
        query: SessionFilter,
        now: Optional[datetime] = None,
    ) -> int:
        now = now or utcnow()
        async with self._lock:
            self._purge(now)
            matched = self._select(query, now)
            for session in matched:
                del self._sessions[session.id]
            return len(matched)

    def __len__(self) -> int:
        return len(self._sessions)
