"""
Session Models
==============
The session document and the filters used to query it.
"""

import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# Fields that may be changed after insert; None unsets
MUTABLE_FIELDS = {"token_hash", "salt", "expire_at", "verify_at"}

_DATETIME_FIELDS = {"created_at", "expire_at", "verify_at"}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SessionState(str, Enum):
    """
    Derived lifecycle state. EXPIRED is any unverified record past its
    deadline, including one with no expire_at; it is not stored.
    """
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    delta = value - EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_millis(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


@dataclass
class Session:
    """A verification session document."""
    id: str
    scope_key: str
    owner_identity: str
    factor: str
    created_at: datetime
    expire_at: Optional[datetime] = None
    verify_at: Optional[datetime] = None
    token_hash: Optional[str] = None
    salt: Optional[str] = None

    @classmethod
    def create(
        cls,
        scope_key: str,
        owner_identity: str,
        factor: str,
        token_hash: str,
        salt: str,
        expiry_seconds: int,
        now: Optional[datetime] = None,
    ) -> "Session":
        now = now or utcnow()
        return cls(
            id=uuid.uuid4().hex,
            scope_key=scope_key,
            owner_identity=owner_identity,
            factor=factor,
            created_at=now,
            expire_at=now + timedelta(seconds=expiry_seconds),
            token_hash=token_hash,
            salt=salt,
        )

    def state(self, now: Optional[datetime] = None) -> SessionState:
        if self.verify_at is not None:
            return SessionState.VERIFIED
        now = now or utcnow()
        if self.expire_at is not None and self.expire_at > now:
            return SessionState.PENDING
        return SessionState.EXPIRED

    def is_pending(self, now: Optional[datetime] = None) -> bool:
        return self.state(now) == SessionState.PENDING

    @property
    def is_verified(self) -> bool:
        return self.verify_at is not None

    def apply(self, changes: Mapping[str, Any]) -> None:
        """Apply a patch; unknown or immutable fields are rejected."""
        invalid = set(changes) - MUTABLE_FIELDS
        if invalid:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(invalid))}")
        for name, value in changes.items():
            setattr(self, name, value)

    def to_record(self) -> Dict[str, str]:
        """Flatten to string fields for hash-based stores; None fields are omitted."""
        record = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name in _DATETIME_FIELDS:
                value = to_millis(value)
            record[f.name] = str(value)
        return record

    @classmethod
    def from_record(cls, record: Mapping[Any, Any]) -> "Session":
        data = {}
        for key, value in record.items():
            if isinstance(key, bytes):
                key = key.decode()
            if isinstance(value, bytes):
                value = value.decode()
            data[key] = value
        for name in _DATETIME_FIELDS:
            if name in data:
                data[name] = from_millis(int(data[name]))
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SessionFilter:
    """
    Conjunctive filter over session documents.

    ``pending=True`` matches only sessions pending at the query time;
    ``verified=True`` matches only verified sessions.
    """
    session_id: Optional[str] = None
    scope_key: Optional[str] = None
    owner_identity: Optional[str] = None
    pending: Optional[bool] = None
    verified: Optional[bool] = None

    def matches(self, session: Session, now: Optional[datetime] = None) -> bool:
        if self.session_id is not None and session.id != self.session_id:
            return False
        if self.scope_key is not None and session.scope_key != self.scope_key:
            return False
        if self.owner_identity is not None and session.owner_identity != self.owner_identity:
            return False
        if self.pending is not None and session.is_pending(now) != self.pending:
            return False
        if self.verified is not None and session.is_verified != self.verified:
            return False
        return True
