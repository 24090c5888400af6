"""
Redis Session Store
===================
Redis-backed session store using key TTLs for passive expiry and Lua
scripts for conditional mutations.

Layout:
    {namespace}:session:{id}     hash, PEXPIREAT expire_at while pending,
                                 PEXPIRE retain once verified
    {namespace}:pending:{scope}  session id of the pending session, SET NX
                                 in the same script as the hash write
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import structlog

from ..errors import DuplicatePendingSession
from .base import SessionStore
from .models import Session, SessionFilter, to_millis, utcnow

logger = structlog.get_logger(__name__)

# Claim the scope and write the session hash in one step
INSERT_PENDING_SCRIPT = """
local key = KEYS[1]
local pending_key = KEYS[2]

if not redis.call('SET', pending_key, ARGV[1], 'NX', 'PX', ARGV[2]) then
    return 0
end

for i = 4, #ARGV, 2 do
    redis.call('HSET', key, ARGV[i], ARGV[i + 1])
end
redis.call('PEXPIREAT', key, ARGV[3])

return 1
"""

# Patch a session only while it is pending, then re-arm its TTL
UPDATE_PENDING_SCRIPT = """
local key = KEYS[1]
local pending_key = KEYS[2]
local session_id = ARGV[1]
local now = tonumber(ARGV[2])
local retain = tonumber(ARGV[3])

if redis.call('EXISTS', key) == 0 then
    return 0
end
if redis.call('HEXISTS', key, 'verify_at') == 1 then
    return 0
end
local expire_at = redis.call('HGET', key, 'expire_at')
if not expire_at or tonumber(expire_at) <= now then
    return 0
end

for i = 4, #ARGV, 2 do
    if ARGV[i + 1] == '' then
        redis.call('HDEL', key, ARGV[i])
    else
        redis.call('HSET', key, ARGV[i], ARGV[i + 1])
    end
end

if redis.call('HEXISTS', key, 'verify_at') == 1 then
    redis.call('PEXPIRE', key, retain)
    if redis.call('GET', pending_key) == session_id then
        redis.call('DEL', pending_key)
    end
else
    local new_expire_at = redis.call('HGET', key, 'expire_at')
    if new_expire_at then
        redis.call('PEXPIREAT', key, new_expire_at)
    end
end

return 1
"""

# Remove a session unless it is verified; counts only sessions still pending
REMOVE_PENDING_SCRIPT = """
local key = KEYS[1]
local pending_key = KEYS[2]
local session_id = ARGV[1]
local now = tonumber(ARGV[2])

if redis.call('HEXISTS', key, 'verify_at') == 1 then
    return 0
end

local expire_at = redis.call('HGET', key, 'expire_at')
local live = expire_at and tonumber(expire_at) > now

redis.call('DEL', key)
if redis.call('GET', pending_key) == session_id then
    redis.call('DEL', pending_key)
end

if live then
    return 1
end
return 0
"""


def _decode(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode()
    return value


class RedisSessionStore(SessionStore):
    """
    Redis-backed session store.

    The pending pointer acts as a unique index on the scope: a second
    pending insert for the same scope fails until the first is removed,
    verified or expired.
    """

    def __init__(self, redis_client, namespace: str = "tokenaffirm", retain_seconds: int = 300):
        """
        Args:
            redis_client: Async Redis client
            namespace: Key prefix, one per engine instance
            retain_seconds: Retention of verified sessions
        """
        self.redis = redis_client
        self.namespace = namespace
        self.retain_seconds = retain_seconds
        self._insert_sha: Optional[str] = None
        self._update_sha: Optional[str] = None
        self._remove_sha: Optional[str] = None

    def session_key(self, session_id: str) -> str:
        return f"{self.namespace}:session:{session_id}"

    def pending_key(self, scope_key: str) -> str:
        return f"{self.namespace}:pending:{scope_key}"

    async def _ensure_scripts(self) -> None:
        """Load Lua scripts into Redis if needed."""
        if self._insert_sha is None:
            self._insert_sha = await self.redis.script_load(INSERT_PENDING_SCRIPT)
        if self._update_sha is None:
            self._update_sha = await self.redis.script_load(UPDATE_PENDING_SCRIPT)
        if self._remove_sha is None:
            self._remove_sha = await self.redis.script_load(REMOVE_PENDING_SCRIPT)

    async def _load(self, session_id: str) -> Optional[Session]:
        record = await self.redis.hgetall(self.session_key(session_id))
        if not record:
            return None
        return Session.from_record(record)

    async def _candidates(self, query: SessionFilter) -> List[Session]:
        if query.session_id is not None:
            session_ids = [query.session_id]
        elif query.scope_key is not None:
            pointer = _decode(await self.redis.get(self.pending_key(query.scope_key)))
            session_ids = [pointer] if pointer else []
        else:
            raise ValueError("RedisSessionStore queries need a session_id or scope_key")

        sessions = []
        for session_id in session_ids:
            session = await self._load(session_id)
            if session is not None:
                sessions.append(session)
        return sessions

    async def insert(self, session: Session, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        expire_ms = to_millis(session.expire_at)
        ttl_ms = max(expire_ms - to_millis(now), 1)

        await self._ensure_scripts()

        args: List[Any] = [session.id, ttl_ms, expire_ms]
        for name, value in session.to_record().items():
            args.extend([name, value])

        acquired = await self.redis.evalsha(
            self._insert_sha,
            2,
            self.session_key(session.id),
            self.pending_key(session.scope_key),
            *args,
        )
        if not int(acquired):
            raise DuplicatePendingSession(session.scope_key)

        logger.debug("Session stored", session_id=session.id, ttl_ms=ttl_ms)
        return session.id

    async def find_one(
        self,
        query: SessionFilter,
        now: Optional[datetime] = None,
    ) -> Optional[Session]:
        now = now or utcnow()
        for session in await self._candidates(query):
            if query.matches(session, now):
                return session
        return None

    async def update(
        self,
        session_id: str,
        changes: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or utcnow()
        await self._ensure_scripts()

        scope_key = _decode(await self.redis.hget(self.session_key(session_id), "scope_key"))
        if scope_key is None:
            return False

        args: List[Any] = [session_id, to_millis(now), self.retain_seconds * 1000]
        for name, value in changes.items():
            if isinstance(value, datetime):
                value = to_millis(value)
            args.extend([name, "" if value is None else str(value)])

        result = await self.redis.evalsha(
            self._update_sha,
            2,
            self.session_key(session_id),
            self.pending_key(scope_key),
            *args,
        )
        return bool(int(result))

    async def remove_where(
        self,
        query: SessionFilter,
        now: Optional[datetime] = None,
    ) -> int:
        now = now or utcnow()
        removed = 0
        for session in await self._candidates(query):
            if query.pending:
                # Checked inside the script, against the live document
                conditions = SessionFilter(owner_identity=query.owner_identity, verified=False)
                if not conditions.matches(session, now):
                    continue
                await self._ensure_scripts()
                result = await self.redis.evalsha(
                    self._remove_sha,
                    2,
                    self.session_key(session.id),
                    self.pending_key(session.scope_key),
                    session.id,
                    to_millis(now),
                )
                removed += int(result)
            elif query.matches(session, now):
                pending_key = self.pending_key(session.scope_key)
                owns_pointer = _decode(await self.redis.get(pending_key)) == session.id
                async with self.redis.pipeline(transaction=True) as pipe:
                    pipe.delete(self.session_key(session.id))
                    if owns_pointer:
                        pipe.delete(pending_key)
                    await pipe.execute()
                removed += 1
        return removed
