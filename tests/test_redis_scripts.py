"""
Redis Store Script Tests
========================
Runs the Redis session store's Lua scripts against fakeredis, both
directly and through the engine.
"""

import asyncio
from datetime import timedelta

import fakeredis
import pytest
import pytest_asyncio

from tokenaffirm import (
    AffirmConfig,
    DuplicatePendingSession,
    RedisSessionStore,
    SessionConflict,
    TokenAffirm,
)
from tokenaffirm.session import Session, SessionFilter
from tokenaffirm.session.models import utcnow


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis()
    yield client
    await client.flushall()


@pytest.fixture
def make_redis_affirm(redis_client, outbox, profiles):
    def factory(send=None, **config):
        config.setdefault("request_count", 100)
        return TokenAffirm(
            "test",
            store=RedisSessionStore(redis_client, namespace="ta"),
            profiles=profiles,
            config=AffirmConfig(**config),
            factors={"default": {"send": send or outbox.send}},
        )
    return factory


def make_session(scope_key="s1", owner="alice", expiry_seconds=300, now=None):
    return Session.create(
        scope_key=scope_key,
        owner_identity=owner,
        factor="email",
        token_hash="hash",
        salt="salt",
        expiry_seconds=expiry_seconds,
        now=now,
    )


class TestStoreScripts:
    """Tests for the store's scripts run directly."""

    @pytest.mark.asyncio
    async def test_insert_writes_hash_and_pointer(self, redis_client):
        store = RedisSessionStore(redis_client, namespace="ta")
        session = make_session()

        await store.insert(session)

        assert await redis_client.get("ta:pending:s1") == session.id.encode()
        assert await redis_client.hget(f"ta:session:{session.id}", "owner_identity") == b"alice"
        assert 0 < await redis_client.pttl(f"ta:session:{session.id}") <= 300000

    @pytest.mark.asyncio
    async def test_second_pending_insert_writes_nothing(self, redis_client):
        store = RedisSessionStore(redis_client, namespace="ta")
        first = make_session()
        second = make_session()
        await store.insert(first)

        with pytest.raises(DuplicatePendingSession):
            await store.insert(second)

        assert await redis_client.get("ta:pending:s1") == first.id.encode()
        assert await redis_client.exists(f"ta:session:{second.id}") == 0

    @pytest.mark.asyncio
    async def test_update_only_once(self, redis_client):
        store = RedisSessionStore(redis_client, namespace="ta")
        now = utcnow()
        session = make_session(now=now)
        await store.insert(session, now=now)

        changes = {"verify_at": now, "expire_at": None, "token_hash": None, "salt": None}
        assert await store.update(session.id, changes, now=now) is True
        assert await store.update(session.id, changes, now=now) is False

        found = await store.find_one(SessionFilter(session_id=session.id), now=now)
        assert found.is_verified
        assert found.token_hash is None and found.expire_at is None

    @pytest.mark.asyncio
    async def test_update_rejects_past_deadline(self, redis_client):
        store = RedisSessionStore(redis_client, namespace="ta")
        now = utcnow()
        session = make_session(now=now)
        await store.insert(session, now=now)

        later = now + timedelta(seconds=301)
        assert await store.update(session.id, {"verify_at": later}, now=later) is False

    @pytest.mark.asyncio
    async def test_remove_pending_keeps_verified(self, redis_client):
        store = RedisSessionStore(redis_client, namespace="ta")
        now = utcnow()
        session = make_session(now=now)
        await store.insert(session, now=now)
        await store.update(session.id, {"verify_at": now, "expire_at": None}, now=now)

        removed = await store.remove_where(
            SessionFilter(session_id=session.id, pending=True), now=now
        )

        assert removed == 0
        assert await redis_client.exists(f"ta:session:{session.id}") == 1


class TestEngineOnRedis:
    """Tests for engine semantics backed by the Redis store."""

    @pytest.mark.asyncio
    async def test_reissue_supersedes_previous(self, make_redis_affirm, outbox):
        affirm = make_redis_affirm()

        first_id = await affirm.request_token("alice", "s1")
        first_token = outbox.last_token
        second_id = await affirm.request_token("alice", "s1")
        second_token = outbox.last_token

        assert first_id != second_id
        assert await affirm.verify_token("alice", "s1", first_token) is False
        assert await affirm.verify_token("alice", "s1", second_token) is True
        assert await affirm.is_verified(second_id) is True
        assert await affirm.is_verified(first_id) is False

    @pytest.mark.asyncio
    async def test_concurrent_verification_succeeds_once(self, make_redis_affirm, outbox):
        affirm = make_redis_affirm()
        await affirm.request_token("alice", "s1")
        token = outbox.last_token

        results = await asyncio.gather(
            *(affirm.verify_token("alice", "s1", token) for _ in range(5))
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_invalidate_verified_returns_zero(self, make_redis_affirm, outbox):
        affirm = make_redis_affirm()
        session_id = await affirm.request_token("alice", "s1")
        await affirm.verify_token("alice", "s1", outbox.last_token)

        assert await affirm.invalidate_session("alice", "s1") == 0
        assert await affirm.is_verified(session_id) is True

    @pytest.mark.asyncio
    async def test_invalidate_pending(self, make_redis_affirm, redis_client):
        affirm = make_redis_affirm()
        session_id = await affirm.request_token("alice", "s1")

        assert await affirm.invalidate_session("alice", "s1") == 1
        assert await affirm.invalidate_session("alice", "s1") == 0
        assert await redis_client.exists(f"ta:session:{session_id}", "ta:pending:s1") == 0

    @pytest.mark.asyncio
    async def test_verified_session_retained(self, make_redis_affirm, redis_client, outbox):
        """Verification swaps the pending deadline for the retention TTL."""
        affirm = make_redis_affirm(expiry_seconds=600, retain_seconds=60)
        session_id = await affirm.request_token("alice", "s1")
        key = f"ta:session:{session_id}"

        assert 60000 < await redis_client.pttl(key) <= 600000

        await affirm.verify_token("alice", "s1", outbox.last_token)

        assert 0 < await redis_client.pttl(key) <= 60000
        assert await redis_client.exists("ta:pending:s1") == 0
        assert await redis_client.hexists(key, "token_hash") == 0
        assert await affirm.assert_open_session("alice", "s1") is False

    @pytest.mark.asyncio
    async def test_zero_expiry_never_verifies(self, make_redis_affirm, outbox):
        affirm = make_redis_affirm(expiry_seconds=0)
        await affirm.request_token("alice", "s1")

        assert await affirm.verify_token("alice", "s1", outbox.last_token) is False
        assert await affirm.assert_open_session("alice", "s1") is False

    @pytest.mark.asyncio
    async def test_scope_held_by_other_owner(self, make_redis_affirm):
        affirm = make_redis_affirm()
        await affirm.request_token("alice", "s1")

        with pytest.raises(SessionConflict):
            await affirm.request_token("bob", "s1")

    @pytest.mark.asyncio
    async def test_lost_insert_reply_does_not_block_scope(
        self, make_redis_affirm, redis_client, outbox
    ):
        """A request whose insert reply is lost can be retried at once."""
        affirm = make_redis_affirm()
        store = affirm.store
        real_evalsha = redis_client.evalsha
        failures = []

        async def flaky_evalsha(sha, *args):
            result = await real_evalsha(sha, *args)
            if sha == store._insert_sha and not failures:
                failures.append(sha)
                raise ConnectionError("connection reset")
            return result

        redis_client.evalsha = flaky_evalsha

        with pytest.raises(ConnectionError):
            await affirm.request_token("alice", "s1")

        session_id = await affirm.request_token("alice", "s1")

        assert await redis_client.get("ta:pending:s1") == session_id.encode()
        assert await affirm.verify_token("alice", "s1", outbox.last_token) is True
