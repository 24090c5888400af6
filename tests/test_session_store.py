"""
Unit Tests for Session Stores
=============================
In-memory store semantics and the Redis store's command usage.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from tokenaffirm.errors import DuplicatePendingSession
from tokenaffirm.session import (
    InMemorySessionStore,
    RedisSessionStore,
    Session,
    SessionFilter,
    SessionState,
)
from tokenaffirm.session.models import to_millis, utcnow


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


class TestSessionModel:
    """Tests for session state and serialization."""

    def test_states(self):
        now = utcnow()
        session = make_session(now=now)

        assert session.state(now) == SessionState.PENDING
        assert session.state(now + timedelta(seconds=301)) == SessionState.EXPIRED

        session.apply({"verify_at": now, "expire_at": None})
        assert session.state(now) == SessionState.VERIFIED

    def test_unverified_without_deadline_is_expired(self):
        session = make_session()
        session.apply({"expire_at": None})

        assert session.state(utcnow()) == SessionState.EXPIRED
        assert not session.is_pending(utcnow())

    def test_apply_rejects_immutable_fields(self):
        session = make_session()

        with pytest.raises(ValueError):
            session.apply({"scope_key": "other"})

    def test_record_round_trip_from_bytes(self):
        session = make_session()
        record = {k.encode(): v.encode() for k, v in session.to_record().items()}

        restored = Session.from_record(record)

        assert restored.id == session.id
        assert restored.verify_at is None
        assert to_millis(restored.expire_at) == to_millis(session.expire_at)

    def test_filter_pending(self):
        now = utcnow()
        session = make_session(now=now)

        assert SessionFilter(scope_key="s1", pending=True).matches(session, now)
        assert not SessionFilter(scope_key="s1", pending=True).matches(
            session, now + timedelta(seconds=301)
        )
        assert not SessionFilter(owner_identity="bob").matches(session, now)


class TestInMemorySessionStore:
    """Tests for the in-memory store."""

    @pytest.mark.asyncio
    async def test_insert_and_find(self):
        store = InMemorySessionStore()
        session = make_session()

        session_id = await store.insert(session)
        found = await store.find_one(SessionFilter(scope_key="s1", pending=True))

        assert found.id == session_id

    @pytest.mark.asyncio
    async def test_unique_pending_per_scope(self):
        store = InMemorySessionStore()
        await store.insert(make_session())

        with pytest.raises(DuplicatePendingSession):
            await store.insert(make_session())

        await store.insert(make_session(scope_key="s2"))
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_update_only_while_pending(self):
        store = InMemorySessionStore()
        now = utcnow()
        session = make_session(now=now)
        await store.insert(session, now=now)

        assert await store.update(session.id, {"verify_at": now, "expire_at": None}, now=now) is True
        assert await store.update(session.id, {"verify_at": now}, now=now) is False

    @pytest.mark.asyncio
    async def test_update_rejects_expired(self):
        store = InMemorySessionStore()
        now = utcnow()
        session = make_session(expiry_seconds=0, now=now)
        await store.insert(session, now=now)

        assert await store.update(session.id, {"verify_at": now}, now=now) is False

    @pytest.mark.asyncio
    async def test_found_sessions_are_copies(self):
        store = InMemorySessionStore()
        session = make_session()
        await store.insert(session)

        found = await store.find_one(SessionFilter(session_id=session.id))
        found.token_hash = "tampered"

        again = await store.find_one(SessionFilter(session_id=session.id))
        assert again.token_hash == "hash"

    @pytest.mark.asyncio
    async def test_passive_expiry_of_pending(self):
        store = InMemorySessionStore()
        now = utcnow()
        await store.insert(make_session(expiry_seconds=10, now=now), now=now)

        later = now + timedelta(seconds=11)
        assert await store.find_one(SessionFilter(scope_key="s1"), now=later) is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_passive_expiry_of_verified(self):
        store = InMemorySessionStore(retain_seconds=60)
        now = utcnow()
        session = make_session(now=now)
        await store.insert(session, now=now)
        await store.update(session.id, {"verify_at": now, "expire_at": None}, now=now)

        retained = await store.find_one(SessionFilter(session_id=session.id), now=now + timedelta(seconds=59))
        purged = await store.find_one(SessionFilter(session_id=session.id), now=now + timedelta(seconds=61))

        assert retained is not None and retained.is_verified
        assert purged is None

    @pytest.mark.asyncio
    async def test_remove_pending_keeps_verified(self):
        store = InMemorySessionStore()
        now = utcnow()
        verified = make_session(now=now)
        await store.insert(verified, now=now)
        await store.update(verified.id, {"verify_at": now, "expire_at": None}, now=now)
        await store.insert(make_session(now=now), now=now)

        removed = await store.remove_where(SessionFilter(scope_key="s1", pending=True), now=now)

        assert removed == 1
        assert len(store) == 1


class TestRedisSessionStore:
    """Tests for the Redis store against a mocked client."""

    @pytest_asyncio.fixture
    async def redis_client(self):
        client = AsyncMock()
        pipeline_mock = AsyncMock()

        # Pipeline commands are buffered synchronously
        pipeline_mock.hset = MagicMock()
        pipeline_mock.pexpireat = MagicMock()
        pipeline_mock.delete = MagicMock()
        pipeline_mock.execute = AsyncMock()

        client.pipeline = MagicMock(return_value=pipeline_mock)
        pipeline_mock.__aenter__.return_value = pipeline_mock
        pipeline_mock.__aexit__.return_value = None
        client.script_load.return_value = "sha"
        return client

    @pytest_asyncio.fixture
    async def store(self, redis_client):
        return RedisSessionStore(redis_client, namespace="ta", retain_seconds=120)

    @pytest.mark.asyncio
    async def test_insert_claims_scope(self, store, redis_client):
        """Pointer claim and hash write go out as a single script call."""
        redis_client.evalsha.return_value = 1
        now = utcnow()
        session = make_session(now=now)

        session_id = await store.insert(session, now=now)

        assert session_id == session.id
        args = redis_client.evalsha.call_args.args
        assert args[:7] == (
            "sha",
            2,
            f"ta:session:{session.id}",
            "ta:pending:s1",
            session.id,
            300000,
            to_millis(session.expire_at),
        )
        fields = dict(zip(args[7::2], args[8::2]))
        assert fields == session.to_record()
        assert not redis_client.set.called
        assert not redis_client.pipeline.called

    @pytest.mark.asyncio
    async def test_insert_duplicate(self, store, redis_client):
        redis_client.evalsha.return_value = 0

        with pytest.raises(DuplicatePendingSession):
            await store.insert(make_session())

    @pytest.mark.asyncio
    async def test_insert_failure_leaves_no_pointer(self, store, redis_client):
        """A failed insert writes nothing outside the script."""
        redis_client.evalsha.side_effect = ConnectionError("connection reset")

        with pytest.raises(ConnectionError):
            await store.insert(make_session())

        assert not redis_client.set.called
        assert not redis_client.pipeline.called

    @pytest.mark.asyncio
    async def test_find_by_scope(self, store, redis_client):
        now = utcnow()
        session = make_session(now=now)
        redis_client.get.return_value = session.id.encode()
        redis_client.hgetall.return_value = {
            k.encode(): v.encode() for k, v in session.to_record().items()
        }

        found = await store.find_one(SessionFilter(scope_key="s1", pending=True), now=now)

        assert found.id == session.id
        redis_client.get.assert_called_with("ta:pending:s1")
        redis_client.hgetall.assert_called_with(f"ta:session:{session.id}")

    @pytest.mark.asyncio
    async def test_find_missing(self, store, redis_client):
        redis_client.get.return_value = None

        assert await store.find_one(SessionFilter(scope_key="s1")) is None

    @pytest.mark.asyncio
    async def test_find_requires_key(self, store):
        with pytest.raises(ValueError):
            await store.find_one(SessionFilter(owner_identity="alice"))

    @pytest.mark.asyncio
    async def test_update_runs_script(self, store, redis_client):
        now = utcnow()
        redis_client.hget.return_value = b"s1"
        redis_client.evalsha.return_value = 1

        updated = await store.update("abc", {"verify_at": now, "token_hash": None}, now=now)

        assert updated is True
        redis_client.evalsha.assert_called_once_with(
            "sha",
            2,
            "ta:session:abc",
            "ta:pending:s1",
            "abc",
            to_millis(now),
            120000,
            "verify_at",
            str(to_millis(now)),
            "token_hash",
            "",
        )

    @pytest.mark.asyncio
    async def test_update_missing_session(self, store, redis_client):
        redis_client.hget.return_value = None

        assert await store.update("abc", {"verify_at": utcnow()}) is False
        assert not redis_client.evalsha.called

    @pytest.mark.asyncio
    async def test_remove_pending_runs_script(self, store, redis_client):
        now = utcnow()
        session = make_session(now=now)
        redis_client.get.return_value = session.id.encode()
        redis_client.hgetall.return_value = session.to_record()
        redis_client.evalsha.return_value = 1

        removed = await store.remove_where(
            SessionFilter(scope_key="s1", owner_identity="alice", pending=True), now=now
        )

        assert removed == 1
        args = redis_client.evalsha.call_args.args
        assert args[:5] == ("sha", 2, f"ta:session:{session.id}", "ta:pending:s1", session.id)

    @pytest.mark.asyncio
    async def test_remove_pending_skips_other_owner(self, store, redis_client):
        session = make_session(owner="bob")
        redis_client.get.return_value = session.id
        redis_client.hgetall.return_value = session.to_record()

        removed = await store.remove_where(
            SessionFilter(scope_key="s1", owner_identity="alice", pending=True)
        )

        assert removed == 0
        assert not redis_client.evalsha.called
