"""
TokenAffirm Engine
==================
Issues one-time tokens over an out-of-band factor and verifies them
against short-lived sessions, at most one pending session per scope.

Example:
    affirm = TokenAffirm(
        "withdrawals",
        store=InMemorySessionStore(),
        profiles=InMemoryProfileResolver(users),
        factors={"email": {"send": send_email}},
    )

    session_id = await affirm.request_token(user_id, scope_key)
    ok = await affirm.verify_token(user_id, scope_key, token)
"""

import asyncio
import functools
import inspect
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional
import structlog

from .config import (
    AffirmConfig,
    OPERATIONS,
    REQUEST_TOKEN,
    VERIFY_TOKEN,
    INVALIDATE_SESSION,
    ASSERT_OPEN_SESSION,
    VERIFY_CONTACT,
)
from .delivery import DeliveryResult, Factor, FactorRegistry
from .errors import (
    DeliveryFailed,
    DeliveryTimeout,
    DuplicatePendingSession,
    RateLimited,
    SessionConflict,
    Unauthenticated,
)
from .log import mask_contact
from .profiles import ContactProfile, ContactProfileResolver
from .rate_limit import RequestGovernor
from .session import Session, SessionFilter, SessionStore
from .session.models import utcnow
from .tokens import TokenGenerator, generate_salt, generate_token, hash_token, verify_token_hash

logger = structlog.get_logger(__name__)


def _require_str(name: str, value: Any) -> None:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")


class TokenAffirm:
    """
    Challenge-response verification engine.

    The supersede-then-insert step of ``request_token`` relies on the
    store's unique pending index per scope; without one, two concurrent
    requests for the same scope may both leave a pending session.

    Synchronous factor sends run on a thread pool owned by the engine,
    sized by ``config.delivery_workers``. A send that never returns keeps
    its thread until the process exits; once every thread is held that
    way, further synchronous sends time out without being invoked. The
    event loop's default executor is never used for sends. Call
    ``aclose()`` to release the pool.
    """

    def __init__(
        self,
        identifier: str,
        store: SessionStore,
        profiles: ContactProfileResolver,
        config: Optional[AffirmConfig] = None,
        factors: Optional[Mapping[str, Any]] = None,
        generate: Optional[TokenGenerator] = None,
        governor: Optional[RequestGovernor] = None,
        validate: Optional[Callable[[str], bool]] = None,
    ):
        """
        Args:
            identifier: Unique name of this instance, used to namespace endpoints
            store: Session store
            profiles: Contact profile resolver
            config: Thresholds and durations
            factors: Initial factor registrations by name
            generate: Token generator; defaults to a random alphanumeric code
            governor: Request governor; defaults to in-memory limits from config
            validate: Identity predicate selecting which callers are throttled
        """
        if not isinstance(identifier, str) or not identifier:
            raise TypeError("identifier must be a non-empty string")

        self.identifier = identifier
        self.config = config or AffirmConfig()
        self.prefix = f"{self.config.profile}:{identifier}"
        self.store = store
        self.profiles = profiles
        self.factors = FactorRegistry(factors)
        self._generate = generate or (lambda: generate_token(self.config.token_length))
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.delivery_workers,
            thread_name_prefix=f"tokenaffirm-{identifier}",
        )
        self.governor = governor or RequestGovernor.in_memory(
            self.config,
            applies_to=validate,
            namespace=self.prefix,
        )

        self.store.declare_expiry(self.config.retain_seconds)

    def endpoint_names(self) -> Dict[str, str]:
        """Namespaced endpoint name of each operation."""
        return {operation: f"{self.prefix}/{operation}" for operation in OPERATIONS}

    def add_factor(self, name: str, factor: Any) -> Factor:
        """Register a factor; an existing name is overwritten."""
        return self.factors.add(name, factor)

    async def aclose(self) -> None:
        """Shut down the delivery thread pool; queued sends are dropped."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def _guard(self, identity: Optional[str], operation: str) -> str:
        """Authenticate the caller and apply the governor."""
        if not identity:
            raise Unauthenticated("login required")
        _require_str("identity", identity)

        info = await self.governor.check(identity, operation)
        if not info.allowed:
            raise RateLimited(operation, retry_after=info.retry_after)
        return identity

    async def request_token(self, identity: Optional[str], scope_key: str) -> str:
        """
        Issue a token for ``scope_key`` and deliver it to the caller's contact.

        Any pending session of the caller for the scope is superseded.

        Returns:
            Id of the new session

        Raises:
            UnknownContact, UnsupportedFactor, SessionConflict,
            DeliveryFailed, DeliveryTimeout, RateLimited, Unauthenticated
        """
        owner = await self._guard(identity, REQUEST_TOKEN)
        _require_str("scope_key", scope_key)

        profile = await self.profiles.resolve(owner)
        factor = self.factors.get(profile.factor)

        token = self._generate()
        salt = generate_salt()
        session = Session.create(
            scope_key=scope_key,
            owner_identity=owner,
            factor=profile.factor,
            token_hash=hash_token(token, salt),
            salt=salt,
            expiry_seconds=self.config.expiry_seconds,
        )
        await self._insert_superseding(session)

        logger.info(
            "Verification session created",
            session_id=session.id,
            scope_key=scope_key,
            factor=profile.factor,
            expires_in=self.config.expiry_seconds,
        )

        await self._deliver(session, factor, profile, token)
        return session.id

    async def _insert_superseding(self, session: Session) -> None:
        """Remove the owner's pending session for the scope, then insert."""
        supersede = SessionFilter(
            scope_key=session.scope_key,
            owner_identity=session.owner_identity,
            pending=True,
        )
        # One retry covers a concurrent request that inserted in between
        for attempt in range(2):
            removed = await self.store.remove_where(supersede)
            if removed:
                logger.info("Pending session superseded", scope_key=session.scope_key)
            try:
                await self.store.insert(session)
                return
            except DuplicatePendingSession:
                if attempt == 1:
                    break
        logger.warning("Scope held by another pending session", scope_key=session.scope_key)
        raise SessionConflict(f"Pending session exists for scope {session.scope_key}")

    async def _deliver(
        self,
        session: Session,
        factor: Factor,
        profile: ContactProfile,
        token: str,
    ) -> None:
        """Send the token within the timeout; roll the session back otherwise."""
        try:
            outcome = await asyncio.wait_for(
                self._send(factor, profile, token),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.CancelledError:
            # The caller gave up; the send's outcome is unknown
            await asyncio.shield(self._rollback(session))
            logger.warning(
                "Token delivery cancelled",
                session_id=session.id,
                factor=profile.factor,
            )
            raise
        except asyncio.TimeoutError:
            await self._rollback(session)
            logger.warning(
                "Token delivery timed out",
                session_id=session.id,
                factor=profile.factor,
                timeout=self.config.timeout_seconds,
            )
            raise DeliveryTimeout(
                f"{profile.factor} delivery timed out",
                factor=profile.factor,
                session_id=session.id,
            ) from None
        except Exception as e:
            await self._rollback(session)
            logger.error(
                "Token delivery failed",
                session_id=session.id,
                factor=profile.factor,
                error=str(e),
            )
            raise DeliveryFailed(
                f"{profile.factor} delivery failed",
                factor=profile.factor,
                session_id=session.id,
            ) from e

        if isinstance(outcome, DeliveryResult) and not outcome.success:
            await self._rollback(session)
            logger.error(
                "Token delivery rejected",
                session_id=session.id,
                factor=profile.factor,
                error_code=outcome.error_code,
                error=outcome.error_message,
            )
            raise DeliveryFailed(
                outcome.error_message or f"{profile.factor} delivery failed",
                factor=profile.factor,
                session_id=session.id,
            )

        logger.info(
            "Token delivered",
            session_id=session.id,
            factor=profile.factor,
            contact=mask_contact(profile.contact),
        )

    async def _send(self, factor: Factor, profile: ContactProfile, token: str) -> Any:
        args = (profile.contact, token, profile.factor, factor.settings)
        if inspect.iscoroutinefunction(factor.send):
            return await factor.send(*args)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            self._executor,
            functools.partial(factor.send, *args),
        )
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _rollback(self, session: Session) -> None:
        await self.store.remove_where(SessionFilter(session_id=session.id, pending=True))

    async def verify_token(self, identity: Optional[str], scope_key: str, token: str) -> bool:
        """
        Verify ``token`` against the caller's pending session for the scope.

        Returns True exactly once per session. Absent, expired, already
        verified and mismatched sessions all return False.
        """
        owner = await self._guard(identity, VERIFY_TOKEN)
        _require_str("scope_key", scope_key)
        _require_str("token", token)

        now = utcnow()
        session = await self.store.find_one(
            SessionFilter(scope_key=scope_key, owner_identity=owner, pending=True),
            now=now,
        )
        if session is None or not session.is_pending(now):
            return False
        if not session.token_hash or not session.salt:
            return False
        if not verify_token_hash(token, session.salt, session.token_hash):
            logger.warning("Invalid token attempt", session_id=session.id)
            return False

        verified = await self.store.update(
            session.id,
            {"verify_at": now, "expire_at": None, "token_hash": None, "salt": None},
            now=now,
        )
        if verified:
            logger.info("Session verified", session_id=session.id, scope_key=scope_key)
        return verified

    async def invalidate_session(self, identity: Optional[str], scope_key: str) -> int:
        """
        Remove the caller's pending session for the scope.

        Verified sessions are never removed.

        Returns:
            1 if a pending session was removed, 0 otherwise
        """
        owner = await self._guard(identity, INVALIDATE_SESSION)
        _require_str("scope_key", scope_key)

        removed = await self.store.remove_where(
            SessionFilter(scope_key=scope_key, owner_identity=owner, pending=True)
        )
        if removed:
            logger.info("Session invalidated", scope_key=scope_key)
        return removed

    async def assert_open_session(self, identity: Optional[str], scope_key: str) -> bool:
        """True if the caller has a pending, unexpired session for the scope."""
        owner = await self._guard(identity, ASSERT_OPEN_SESSION)
        _require_str("scope_key", scope_key)

        now = utcnow()
        session = await self.store.find_one(
            SessionFilter(scope_key=scope_key, owner_identity=owner, pending=True),
            now=now,
        )
        return session is not None and session.is_pending(now)

    async def verify_contact(self, identity: Optional[str]) -> ContactProfile:
        """Return the contact profile tokens would be sent to."""
        owner = await self._guard(identity, VERIFY_CONTACT)
        return await self.profiles.resolve(owner)

    async def is_verified(self, session_id: str, now: Optional[datetime] = None) -> bool:
        """True if the session was verified and is still retained."""
        _require_str("session_id", session_id)
        session = await self.store.find_one(SessionFilter(session_id=session_id), now=now)
        return session is not None and session.is_verified
