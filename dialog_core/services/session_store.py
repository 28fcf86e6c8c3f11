"""Session store: tenant-scoped session persistence with local degradation.

Storage layout (identical on both backends):
- session:{tenant_id}:{session_id}        JSON session record, TTL 24h from last write
- user_sessions:{tenant_id}:{user_id}     set of session ids, TTL 30 days

Every operation targets the primary backend (Redis) first. The first
DependencyUnavailableError flips the store into degraded mode for the rest
of its lifetime and the same operation is re-issued against the local
backend. There is no automatic reconnection; build a new store to retry
the primary.

Writes to one session are serialized by a per-session asyncio.Lock, so
read-modify-write cycles inside one process never lose updates. Writers
in other processes are still last-write-wins.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar
from uuid import uuid4

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from dialog_core.config import Settings, get_settings
from dialog_core.core.errors import (
    DependencyUnavailableError,
    MalformedInputError,
    NotFoundError,
    SessionEndedError,
)
from dialog_core.core.logging import get_logger
from dialog_core.core.redis import get_redis
from dialog_core.schemas.session import (
    ConversationState,
    PreferencesOverride,
    Session,
    SessionAnalytics,
    SessionContext,
)

logger = get_logger(__name__)

T = TypeVar("T")


def _session_key(tenant_id: str, session_id: str) -> str:
    return f"session:{tenant_id}:{session_id}"


def _user_index_key(tenant_id: str, user_id: str) -> str:
    return f"user_sessions:{tenant_id}:{user_id}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ── Backends ─────────────────────────────────────────────────────────


class SessionBackend(Protocol):
    """Key/value + set primitives the store needs from a backend."""

    name: str

    async def load(self, key: str) -> str | None: ...

    async def save(self, key: str, payload: str, ttl_seconds: int) -> None: ...

    async def add_to_index(self, key: str, member: str, ttl_seconds: int) -> None: ...

    async def remove_from_index(self, key: str, member: str) -> None: ...

    async def index_members(self, key: str) -> list[str]: ...

    async def ping(self) -> bool: ...


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisSessionBackend:
    """Primary backend. Any Redis/network failure becomes DependencyUnavailableError."""

    name = "redis"

    def __init__(self, redis: aioredis.Redis, *, timeout_seconds: float = 2.0) -> None:
        self._redis = redis
        self._timeout = timeout_seconds

    async def _run(self, op: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise DependencyUnavailableError("redis", f"{op}: {e!r}") from e

    async def load(self, key: str) -> str | None:
        raw = await self._run("get", self._redis.get(key))
        return _decode(raw) if raw is not None else None

    async def save(self, key: str, payload: str, ttl_seconds: int) -> None:
        await self._run("set", self._redis.set(key, payload, ex=ttl_seconds))

    async def add_to_index(self, key: str, member: str, ttl_seconds: int) -> None:
        await self._run("sadd", self._redis.sadd(key, member))
        await self._run("expire", self._redis.expire(key, ttl_seconds))

    async def remove_from_index(self, key: str, member: str) -> None:
        await self._run("srem", self._redis.srem(key, member))

    async def index_members(self, key: str) -> list[str]:
        members = await self._run("smembers", self._redis.smembers(key))
        return sorted(_decode(m) for m in members)

    async def ping(self) -> bool:
        return bool(await self._run("ping", self._redis.ping()))


class LocalSessionBackend:
    """In-process fallback backend with the same layout as Redis.

    TTLs are recorded but not enforced: local sessions live until the
    process exits.
    """

    name = "local"

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._sets: dict[str, set[str]] = {}
        self.expiries: dict[str, int] = {}

    async def load(self, key: str) -> str | None:
        return self._values.get(key)

    async def save(self, key: str, payload: str, ttl_seconds: int) -> None:
        self._values[key] = payload
        self.expiries[key] = ttl_seconds

    async def add_to_index(self, key: str, member: str, ttl_seconds: int) -> None:
        self._sets.setdefault(key, set()).add(member)
        self.expiries[key] = ttl_seconds

    async def remove_from_index(self, key: str, member: str) -> None:
        self._sets.get(key, set()).discard(member)

    async def index_members(self, key: str) -> list[str]:
        return sorted(self._sets.get(key, set()))

    async def ping(self) -> bool:
        return True


# ── Store ────────────────────────────────────────────────────────────


class SessionStore:
    """Durable, tenant-scoped storage for one Session per conversation."""

    def __init__(
        self,
        tenant_id: str,
        primary: SessionBackend | None,
        fallback: SessionBackend | None = None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not tenant_id:
            raise MalformedInputError("tenant_id", "must not be empty")
        self._settings = settings or get_settings()
        self.tenant_id = tenant_id
        self._primary = primary
        self._fallback = fallback or LocalSessionBackend()
        self._degraded = primary is None
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def active_backend(self) -> str:
        if self._degraded or self._primary is None:
            return self._fallback.name
        return self._primary.name

    def now(self) -> datetime:
        return self._clock()

    # ── Degradation ──────────────────────────────────────────────

    async def _call(self, op: str, fn: Callable[[SessionBackend], Awaitable[T]]) -> T:
        """Run fn on the primary; on failure degrade permanently and rerun on fallback."""
        if not self._degraded and self._primary is not None:
            try:
                return await fn(self._primary)
            except DependencyUnavailableError as e:
                self._degraded = True
                logger.warning(
                    "primary_store_degraded",
                    tenant_id=self.tenant_id,
                    operation=op,
                    error=str(e),
                )
        return await fn(self._fallback)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # ── Serialization ────────────────────────────────────────────

    def _parse(self, session_id: str, raw: str) -> Session:
        try:
            session = Session.model_validate_json(raw)
        except ValidationError as e:
            logger.error("session_record_corrupt", session_id=session_id, error=str(e))
            raise NotFoundError("session", session_id) from e
        if session.tenant_id != self.tenant_id:
            # Key layout already partitions by tenant; a mismatch is never served.
            logger.error("session_tenant_mismatch", session_id=session_id)
            raise NotFoundError("session", session_id)
        return session

    async def _write(self, session: Session) -> None:
        payload = session.model_dump_json()
        key = _session_key(self.tenant_id, session.session_id)
        ttl = self._settings.session_ttl_seconds
        await self._call("save", lambda b: b.save(key, payload, ttl))

    async def _load(self, session_id: str) -> Session:
        key = _session_key(self.tenant_id, session_id)
        raw = await self._call("load", lambda b: b.load(key))
        if raw is None:
            raise NotFoundError("session", session_id)
        return self._parse(session_id, raw)

    # ── Public API ───────────────────────────────────────────────

    async def create(
        self,
        user_id: str,
        preferences: PreferencesOverride | dict | None = None,
    ) -> Session:
        """Create a session seeded with default context, preferences and analytics."""
        if not user_id:
            raise MalformedInputError("user_id", "must not be empty")
        if isinstance(preferences, dict):
            preferences = PreferencesOverride.model_validate(preferences)

        now = self.now()
        session = Session(
            session_id=f"sess_{uuid4().hex}",
            tenant_id=self.tenant_id,
            user_id=user_id,
            created_at=now,
            last_active_at=now,
            context=SessionContext(
                current_season=self._settings.default_season,
                focus_team=self._settings.default_focus_team,
            ),
            analytics=SessionAnalytics(last_learning_update=now),
        )
        if preferences is not None:
            session.preferences = preferences.apply(session.preferences)

        was_degraded = self._degraded
        await self._write(session)
        index_key = _user_index_key(self.tenant_id, user_id)
        index_ttl = self._settings.user_index_ttl_seconds
        await self._call(
            "index",
            lambda b: b.add_to_index(index_key, session.session_id, index_ttl),
        )
        if self._degraded and not was_degraded:
            # The record may only exist on the primary; the fallback needs it too.
            await self._write(session)

        logger.info(
            "session_created",
            tenant_id=self.tenant_id,
            session_id=session.session_id,
            user_id=user_id,
            backend=self.active_backend,
        )
        return session

    async def get(self, session_id: str) -> Session:
        """Load a session or raise NotFoundError."""
        return await self._load(session_id)

    async def mutate(
        self,
        session_id: str,
        fn: Callable[[Session], None],
        *,
        allow_ended: bool = False,
    ) -> Session:
        """Serialized read-modify-write: load, apply fn in place, touch, persist."""
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            if session.is_ended and not allow_ended:
                raise SessionEndedError(session_id)
            previous_active = session.last_active_at
            fn(session)
            session.last_active_at = max(self.now(), previous_active)
            await self._write(session)
            return session

    async def update(self, session_id: str, changes: dict[str, Any]) -> Session:
        """Shallow-merge top-level fields into the session and persist."""
        unknown = changes.keys() - Session.model_fields.keys()
        if unknown:
            raise MalformedInputError(sorted(unknown)[0], "unknown session field")
        immutable = {"session_id", "tenant_id", "user_id", "created_at"} & changes.keys()
        if immutable:
            raise MalformedInputError(sorted(immutable)[0], "cannot be changed")

        def _merge(session: Session) -> None:
            merged = session.model_dump()
            merged.update(changes)
            try:
                updated = Session.model_validate(merged)
            except ValidationError as e:
                err = e.errors()[0]
                field = ".".join(str(p) for p in err["loc"])
                raise MalformedInputError(field, err["msg"]) from e
            for name in changes:
                setattr(session, name, getattr(updated, name))

        return await self.mutate(session_id, _merge)

    async def end(self, session_id: str) -> Session:
        """Terminal write: mark ended and record the final session duration."""

        def _finish(session: Session) -> None:
            session.conversation_flow.conversation_state = ConversationState.ENDED
            session.conversation_flow.awaiting_response = False
            ended_at = max(self.now(), session.last_active_at)
            session.analytics.avg_session_duration_ms = (
                (ended_at - session.created_at).total_seconds() * 1000
            )

        session = await self.mutate(session_id, _finish)
        logger.info(
            "session_ended",
            tenant_id=self.tenant_id,
            session_id=session_id,
            duration_ms=session.analytics.avg_session_duration_ms,
        )
        return session

    async def list_user_sessions(self, user_id: str) -> list[Session]:
        """All live sessions of a user in this tenant, most recently active first."""
        index_key = _user_index_key(self.tenant_id, user_id)
        session_ids = await self._call("index_members", lambda b: b.index_members(index_key))

        sessions: list[Session] = []
        for session_id in session_ids:
            try:
                sessions.append(await self._load(session_id))
            except NotFoundError:
                # Expired record; drop the dangling index entry.
                await self._call(
                    "index_prune",
                    lambda b, sid=session_id: b.remove_from_index(index_key, sid),
                )
        return sorted(sessions, key=lambda s: s.last_active_at, reverse=True)

    async def health(self) -> dict[str, bool]:
        """Probe both backends. A failing primary degrades the store like any other call."""
        primary_ok = False
        if not self._degraded and self._primary is not None:
            try:
                primary_ok = await self._primary.ping()
            except DependencyUnavailableError as e:
                self._degraded = True
                logger.warning("primary_store_degraded", operation="ping", error=str(e))
        try:
            fallback_ok = await self._fallback.ping()
        except DependencyUnavailableError:
            fallback_ok = False
        return {"primary": primary_ok, "fallback": fallback_ok}


# ── Process-wide stores (one per tenant) ─────────────────────────────

_stores: dict[str, SessionStore] = {}


async def get_session_store(tenant_id: str | None = None) -> SessionStore:
    """Get or lazily create the shared store for a tenant.

    Stores live until reset_session_stores() is called. A degraded store
    stays degraded until then.
    """
    settings = get_settings()
    tenant = tenant_id or settings.default_tenant_id
    store = _stores.get(tenant)
    if store is None:
        redis = await get_redis()
        primary = RedisSessionBackend(
            redis, timeout_seconds=settings.redis_socket_timeout_seconds
        )
        store = SessionStore(tenant, primary, settings=settings)
        _stores[tenant] = store
    return store


def reset_session_stores() -> None:
    """Drop all shared stores so the next access retries the primary backend."""
    _stores.clear()
