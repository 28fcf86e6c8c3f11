"""Tests for the session store: round-trip, merge, tenancy, degradation, locking.

Covers:
- create/get round-trip and default seeding
- update() shallow merge and last_active_at monotonicity
- tenant isolation over a shared Redis
- one-way degradation to the local backend
- terminal end_session write
- per-session write serialization
"""

import asyncio

import pytest
from conftest import BrokenRedis, FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from dialog_core.core.errors import (
    DependencyUnavailableError,
    MalformedInputError,
    NotFoundError,
    SessionEndedError,
)
from dialog_core.schemas.session import (
    ConversationState,
    PreferencesOverride,
    ResponseStyle,
    Scenario,
    SessionContext,
)
from dialog_core.services.session_store import (
    LocalSessionBackend,
    RedisSessionBackend,
    SessionStore,
)


class IndexFailingRedis(FakeRedis):
    """Accepts the record write, then refuses the user-index update."""

    async def sadd(self, key, member):
        raise RedisConnectionError("connection reset")


# ── Create / get ─────────────────────────────────────────────────────


class TestCreateAndGet:
    async def test_round_trip(self, store, clock):
        session = await store.create("user-1")
        clock.advance(seconds=5)
        loaded = await store.get(session.session_id)

        assert loaded.model_dump(exclude={"last_active_at"}) == session.model_dump(
            exclude={"last_active_at"}
        )
        assert loaded.last_active_at >= session.last_active_at

    async def test_defaults_seeded(self, store):
        session = await store.create("user-1")
        assert session.tenant_id == "club_a"
        assert session.conversation_flow.conversation_state == ConversationState.GREETING
        assert session.conversation_flow.messages == []
        assert session.context.active_scenario == Scenario.OVERVIEW
        assert session.context.highlighted_entity is None
        assert session.context.current_season == "2025-26"
        assert session.context.focus_team == "First Team"
        assert session.preferences.preferred_metrics == ["goals", "assists", "minutes"]
        assert session.analytics.total_sessions == 1
        assert session.analytics.total_messages == 0
        assert session.analytics.last_learning_update == session.created_at

    async def test_preference_overrides(self, store):
        session = await store.create(
            "user-1",
            PreferencesOverride(response_style=ResponseStyle.BRIEF, voice_enabled=False),
        )
        assert session.preferences.response_style == ResponseStyle.BRIEF
        assert session.preferences.voice_enabled is False
        # untouched defaults survive
        assert session.preferences.preferred_metrics == ["goals", "assists", "minutes"]

    async def test_preferences_from_dict(self, store):
        session = await store.create("user-1", {"analysis_depth": "comprehensive"})
        assert session.preferences.analysis_depth == "comprehensive"

    async def test_session_ids_unique(self, store):
        a = await store.create("user-1")
        b = await store.create("user-1")
        assert a.session_id != b.session_id

    async def test_ttl_applied(self, store, fake_redis, settings):
        session = await store.create("user-1")
        key = f"session:club_a:{session.session_id}"
        assert fake_redis.ttls[key] == settings.session_ttl_seconds
        assert fake_redis.ttls["user_sessions:club_a:user-1"] == settings.user_index_ttl_seconds

    async def test_get_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.get("sess_missing")

    async def test_empty_user_rejected(self, store):
        with pytest.raises(MalformedInputError) as exc:
            await store.create("")
        assert exc.value.field == "user_id"


# ── Update ───────────────────────────────────────────────────────────


class TestUpdate:
    async def test_shallow_merge(self, store):
        session = await store.create("user-1")
        updated = await store.update(
            session.session_id,
            {"context": SessionContext(focus_team="Reserves", active_scenario=Scenario.ATTACK)},
        )
        assert updated.context.focus_team == "Reserves"
        assert updated.context.active_scenario == Scenario.ATTACK
        assert updated.preferences == session.preferences

    async def test_refreshes_last_active(self, store, clock):
        session = await store.create("user-1")
        clock.advance(minutes=3)
        updated = await store.update(session.session_id, {})
        assert updated.last_active_at == clock.current

    async def test_last_active_never_moves_backwards(self, store, clock):
        session = await store.create("user-1")
        clock.advance(minutes=-10)
        updated = await store.update(session.session_id, {})
        assert updated.last_active_at == session.last_active_at

    async def test_unknown_field_rejected(self, store):
        session = await store.create("user-1")
        with pytest.raises(MalformedInputError) as exc:
            await store.update(session.session_id, {"favourite": 1})
        assert exc.value.field == "favourite"

    async def test_immutable_fields_rejected(self, store):
        session = await store.create("user-1")
        with pytest.raises(MalformedInputError) as exc:
            await store.update(session.session_id, {"tenant_id": "club_b"})
        assert exc.value.field == "tenant_id"

    async def test_invalid_value_rejected(self, store):
        session = await store.create("user-1")
        with pytest.raises(MalformedInputError):
            await store.update(session.session_id, {"context": {"active_scenario": "penalties"}})

    async def test_update_missing_session(self, store):
        with pytest.raises(NotFoundError):
            await store.update("sess_missing", {})


# ── Tenant isolation ─────────────────────────────────────────────────


class TestTenantIsolation:
    async def test_other_tenant_cannot_read(self, fake_redis, settings, clock):
        store_a = SessionStore("club_a", RedisSessionBackend(fake_redis), settings=settings, clock=clock)
        store_b = SessionStore("club_b", RedisSessionBackend(fake_redis), settings=settings, clock=clock)

        session = await store_a.create("user-1")
        with pytest.raises(NotFoundError):
            await store_b.get(session.session_id)
        assert await store_b.list_user_sessions("user-1") == []

    def test_empty_tenant_rejected(self, settings):
        with pytest.raises(MalformedInputError):
            SessionStore("", LocalSessionBackend(), settings=settings)


# ── Degradation ──────────────────────────────────────────────────────


class TestDegradation:
    @pytest.fixture
    def broken(self):
        return BrokenRedis()

    @pytest.fixture
    def degraded_store(self, broken, settings, clock):
        return SessionStore(
            "club_a",
            RedisSessionBackend(broken),
            settings=settings,
            clock=clock,
        )

    async def test_backend_wraps_redis_errors(self, broken):
        backend = RedisSessionBackend(broken)
        with pytest.raises(DependencyUnavailableError):
            await backend.load("anything")

    async def test_create_falls_back(self, degraded_store):
        assert degraded_store.degraded is False
        session = await degraded_store.create("user-1")
        assert degraded_store.degraded is True
        assert degraded_store.active_backend == "local"
        assert (await degraded_store.get(session.session_id)).session_id == session.session_id

    async def test_fallback_continuity(self, degraded_store):
        session = await degraded_store.create("user-1")
        await degraded_store.update(
            session.session_id, {"context": SessionContext(highlighted_entity="J. Smith")}
        )
        loaded = await degraded_store.get(session.session_id)
        assert loaded.context.highlighted_entity == "J. Smith"
        assert [s.session_id for s in await degraded_store.list_user_sessions("user-1")] == [
            session.session_id
        ]

    async def test_degradation_is_one_way(self, degraded_store, broken):
        await degraded_store.create("user-1")
        broken.healthy = True
        broken.calls.clear()
        await degraded_store.create("user-2")
        assert degraded_store.degraded is True
        assert broken.calls == []

    async def test_index_failure_during_create_keeps_session(self, settings, clock):
        redis = IndexFailingRedis()
        store = SessionStore("club_a", RedisSessionBackend(redis), settings=settings, clock=clock)

        session = await store.create("user-1")

        assert store.degraded is True
        assert (await store.get(session.session_id)).session_id == session.session_id
        assert [s.session_id for s in await store.list_user_sessions("user-1")] == [
            session.session_id
        ]

    async def test_no_primary_starts_degraded(self, settings):
        store = SessionStore("club_a", None, settings=settings)
        assert store.degraded is True
        session = await store.create("user-1")
        assert (await store.get(session.session_id)).user_id == "user-1"

    async def test_health_reports_and_degrades(self, degraded_store):
        health = await degraded_store.health()
        assert health == {"primary": False, "fallback": True}
        assert degraded_store.degraded is True

    async def test_local_backend_records_ttl(self, settings):
        local = LocalSessionBackend()
        store = SessionStore("club_a", None, local, settings=settings)
        session = await store.create("user-1")
        assert local.expiries[f"session:club_a:{session.session_id}"] == settings.session_ttl_seconds


# ── End session ──────────────────────────────────────────────────────


class TestEndSession:
    async def test_end_is_terminal(self, store, clock):
        session = await store.create("user-1")
        clock.advance(minutes=2)
        ended = await store.end(session.session_id)

        assert ended.conversation_flow.conversation_state == ConversationState.ENDED
        assert ended.analytics.avg_session_duration_ms == 120_000

        with pytest.raises(SessionEndedError):
            await store.update(session.session_id, {})
        with pytest.raises(SessionEndedError):
            await store.end(session.session_id)

    async def test_ended_session_still_readable(self, store):
        session = await store.create("user-1")
        await store.end(session.session_id)
        loaded = await store.get(session.session_id)
        assert loaded.is_ended


# ── User sessions / concurrency ──────────────────────────────────────


class TestUserSessions:
    async def test_list_sorted_by_activity(self, store, clock):
        first = await store.create("user-1")
        clock.advance(minutes=1)
        second = await store.create("user-1")
        clock.advance(minutes=1)
        await store.update(first.session_id, {})

        sessions = await store.list_user_sessions("user-1")
        assert [s.session_id for s in sessions] == [first.session_id, second.session_id]

    async def test_expired_entries_pruned(self, store, fake_redis):
        session = await store.create("user-1")
        del fake_redis.values[f"session:club_a:{session.session_id}"]

        assert await store.list_user_sessions("user-1") == []
        assert fake_redis.sets["user_sessions:club_a:user-1"] == set()


class TestSerializedWrites:
    async def test_concurrent_mutations_not_lost(self, store):
        session = await store.create("user-1")

        def _bump(s):
            s.analytics.successful_actions["tap"] = s.analytics.successful_actions.get("tap", 0) + 1

        await asyncio.gather(*(store.mutate(session.session_id, _bump) for _ in range(25)))
        loaded = await store.get(session.session_id)
        assert loaded.analytics.successful_actions["tap"] == 25

