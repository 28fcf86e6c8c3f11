"""Shared fixtures: settings, a controllable clock, and in-memory Redis doubles."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dialog_core.config import Settings
from dialog_core.services.session_store import RedisSessionBackend, SessionStore


class FakeRedis:
    """The handful of async Redis commands the session backend uses."""

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.sets: dict[str, set[bytes]] = {}
        self.ttls: dict[str, int] = {}
        self.calls: list[str] = []

    async def get(self, key):
        self.calls.append("get")
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.calls.append("set")
        self.values[key] = value.encode() if isinstance(value, str) else value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def sadd(self, key, member):
        self.calls.append("sadd")
        self.sets.setdefault(key, set()).add(member.encode())
        return 1

    async def srem(self, key, member):
        self.calls.append("srem")
        self.sets.get(key, set()).discard(member.encode())
        return 1

    async def smembers(self, key):
        self.calls.append("smembers")
        return set(self.sets.get(key, set()))

    async def expire(self, key, seconds):
        self.calls.append("expire")
        self.ttls[key] = seconds
        return True

    async def ping(self):
        self.calls.append("ping")
        return True


class BrokenRedis(FakeRedis):
    """Fails every command until `healthy` is flipped back on."""

    def __init__(self) -> None:
        super().__init__()
        self.healthy = False

    def _check(self) -> None:
        if not self.healthy:
            raise RedisConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return await super().get(key)

    async def set(self, key, value, ex=None):
        self._check()
        return await super().set(key, value, ex=ex)

    async def sadd(self, key, member):
        self._check()
        return await super().sadd(key, member)

    async def srem(self, key, member):
        self._check()
        return await super().srem(key, member)

    async def smembers(self, key):
        self._check()
        return await super().smembers(key)

    async def expire(self, key, seconds):
        self._check()
        return await super().expire(key, seconds)

    async def ping(self):
        self._check()
        return await super().ping()


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        embedding_dimensions=8,
        default_season="2025-26",
        default_focus_team="First Team",
        knowledge_timeout_seconds=0.5,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis, settings, clock):
    return SessionStore(
        "club_a",
        RedisSessionBackend(fake_redis),
        settings=settings,
        clock=clock,
    )
