"""Shared fixtures: in-memory Redis double, SQLite store and a settable clock."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.db.session import build_engine, build_session_factory
from app.models.base import Base
import app.models  # noqa: F401
from app.services.agents import AgentDirectory, AgentPersona
from app.services.session_store import SessionCache
from app.services.sessions import VoiceSessionManager
from app.services.usage import QuotaStore
from app.services.user_context import UserContextStore


class InMemoryRedis:
    """Subset of ``redis.asyncio.Redis`` used by ``SessionCache``."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def srem(self, key: str, *members: str) -> int:
        bucket = self.sets.get(key, set())
        before = len(bucket)
        bucket.difference_update(members)
        return before - len(bucket)

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return key in self.values or key in self.sets

    async def aclose(self) -> None:
        self.closed = True

    def expire_now(self, key: str) -> None:
        """Drop a key as if its TTL had elapsed."""

        self.values.pop(key, None)
        self.sets.pop(key, None)
        self.ttls.pop(key, None)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


TEST_PERSONAS = [
    AgentPersona(
        id="agent_1",
        agent_id="el-agent-main",
        name="Main Agent",
        description="Primary customer support agent",
        language="Polish",
        specialization="customer_support",
    ),
    AgentPersona(
        id="agent_2",
        agent_id="el-agent-diet",
        name="Diet Agent",
        description="Dietary consultations",
        language="Polish",
        specialization="diet_consultation",
    ),
    AgentPersona(
        id="agent_9",
        agent_id="el-agent-retired",
        name="Retired Agent",
        description="No longer offered",
        language="Polish",
        specialization="sales",
        is_active=False,
    ),
]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        elevenlabs_api_key="test-key",
        elevenlabs_base_url="https://provider.test/v1",
        voice_time_limit=600,
        usage_timezone="Europe/Warsaw",
        admin_api_key="admin-secret",
        profile_api_base_url="",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def cache(redis: InMemoryRedis) -> SessionCache:
    return SessionCache(redis)  # type: ignore[arg-type]


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    engine = build_engine(Settings(_env_file=None, database_url=f"sqlite+aiosqlite:///{tmp_path / 'voice.db'}"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def agents() -> AgentDirectory:
    return AgentDirectory(TEST_PERSONAS)


@pytest.fixture
def quota(cache: SessionCache, session_factory) -> QuotaStore:
    return QuotaStore(
        cache,
        session_factory,
        limit_seconds=600,
        timezone_name="Europe/Warsaw",
        cache_ttl_seconds=60,
    )


@pytest.fixture
def user_contexts(cache: SessionCache) -> UserContextStore:
    return UserContextStore(cache, ttl_seconds=3600)


@pytest.fixture
def manager(cache, quota, session_factory, agents, user_contexts, clock) -> VoiceSessionManager:
    return VoiceSessionManager(
        cache=cache,
        quota=quota,
        session_factory=session_factory,
        agents=agents,
        user_contexts=user_contexts,
        session_ttl_seconds=3600,
        idle_max_seconds=1800,
        clock=clock,
    )
