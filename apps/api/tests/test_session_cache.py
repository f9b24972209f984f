"""Tests for the Redis-backed cache facade and user context store."""
from __future__ import annotations

import pytest

from app.services.session_store import (
    SessionCache,
    end_claim_key,
    session_key,
    usage_key,
    user_context_key,
    user_sessions_key,
)
from app.services.user_context import UserContextStore


def test_key_layout() -> None:
    assert session_key("voice_1_abc") == "session:voice_1_abc"
    assert user_sessions_key("u1") == "user_sessions:u1"
    assert usage_key("u1", "2025-03-10") == "usage:u1:2025-03-10"
    assert user_context_key("conv-1") == "voice_context:conv-1"
    assert end_claim_key("voice_1_abc") == "session_end:voice_1_abc"


@pytest.mark.asyncio
async def test_json_round_trip_and_ttl(cache: SessionCache, redis) -> None:
    await cache.set_json("k", {"name": "Łukasz"}, ttl_seconds=60)

    assert await cache.get_json("k") == {"name": "Łukasz"}
    assert redis.ttls["k"] == 60


@pytest.mark.asyncio
async def test_malformed_payload_reads_as_missing(cache: SessionCache, redis) -> None:
    redis.values["broken"] = "{not json"

    assert await cache.get_json("broken") is None


@pytest.mark.asyncio
async def test_claim_is_won_once(cache: SessionCache) -> None:
    assert await cache.claim("session_end:s1", ttl_seconds=60) is True
    assert await cache.claim("session_end:s1", ttl_seconds=60) is False

    await cache.delete("session_end:s1")
    assert await cache.claim("session_end:s1", ttl_seconds=60) is True


@pytest.mark.asyncio
async def test_sets_are_sorted_and_expire(cache: SessionCache, redis) -> None:
    await cache.sadd("idx", "b", ttl_seconds=30)
    await cache.sadd("idx", "a", ttl_seconds=30)
    await cache.srem("idx", "missing")

    assert await cache.smembers("idx") == ["a", "b"]
    assert redis.ttls["idx"] == 30


@pytest.mark.asyncio
async def test_user_context_store_hides_token(cache: SessionCache, redis) -> None:
    store = UserContextStore(cache, ttl_seconds=120)
    await store.save(
        "conv-1",
        {"user_name": "Anna", "user_uuid": "u1", "user_token": "u1|secret", "conversation_id": "conv-1"},
    )

    context = await store.get("conv-1")
    assert context["user_token"] == "u1|secret"
    assert UserContextStore.safe_view(context) == {
        "user_name": "Anna",
        "user_uuid": "u1",
        "conversation_id": "conv-1",
    }
    assert redis.ttls[user_context_key("conv-1")] == 120

    await store.purge("conv-1")
    assert await store.get("conv-1") is None
