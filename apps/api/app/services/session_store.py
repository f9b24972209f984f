"""Shared Redis cache for live sessions, index sets and usage records.

Every replica talks to the same Redis, so anything that has to be visible across
processes (live sessions, the active index, cached usage) lives here rather
than in process memory. Values are JSON strings; sets hold session ids.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

SESSION_KEY_TEMPLATE = "session:{session_id}"
USER_SESSIONS_KEY_TEMPLATE = "user_sessions:{user_id}"
ACTIVE_SESSIONS_KEY = "sessions:active"
USAGE_KEY_TEMPLATE = "usage:{user_id}:{usage_date}"
USER_CONTEXT_KEY_TEMPLATE = "voice_context:{conversation_id}"
END_CLAIM_KEY_TEMPLATE = "session_end:{session_id}"


def session_key(session_id: str) -> str:
    return SESSION_KEY_TEMPLATE.format(session_id=session_id)


def user_sessions_key(user_id: str) -> str:
    return USER_SESSIONS_KEY_TEMPLATE.format(user_id=user_id)


def usage_key(user_id: str, usage_date: str) -> str:
    return USAGE_KEY_TEMPLATE.format(user_id=user_id, usage_date=usage_date)


def user_context_key(conversation_id: str) -> str:
    return USER_CONTEXT_KEY_TEMPLATE.format(conversation_id=conversation_id)


def end_claim_key(session_id: str) -> str:
    return END_CLAIM_KEY_TEMPLATE.format(session_id=session_id)


class SessionCache:
    """Thin JSON/set facade over an async Redis client."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def get_json(self, key: str) -> Any | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Ignoring malformed cache payload under %s", key)
            return None

    async def set_json(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        data = json.dumps(value, ensure_ascii=False)
        if ttl_seconds is not None and ttl_seconds > 0:
            await self._redis.set(key, data, ex=ttl_seconds)
        else:
            await self._redis.set(key, data)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def sadd(self, key: str, member: str, *, ttl_seconds: int | None = None) -> None:
        await self._redis.sadd(key, member)
        if ttl_seconds is not None and ttl_seconds > 0:
            await self.expire(key, ttl_seconds)

    async def smembers(self, key: str) -> list[str]:
        members = await self._redis.smembers(key)
        return sorted(members or [])

    async def srem(self, key: str, member: str) -> None:
        await self._redis.srem(key, member)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._redis.expire(key, ttl_seconds)

    async def claim(self, key: str, *, ttl_seconds: int) -> bool:
        """Set ``key`` only if absent; True when this caller won the claim."""

        return bool(await self._redis.set(key, "1", ex=ttl_seconds, nx=True))

    async def close(self) -> None:
        await self._redis.aclose()


def create_cache(redis_url: str) -> SessionCache:
    """Build a cache bound to a fresh connection pool."""

    return SessionCache(Redis.from_url(redis_url, decode_responses=True))
