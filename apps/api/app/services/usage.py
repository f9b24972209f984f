"""Daily usage accounting keyed by user and reference-timezone calendar day."""
from __future__ import annotations

import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.usage import UserVoiceUsageDaily
from ..repositories import usage as usage_repo
from ..schemas.sessions import UsageRecord
from .session_store import SessionCache, usage_key

logger = logging.getLogger(__name__)


class QuotaStore:
    """Read-through cache over the durable ``user_voice_usage_daily`` table.

    Increments always go to the database as one atomic upsert; the cache only
    ever holds copies of what the database returned (or a lazily created zero
    record for users without a row yet).
    """

    def __init__(
        self,
        cache: SessionCache,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        limit_seconds: int,
        timezone_name: str,
        cache_ttl_seconds: int = 60,
    ) -> None:
        self._cache = cache
        self._session_factory = session_factory
        self._limit_seconds = limit_seconds
        self._tz = ZoneInfo(timezone_name)
        self._cache_ttl = cache_ttl_seconds

    @property
    def limit_seconds(self) -> int:
        return self._limit_seconds

    def usage_date(self, now: datetime) -> date:
        """Calendar day of ``now`` in the reference timezone."""

        return now.astimezone(self._tz).date()

    async def get_daily_usage(self, user_id: str, now: datetime) -> UsageRecord:
        """Return today's usage: cache, then database, then a fresh zero record."""

        day = self.usage_date(now)
        key = usage_key(user_id, day.isoformat())

        cached = await self._cache.get_json(key)
        if cached is not None:
            return UsageRecord.model_validate(cached)

        async with self._session_factory() as session:
            row = await usage_repo.get_usage(session, user_id, day)

        if row is not None:
            record = _to_record(row)
        else:
            record = UsageRecord(
                user_id=user_id,
                usage_date=day,
                total_duration=0,
                session_count=0,
                limit=self._limit_seconds,
                is_limit_reached=self._limit_seconds <= 0,
            )
        await self._cache.set_json(key, record.model_dump(mode="json"), ttl_seconds=self._cache_ttl)
        return record

    async def increment(self, user_id: str, seconds: int, now: datetime) -> UsageRecord:
        """Add one ended session to today's counters.

        Database errors propagate: losing an increment would under-count usage.
        Once the upsert has committed the call succeeds; the cached record is
        only invalidated so the next read goes to the database.
        """

        day = self.usage_date(now)
        async with self._session_factory() as session:
            async with session.begin():
                row = await usage_repo.increment_usage(
                    session,
                    user_id=user_id,
                    usage_date=day,
                    seconds=max(0, seconds),
                    limit_seconds=self._limit_seconds,
                )
        record = _to_record(row)

        try:
            await self._cache.delete(usage_key(user_id, day.isoformat()))
        except RedisError as exc:
            logger.warning("Failed to invalidate cached usage for %s on %s: %s", user_id, day.isoformat(), exc)
        logger.info(
            "Usage for %s on %s: %ss over %s sessions (limit %ss)",
            user_id,
            day.isoformat(),
            record.total_duration,
            record.session_count,
            record.limit,
        )
        return record


def _to_record(row: UserVoiceUsageDaily) -> UsageRecord:
    return UsageRecord(
        user_id=row.user_id,
        usage_date=row.usage_date,
        total_duration=row.total_seconds,
        session_count=row.session_count,
        limit=row.limit_seconds,
        is_limit_reached=row.limit_reached,
    )
