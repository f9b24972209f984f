"""Voice session lifecycle and usage accounting."""
from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import AccessDenied, PersistenceDegraded, QuotaExceeded
from ..models.voice_session import VoiceSessionRecord
from ..repositories import sessions as sessions_repo
from ..schemas.sessions import (
    ClientType,
    DebugState,
    EndAllResult,
    ServiceStats,
    SessionStatus,
    UsageRecord,
    VoiceSession,
)
from .agents import AgentDirectory
from .provider import prepare_dynamic_variables
from .session_store import (
    ACTIVE_SESSIONS_KEY,
    SessionCache,
    end_claim_key,
    session_key,
    user_sessions_key,
)
from .usage import QuotaStore
from .user_context import UserContextStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_ID_ALPHABET = string.digits + string.ascii_lowercase
ACTIVE_SNAPSHOT_LIMIT = 200
USER_SNAPSHOT_LIMIT = 50
END_CLAIM_TTL_SECONDS = 7 * 24 * 3600

_PERSISTENCE_ERRORS = (SQLAlchemyError, OSError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_tz(value: datetime) -> datetime:
    """Ensure the provided datetime is timezone-aware in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_session_id(now: datetime) -> str:
    """Time-ordered id: ``voice_<epoch ms>_<9 base36 chars>``."""

    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"voice_{int(now.timestamp() * 1000)}_{suffix}"


def _calculate_duration(start: datetime, end: datetime) -> int:
    """Whole seconds between start and end, clamped at zero for clock skew."""

    return max(0, int((end - start).total_seconds()))


def _from_record(record: VoiceSessionRecord) -> VoiceSession:
    return VoiceSession(
        id=record.id,
        user_id=record.user_id,
        user_name=record.user_name,
        conversation_id=record.conversation_id,
        agent_id=record.agent_id,
        provider_conversation_id=record.provider_conversation_id,
        start_time=_ensure_tz(record.start_time),
        end_time=_ensure_tz(record.end_time) if record.end_time else None,
        duration=record.duration_seconds or 0,
        status=SessionStatus(record.status),
        client_type=ClientType(record.client_type),
        metadata=record.metadata_json or {},
    )


class VoiceSessionManager:
    """Create, enrich, end and reap voice sessions.

    The shared cache is authoritative for live sessions, the durable store for
    history. Usage increments go through ``QuotaStore`` as a single atomic
    upsert and are never absorbed on failure; durable session-row writes are
    best effort and logged as ``PersistenceDegraded`` when they fail.
    """

    def __init__(
        self,
        *,
        cache: SessionCache,
        quota: QuotaStore,
        session_factory: async_sessionmaker[AsyncSession],
        agents: AgentDirectory,
        user_contexts: UserContextStore | None = None,
        session_ttl_seconds: int = 3600,
        idle_max_seconds: int = 1800,
        clock: Clock = utcnow,
    ) -> None:
        self._cache = cache
        self._quota = quota
        self._session_factory = session_factory
        self._agents = agents
        self._user_contexts = user_contexts
        self._ttl = session_ttl_seconds
        self._idle_max = idle_max_seconds
        self._clock = clock

    async def create_session(
        self,
        *,
        user_id: str,
        user_name: str,
        caller_token: str,
        conversation_id: str,
        agent_id: str,
        client_type: ClientType = ClientType.WEB,
        metadata: dict[str, Any] | None = None,
    ) -> VoiceSession:
        """Open a session after the agent and quota gates pass."""

        self._agents.require_active(agent_id)

        now = self._clock()
        usage = await self._quota.get_daily_usage(user_id, now)
        if usage.is_limit_reached:
            raise QuotaExceeded()

        session = VoiceSession(
            id=generate_session_id(now),
            user_id=user_id,
            user_name=user_name,
            conversation_id=conversation_id,
            agent_id=agent_id,
            start_time=now,
            status=SessionStatus.STARTING,
            client_type=client_type,
            metadata=metadata or {},
        )

        await self._store_live(session)
        if self._user_contexts is not None:
            variables = prepare_dynamic_variables(
                user_id=user_id,
                user_name=user_name,
                user_token=caller_token,
                conversation_id=conversation_id,
            )
            await self._user_contexts.save(conversation_id, variables)
        logger.info("Created voice session %s for user %s (%s)", session.id, user_id, client_type.value)

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    await sessions_repo.insert_session(
                        db,
                        session_id=session.id,
                        user_id=session.user_id,
                        user_name=session.user_name,
                        conversation_id=session.conversation_id,
                        agent_id=session.agent_id,
                        status=session.status.value,
                        client_type=session.client_type.value,
                        start_time=session.start_time,
                        metadata=session.metadata,
                    )
        except _PERSISTENCE_ERRORS as exc:
            self._log_degraded("create", session, exc)

        return session

    async def attach_provider_id(self, session_id: str, provider_conversation_id: str) -> None:
        """Record the provider's conversation id and mark the session active.

        Best effort: an unknown or already-ended session is left untouched and
        no error is raised. The durable row is updated even on a cache miss.
        """

        try:
            session = await self._load_cached(session_id)
            if session is not None and not session.status.is_terminal:
                update: dict[str, Any] = {"provider_conversation_id": provider_conversation_id}
                if session.can_transition(SessionStatus.ACTIVE):
                    update["status"] = SessionStatus.ACTIVE
                await self._store_live(session.model_copy(update=update))
        except RedisError as exc:
            logger.warning("Cache update failed while attaching provider id to %s: %s", session_id, exc)

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    await sessions_repo.attach_provider_id(
                        db,
                        session_id=session_id,
                        provider_conversation_id=provider_conversation_id,
                        status=SessionStatus.ACTIVE.value,
                    )
        except _PERSISTENCE_ERRORS as exc:
            logger.warning(
                "%s: attach provider id for session %s: %s",
                PersistenceDegraded.code,
                session_id,
                exc,
            )

    async def end_session(self, session_id: str, user_id: str | None = None) -> VoiceSession | None:
        """End a session once, account its duration and evict it from the cache.

        Returns ``None`` when the id is unknown, already ended, or being ended
        by another caller. With ``user_id`` given, a foreign session raises
        ``AccessDenied`` before anything is mutated.
        """

        session = await self._resolve(session_id)
        if session is None:
            return None
        if user_id is not None and session.user_id != user_id:
            raise AccessDenied()
        if session.status.is_terminal:
            return None

        claim = end_claim_key(session_id)
        if not await self._cache.claim(claim, ttl_seconds=END_CLAIM_TTL_SECONDS):
            logger.info("Session %s is already being ended elsewhere", session_id)
            return None

        now = self._clock()
        duration = _calculate_duration(session.start_time, now)
        ended = session.model_copy(
            update={"end_time": now, "duration": duration, "status": SessionStatus.ENDED}
        )

        try:
            await self._quota.increment(ended.user_id, duration, now)
        except Exception:
            # Nothing was counted, so the end may be retried.
            try:
                await self._cache.delete(claim)
            except RedisError as exc:
                logger.warning("Failed to release end claim for session %s: %s", session_id, exc)
            raise

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    await sessions_repo.mark_ended(
                        db,
                        session_id=ended.id,
                        end_time=now,
                        duration_seconds=duration,
                        status=SessionStatus.ENDED.value,
                    )
        except _PERSISTENCE_ERRORS as exc:
            self._log_degraded("end", ended, exc)

        try:
            await self._evict(ended)
        except RedisError as exc:
            logger.warning("Failed to evict ended session %s from cache: %s", session_id, exc)

        logger.info("Ended voice session %s - Duration: %ss", session_id, duration)
        return ended

    async def get_session(self, session_id: str, user_id: str | None = None) -> VoiceSession | None:
        session = await self._resolve(session_id)
        if session is not None and user_id is not None and session.user_id != user_id:
            raise AccessDenied()
        return session

    async def get_user_daily_usage(self, user_id: str) -> UsageRecord:
        return await self._quota.get_daily_usage(user_id, self._clock())

    async def get_user_sessions(self, user_id: str) -> list[VoiceSession]:
        """Live sessions of one user; durable open rows if the index is cold."""

        index_key = user_sessions_key(user_id)
        sessions = await self._load_indexed(index_key)
        if sessions:
            return sessions

        try:
            async with self._session_factory() as db:
                rows = await sessions_repo.list_open_for_user(db, user_id, limit=USER_SNAPSHOT_LIMIT)
        except _PERSISTENCE_ERRORS as exc:
            logger.warning("Failed to load sessions of user %s from the database: %s", user_id, exc)
            return []
        return [_from_record(row) for row in rows]

    async def list_active_sessions(self) -> list[VoiceSession]:
        """Snapshot of live sessions; may be stale by the time it is used."""

        sessions = await self._load_indexed(ACTIVE_SESSIONS_KEY)
        if sessions:
            return sessions

        try:
            async with self._session_factory() as db:
                rows = await sessions_repo.list_open(db, limit=ACTIVE_SNAPSHOT_LIMIT)
        except _PERSISTENCE_ERRORS as exc:
            logger.warning("Failed to load active sessions from the database: %s", exc)
            return []
        return [_from_record(row) for row in rows]

    async def end_all_active_sessions(self) -> EndAllResult:
        ended_ids: list[str] = []
        for session in await self.list_active_sessions():
            ended = await self.end_session(session.id)
            if ended is not None:
                ended_ids.append(ended.id)
        return EndAllResult(ended=len(ended_ids), session_ids=ended_ids)

    async def reap_idle_sessions(self) -> list[str]:
        """Force-end sessions older than the idle ceiling through ``end_session``."""

        now = self._clock()
        reaped: list[str] = []
        for session in await self.list_active_sessions():
            if session.status.is_terminal:
                continue
            age = (now - session.start_time).total_seconds()
            if age <= self._idle_max:
                continue
            logger.info("Reaping idle session %s (age %ds)", session.id, int(age))
            if await self.end_session(session.id) is not None:
                reaped.append(session.id)
        return reaped

    async def service_stats(self) -> ServiceStats:
        sessions = await self.list_active_sessions()
        if not sessions:
            return ServiceStats(active_sessions=0, total_users=0, avg_session_duration=0)
        now = self._clock()
        durations = [_calculate_duration(s.start_time, now) for s in sessions]
        return ServiceStats(
            active_sessions=len(sessions),
            total_users=len({s.user_id for s in sessions}),
            avg_session_duration=round(sum(durations) / len(durations)),
        )

    async def debug_state(self) -> DebugState:
        ids = await self._cache.smembers(ACTIVE_SESSIONS_KEY)
        sample: VoiceSession | None = None
        for session_id in ids:
            sample = await self._load_cached(session_id)
            if sample is not None:
                break
        return DebugState(active_ids=ids, active_count=len(ids), sample=sample)

    async def _store_live(self, session: VoiceSession) -> None:
        await self._cache.set_json(session_key(session.id), session.model_dump(mode="json"), ttl_seconds=self._ttl)
        await self._cache.sadd(ACTIVE_SESSIONS_KEY, session.id, ttl_seconds=self._ttl)
        await self._cache.sadd(user_sessions_key(session.user_id), session.id, ttl_seconds=self._ttl)

    async def _evict(self, session: VoiceSession) -> None:
        await self._cache.delete(session_key(session.id))
        await self._cache.srem(ACTIVE_SESSIONS_KEY, session.id)
        await self._cache.srem(user_sessions_key(session.user_id), session.id)
        if self._user_contexts is not None:
            await self._user_contexts.purge(session.conversation_id)

    async def _load_cached(self, session_id: str) -> VoiceSession | None:
        payload = await self._cache.get_json(session_key(session_id))
        if payload is None:
            return None
        return VoiceSession.model_validate(payload)

    async def _load_indexed(self, index_key: str) -> list[VoiceSession]:
        sessions: list[VoiceSession] = []
        for session_id in await self._cache.smembers(index_key):
            session = await self._load_cached(session_id)
            if session is None:
                # Entry expired before its index membership did.
                await self._cache.srem(index_key, session_id)
                continue
            sessions.append(session)
        return sessions

    async def _resolve(self, session_id: str) -> VoiceSession | None:
        """Cache first, then the durable row."""

        session = await self._load_cached(session_id)
        if session is not None:
            return session
        try:
            async with self._session_factory() as db:
                record = await sessions_repo.get_by_id(db, session_id)
        except _PERSISTENCE_ERRORS as exc:
            logger.warning("Failed to load session %s from the database: %s", session_id, exc)
            return None
        return _from_record(record) if record is not None else None

    @staticmethod
    def _log_degraded(operation: str, session: VoiceSession, exc: BaseException) -> None:
        logger.warning(
            "%s: %s of session %s (user=%s agent=%s status=%s start=%s) not persisted: %s",
            PersistenceDegraded.code,
            operation,
            session.id,
            session.user_id,
            session.agent_id,
            session.status.value,
            session.start_time.isoformat(),
            exc,
        )
