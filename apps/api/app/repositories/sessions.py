"""Voice session persistence helpers."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.voice_session import VoiceSessionRecord


async def get_by_id(session: AsyncSession, session_id: str) -> VoiceSessionRecord | None:
    """Return a session row by identifier."""

    return await session.get(VoiceSessionRecord, session_id)


async def insert_session(
    session: AsyncSession,
    *,
    session_id: str,
    user_id: str,
    user_name: str,
    conversation_id: str,
    agent_id: str,
    status: str,
    client_type: str,
    start_time: datetime,
    metadata: dict[str, Any] | None = None,
) -> VoiceSessionRecord:
    """Persist the start of a session."""

    record = VoiceSessionRecord(
        id=session_id,
        user_id=user_id,
        user_name=user_name,
        conversation_id=conversation_id,
        agent_id=agent_id,
        provider_conversation_id=None,
        status=status,
        client_type=client_type,
        start_time=start_time,
        end_time=None,
        duration_seconds=0,
        metadata_json=metadata or None,
    )
    session.add(record)
    await session.flush()
    return record


async def attach_provider_id(
    session: AsyncSession,
    *,
    session_id: str,
    provider_conversation_id: str,
    status: str,
) -> int:
    """Record the upstream conversation id; returns the number of rows touched."""

    stmt = (
        update(VoiceSessionRecord)
        .where(
            VoiceSessionRecord.id == session_id,
            VoiceSessionRecord.end_time.is_(None),
        )
        .values(provider_conversation_id=provider_conversation_id, status=status)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0


async def mark_ended(
    session: AsyncSession,
    *,
    session_id: str,
    end_time: datetime,
    duration_seconds: int,
    status: str,
) -> int:
    """Close a session row with its final duration."""

    stmt = (
        update(VoiceSessionRecord)
        .where(VoiceSessionRecord.id == session_id)
        .values(end_time=end_time, duration_seconds=duration_seconds, status=status)
    )
    result = await session.execute(stmt)
    return result.rowcount or 0


async def list_open(session: AsyncSession, *, limit: int = 200) -> list[VoiceSessionRecord]:
    """Return sessions that have not been closed yet, oldest first."""

    stmt: Select[tuple[VoiceSessionRecord]] = (
        select(VoiceSessionRecord)
        .where(VoiceSessionRecord.end_time.is_(None))
        .order_by(VoiceSessionRecord.start_time.asc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_open_for_user(
    session: AsyncSession,
    user_id: str,
    *,
    limit: int = 50,
) -> list[VoiceSessionRecord]:
    """Return a user's sessions that have not been closed yet."""

    stmt: Select[tuple[VoiceSessionRecord]] = (
        select(VoiceSessionRecord)
        .where(
            VoiceSessionRecord.user_id == user_id,
            VoiceSessionRecord.end_time.is_(None),
        )
        .order_by(VoiceSessionRecord.start_time.asc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
