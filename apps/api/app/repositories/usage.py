"""Daily usage persistence helpers."""
from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.usage import UserVoiceUsageDaily

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def get_usage(session: AsyncSession, user_id: str, usage_date: date) -> UserVoiceUsageDaily | None:
    """Return the usage row for a (user, day) key."""

    return await session.get(UserVoiceUsageDaily, (user_id, usage_date))


async def increment_usage(
    session: AsyncSession,
    *,
    user_id: str,
    usage_date: date,
    seconds: int,
    limit_seconds: int,
) -> UserVoiceUsageDaily:
    """Atomically add one session of ``seconds`` to the (user, day) counters.

    A single ``INSERT ... ON CONFLICT DO UPDATE`` is issued so concurrent
    increments for the same key are serialised by the database. An existing
    row keeps its captured ``limit_seconds``; a new row takes the one given.
    """

    dialect = session.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Usage upsert is not supported for dialect {dialect!r}")

    table = UserVoiceUsageDaily.__table__
    now = datetime.now(timezone.utc)
    stmt = insert(table).values(
        user_uuid=user_id,
        usage_date=usage_date,
        total_duration=seconds,
        session_count=1,
        limit_seconds=limit_seconds,
        is_limit_reached=seconds >= limit_seconds,
        updated_at=now,
    )
    new_total = table.c.total_duration + stmt.excluded.total_duration
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.user_uuid, table.c.usage_date],
        set_={
            "total_duration": new_total,
            "session_count": table.c.session_count + 1,
            "is_limit_reached": new_total >= table.c.limit_seconds,
            "updated_at": now,
        },
    ).returning(*table.c)

    result = await session.execute(stmt)
    row = result.mappings().one()
    return UserVoiceUsageDaily(
        user_id=row["user_uuid"],
        usage_date=row["usage_date"],
        total_seconds=row["total_duration"],
        session_count=row["session_count"],
        limit_seconds=row["limit_seconds"],
        limit_reached=bool(row["is_limit_reached"]),
        updated_at=row["updated_at"],
    )
