"""Daily voice usage model."""
from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import Boolean, Date, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserVoiceUsageDaily(Base):
    """Per-user, per-day usage counters keyed in the reference timezone."""

    __tablename__ = "user_voice_usage_daily"

    user_id: Mapped[str] = mapped_column("user_uuid", String, primary_key=True)
    usage_date: Mapped[date] = mapped_column(Date, primary_key=True)
    total_seconds: Mapped[int] = mapped_column("total_duration", Integer, default=0, nullable=False)
    session_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    limit_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    limit_reached: Mapped[bool] = mapped_column("is_limit_reached", Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )
