"""Async engine and session factory construction."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import Settings


def build_engine(config: Settings) -> AsyncEngine:
    """Engine for ``config.database_url``; TLS is enforced for managed Postgres."""

    connect_args: dict[str, object] = {}
    if config.database_ssl_required and config.database_url.startswith("postgresql"):
        connect_args["ssl"] = "require"
    return create_async_engine(
        config.database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
