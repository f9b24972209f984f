"""Create the voice session tables if they do not exist yet."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import settings
from app.core.logging import configure_logging
from app.db.session import build_engine
from app.models.base import Base
import app.models  # noqa: F401  registers the tables on Base.metadata

logger = logging.getLogger(__name__)


async def create_schema(engine: AsyncEngine) -> None:
	"""Create the database schema if it does not already exist."""

	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)


async def main() -> None:
	configure_logging(settings.log_level, timezone_name=settings.usage_timezone)
	engine = build_engine(settings)
	await create_schema(engine)
	await engine.dispose()
	logger.info("Database schema ensured: %s", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
	asyncio.run(main())
