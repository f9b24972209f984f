"""Periodic force-end of idle voice sessions."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from .sessions import VoiceSessionManager

logger = logging.getLogger(__name__)


class IdleSessionReaper:
    """Run ``reap_idle_sessions`` on a fixed interval in a background task."""

    def __init__(self, manager: VoiceSessionManager, interval_seconds: float) -> None:
        self._manager = manager
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run(), name="idle-session-reaper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def tick(self) -> list[str]:
        reaped = await self._manager.reap_idle_sessions()
        if reaped:
            logger.info("Reaped %d idle sessions", len(reaped))
        return reaped

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - keep the loop alive; next tick retries
                logger.exception("Idle session reaping failed")
