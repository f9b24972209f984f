"""Provider-facing user context, kept in Redis with a fixed expiry."""
from __future__ import annotations

import logging
from typing import Any

from .session_store import SessionCache, user_context_key

logger = logging.getLogger(__name__)

SAFE_CONTEXT_FIELDS = ("user_name", "user_uuid", "conversation_id")


class UserContextStore:
    """Conversation id -> dynamic variables used by provider server tools.

    Entries carry the caller token, so they stay server-side; ``safe_view``
    is the only shape handed back over HTTP.
    """

    def __init__(self, cache: SessionCache, *, ttl_seconds: int = 3600) -> None:
        self._cache = cache
        self._ttl = ttl_seconds

    async def save(self, conversation_id: str, variables: dict[str, Any]) -> None:
        await self._cache.set_json(user_context_key(conversation_id), variables, ttl_seconds=self._ttl)
        logger.debug("Stored user context for conversation %s", conversation_id)

    async def get(self, conversation_id: str) -> dict[str, Any] | None:
        context = await self._cache.get_json(user_context_key(conversation_id))
        if context is None:
            logger.info("No user context found for conversation %s", conversation_id)
        return context

    async def purge(self, conversation_id: str) -> None:
        await self._cache.delete(user_context_key(conversation_id))

    @staticmethod
    def safe_view(context: dict[str, Any]) -> dict[str, Any]:
        return {field: context.get(field) for field in SAFE_CONTEXT_FIELDS}
