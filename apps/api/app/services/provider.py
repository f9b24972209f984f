"""ElevenLabs conversational AI client.

Only the control-plane part of the provider is used here: minting a short-lived
WebRTC conversation token and preparing the personalization overrides the
client applies when it opens the audio connection itself.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.errors import ProviderUnavailable
from .agents import AgentPersona

logger = logging.getLogger(__name__)

REQUIRED_VARIABLES = ("user_id", "user_uuid", "user_name", "user_token", "conversation_id")


@dataclass(slots=True)
class ConversationStart:
    token: str
    agent_id: str
    overrides: dict[str, Any]
    connection_type: str = "webrtc"


def build_personalization(user_name: str) -> dict[str, Any]:
    """Return the greeting/prompt/language override bundle for a user."""

    name = user_name.strip() or "User"
    return {
        "agent": {
            "prompt": {
                "prompt": (
                    "You are a helpful Polish voice assistant. "
                    f"The user's name is {name}. Personalize your responses and greet them by name."
                ),
            },
            "firstMessage": f"Cześć {name}! Miło Cię poznać. W czym mogę Ci dzisiaj pomóc?",
            "language": "pl",
        }
    }


def prepare_dynamic_variables(
    *,
    user_id: str,
    user_name: str,
    user_token: str,
    conversation_id: str,
    user_uuid: str | None = None,
) -> dict[str, str]:
    """Variables the provider's server tools may need for this conversation."""

    variables = {
        "user_id": user_id,
        "user_uuid": user_uuid or user_id,
        "user_name": user_name,
        "user_token": user_token,
        "bearer_token": f"Bearer {user_token}",
        "conversation_id": conversation_id,
    }
    missing = [name for name in REQUIRED_VARIABLES if not variables[name]]
    if missing:
        raise ValueError(f"Missing required dynamic variables: {', '.join(missing)}")
    return variables


class VoiceProviderClient:
    """Issue conversation tokens from the ElevenLabs API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_token(self, agent: AgentPersona) -> str:
        """Mint a conversation token for ``agent``.

        Bounded by the configured timeout; non-2xx responses, transport errors
        and timeouts all surface as ``ProviderUnavailable``. No retries.
        """

        if not self._api_key:
            raise ProviderUnavailable("ELEVENLABS_API_KEY is missing")

        logger.info("Requesting conversation token for agent %s (%s)", agent.name, agent.agent_id)
        try:
            response = await asyncio.wait_for(
                self._client.get(
                    f"{self._base_url}/convai/conversation/token",
                    params={"agent_id": agent.agent_id},
                    headers={"xi-api-key": self._api_key, "Content-Type": "application/json"},
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Conversation token request timed out after %.1fs", self._timeout)
            raise ProviderUnavailable("Voice provider timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Conversation token request failed: %s", exc)
            raise ProviderUnavailable() from exc

        if response.is_error:
            logger.error("ElevenLabs API error: %s - %s", response.status_code, response.text[:200])
            raise ProviderUnavailable(f"Voice provider returned {response.status_code}")

        try:
            token = response.json().get("token")
        except ValueError as exc:
            raise ProviderUnavailable("Voice provider returned malformed JSON") from exc
        if not token:
            raise ProviderUnavailable("Voice provider returned no token")
        return token

    async def start_conversation(self, agent: AgentPersona, *, user_name: str) -> ConversationStart:
        """Token plus personalization overrides for the client."""

        token = await self.get_token(agent)
        return ConversationStart(
            token=token,
            agent_id=agent.agent_id,
            overrides=build_personalization(user_name),
        )

    async def health_check(self, agent: AgentPersona | None) -> dict[str, Any]:
        """Probe the provider by minting a token for ``agent``."""

        if agent is None:
            return {"status": "unhealthy", "error": "No agents configured"}
        started = time.perf_counter()
        try:
            await self.get_token(agent)
        except ProviderUnavailable as exc:
            return {"status": "unhealthy", "error": exc.message}
        latency_ms = int((time.perf_counter() - started) * 1000)
        return {"status": "healthy", "latency_ms": latency_ms}
