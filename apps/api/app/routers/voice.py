"""Voice conversation endpoints for web and mobile clients."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, status

from ..core.errors import AgentNotFound, ProviderUnavailable, SessionNotFound
from ..deps import (
    get_agents,
    get_manager,
    get_provider,
    get_user_contexts,
    require_user,
)
from ..schemas.sessions import (
    ConversationData,
    ProviderConnectedRequest,
    SessionListResponse,
    SessionSummary,
    StartConversationRequest,
    StartConversationResponse,
)
from ..services.agents import AgentDirectory
from ..services.identity import CallerIdentity
from ..services.provider import VoiceProviderClient
from ..services.sessions import VoiceSessionManager
from ..services.user_context import UserContextStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


@router.get("/agents")
async def list_agents(agents: AgentDirectory = Depends(get_agents)) -> dict[str, Any]:
    """Active agent personas."""

    return _ok([agent.to_dict() for agent in agents.list_active()])


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: str, agents: AgentDirectory = Depends(get_agents)) -> dict[str, Any]:
    agent = agents.get(agent_id)
    if agent is None:
        raise AgentNotFound(f"Agent {agent_id} not found")
    return _ok(agent.to_dict())


@router.post("/conversations/start", status_code=status.HTTP_201_CREATED)
async def start_conversation(
    payload: StartConversationRequest,
    caller: CallerIdentity = Depends(require_user),
    manager: VoiceSessionManager = Depends(get_manager),
    agents: AgentDirectory = Depends(get_agents),
    provider: VoiceProviderClient = Depends(get_provider),
) -> dict[str, Any]:
    """Open a session and mint the provider token the client connects with."""

    session = await manager.create_session(
        user_id=caller.user_id,
        user_name=caller.name,
        caller_token=caller.token,
        conversation_id=payload.conversation_id,
        agent_id=payload.agent_id,
        client_type=payload.client_type,
        metadata=payload.metadata,
    )
    agent = agents.require_active(payload.agent_id)

    try:
        conversation = await provider.start_conversation(agent, user_name=caller.name)
    except ProviderUnavailable:
        logger.warning("Provider unavailable, closing freshly created session %s", session.id)
        try:
            await manager.end_session(session.id)
        except Exception:  # noqa: BLE001 - the provider error is what the caller sees
            logger.exception("Failed to close session %s after provider failure", session.id)
        raise

    response = StartConversationResponse(
        session_id=session.id,
        conversation_data=ConversationData(
            token=conversation.token,
            agent_id=conversation.agent_id,
            connection_type=conversation.connection_type,
            overrides=conversation.overrides,
        ),
        session=SessionSummary.from_session(session),
    )
    return _ok(response.model_dump(mode="json"))


@router.post("/conversations/{session_id}/connected")
async def conversation_connected(
    session_id: str,
    payload: ProviderConnectedRequest,
    caller: CallerIdentity = Depends(require_user),
    manager: VoiceSessionManager = Depends(get_manager),
) -> dict[str, Any]:
    """Client reports the provider conversation id once audio is connected."""

    session = await manager.get_session(session_id, caller.user_id)
    if session is None:
        raise SessionNotFound()
    await manager.attach_provider_id(session_id, payload.provider_conversation_id)
    return _ok({"session_id": session_id})


@router.post("/conversations/{session_id}/end")
async def end_conversation(
    session_id: str,
    caller: CallerIdentity = Depends(require_user),
    manager: VoiceSessionManager = Depends(get_manager),
) -> dict[str, Any]:
    ended = await manager.end_session(session_id, caller.user_id)
    if ended is None:
        raise SessionNotFound("Session not found or already ended")

    usage = await manager.get_user_daily_usage(caller.user_id)
    return _ok(
        {
            "session": SessionSummary.from_session(ended).model_dump(mode="json"),
            "usage": usage.model_dump(mode="json"),
        }
    )


@router.get("/conversations/{session_id}/status")
async def conversation_status(
    session_id: str,
    caller: CallerIdentity = Depends(require_user),
    manager: VoiceSessionManager = Depends(get_manager),
) -> dict[str, Any]:
    session = await manager.get_session(session_id, caller.user_id)
    if session is None:
        raise SessionNotFound()
    return _ok(SessionSummary.from_session(session).model_dump(mode="json"))


@router.get("/sessions/usage")
async def session_usage(
    caller: CallerIdentity = Depends(require_user),
    manager: VoiceSessionManager = Depends(get_manager),
) -> dict[str, Any]:
    usage = await manager.get_user_daily_usage(caller.user_id)
    return _ok(usage.model_dump(mode="json"))


@router.get("/sessions/active")
async def active_sessions(
    caller: CallerIdentity = Depends(require_user),
    manager: VoiceSessionManager = Depends(get_manager),
) -> dict[str, Any]:
    sessions = await manager.get_user_sessions(caller.user_id)
    response = SessionListResponse(
        sessions=[SessionSummary.from_session(session) for session in sessions],
        total=len(sessions),
    )
    return _ok(response.model_dump(mode="json"))


@router.get("/health")
async def voice_health(
    manager: VoiceSessionManager = Depends(get_manager),
    agents: AgentDirectory = Depends(get_agents),
    provider: VoiceProviderClient = Depends(get_provider),
) -> dict[str, Any]:
    """Provider reachability plus live session statistics."""

    active = agents.list_active()
    provider_health = await provider.health_check(active[0] if active else None)
    stats = await manager.service_stats()
    return _ok(
        {
            "status": provider_health["status"],
            "provider": provider_health,
            "sessions": stats.model_dump(),
        }
    )


@router.get("/tools/user-context/{conversation_id}")
async def user_context(
    conversation_id: str,
    contexts: UserContextStore = Depends(get_user_contexts),
) -> dict[str, Any]:
    """Non-sensitive caller context for provider server tools."""

    context = await contexts.get(conversation_id)
    if context is None:
        raise SessionNotFound("No user context for this conversation")
    return _ok(UserContextStore.safe_view(context))
