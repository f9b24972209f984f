"""Operator endpoints guarded by the admin key."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from ..deps import get_manager, require_admin
from ..schemas.sessions import SessionListResponse, SessionSummary
from ..services.sessions import VoiceSessionManager

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/sessions")
async def list_sessions(manager: VoiceSessionManager = Depends(get_manager)) -> dict[str, Any]:
    """Snapshot of every live session across users."""

    sessions = await manager.list_active_sessions()
    response = SessionListResponse(
        sessions=[SessionSummary.from_session(session) for session in sessions],
        total=len(sessions),
    )
    return {"success": True, "data": response.model_dump(mode="json")}


@router.post("/sessions/end")
async def end_all_sessions(manager: VoiceSessionManager = Depends(get_manager)) -> dict[str, Any]:
    result = await manager.end_all_active_sessions()
    logger.warning("Admin ended %d active sessions", result.ended)
    return {"success": True, "data": result.model_dump()}


@router.get("/sessions/debug")
async def debug_sessions(manager: VoiceSessionManager = Depends(get_manager)) -> dict[str, Any]:
    state = await manager.debug_state()
    return {"success": True, "data": state.model_dump(mode="json")}
