"""FastAPI dependencies resolving the services built in the app lifespan."""
from __future__ import annotations

import secrets

from fastapi import Depends, Header, Request

from .core.config import settings
from .core.errors import AccessDenied, AdminDisabled, Unauthenticated
from .services.agents import AgentDirectory
from .services.identity import CallerIdentity, IdentityClient
from .services.provider import VoiceProviderClient
from .services.sessions import VoiceSessionManager
from .services.user_context import UserContextStore


def get_manager(request: Request) -> VoiceSessionManager:
    return request.app.state.session_manager


def get_agents(request: Request) -> AgentDirectory:
    return request.app.state.agents


def get_provider(request: Request) -> VoiceProviderClient:
    return request.app.state.provider


def get_identity(request: Request) -> IdentityClient:
    return request.app.state.identity


def get_user_contexts(request: Request) -> UserContextStore:
    return request.app.state.user_contexts


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


async def require_user(
    x_api_token: str | None = Header(default=None, alias="X-API-TOKEN"),
    authorization: str | None = Header(default=None),
    identity: IdentityClient = Depends(get_identity),
) -> CallerIdentity:
    """Authenticated caller from ``X-API-TOKEN`` or a Bearer token."""

    token = x_api_token or _bearer(authorization)
    if not token:
        raise Unauthenticated("Provide X-API-TOKEN header or Authorization Bearer token")
    return await identity.resolve(token)


async def require_admin(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
    authorization: str | None = Header(default=None),
) -> None:
    if not settings.admin_api_key:
        raise AdminDisabled()
    provided = x_admin_key or _bearer(authorization)
    if not provided:
        raise Unauthenticated("Admin key required")
    if not secrets.compare_digest(provided, settings.admin_api_key):
        raise AccessDenied("Invalid admin key")
