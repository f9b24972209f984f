"""Error taxonomy for the voice session service.

Every failure surfaced to callers is a ``VoiceServiceError`` subclass carrying a
stable machine-readable ``code`` and the HTTP status it maps to. The exception
handlers in ``app.main`` turn these into ``ErrorResponse`` bodies; nothing else
about the failure (store URLs, tracebacks) leaves the process.
"""
from __future__ import annotations

from fastapi import status
from pydantic import BaseModel, Field


class VoiceServiceError(Exception):
    """Base class for service errors with a stable code."""

    code = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AgentNotFound(VoiceServiceError):
    code = "agent_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Agent not found"


class AgentInactive(VoiceServiceError):
    code = "agent_inactive"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Agent is not active"


class QuotaExceeded(VoiceServiceError):
    code = "quota_exceeded"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Daily voice usage limit reached"


class ProviderUnavailable(VoiceServiceError):
    code = "provider_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Voice provider is temporarily unavailable"


class SessionNotFound(VoiceServiceError):
    code = "session_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Session not found"


class AccessDenied(VoiceServiceError):
    code = "access_denied"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied to this session"


class Unauthenticated(VoiceServiceError):
    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class PersistenceDegraded(VoiceServiceError):
    """Durable write failed while the cached state stayed authoritative."""

    code = "persistence_degraded"
    default_message = "Durable store write failed"


class AdminDisabled(VoiceServiceError):
    code = "admin_disabled"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Admin functionality not configured"


class ErrorResponse(BaseModel):
    """Standard error payload returned for every failed request."""

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")


def error_response(exc: VoiceServiceError) -> ErrorResponse:
    return ErrorResponse(error=exc.code, message=exc.message, code=exc.status_code)


__all__ = [
    "AccessDenied",
    "AdminDisabled",
    "AgentInactive",
    "AgentNotFound",
    "ErrorResponse",
    "PersistenceDegraded",
    "ProviderUnavailable",
    "QuotaExceeded",
    "SessionNotFound",
    "Unauthenticated",
    "VoiceServiceError",
    "error_response",
]
