"""Schemas for voice sessions, daily usage and the conversation endpoints."""
from __future__ import annotations

from datetime import date, datetime
import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SessionStatus(str, enum.Enum):
    STARTING = "starting"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.ENDED, SessionStatus.ERROR})

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.STARTING: frozenset({SessionStatus.ACTIVE, SessionStatus.ENDING, SessionStatus.ENDED, SessionStatus.ERROR}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.ENDING, SessionStatus.ENDED, SessionStatus.ERROR}),
    SessionStatus.ENDING: frozenset({SessionStatus.ENDED, SessionStatus.ERROR}),
    SessionStatus.ENDED: frozenset(),
    SessionStatus.ERROR: frozenset(),
}


class ClientType(str, enum.Enum):
    WEB = "web"
    MOBILE = "mobile"
    FLUTTER = "flutter"
    OTHER = "other"


class VoiceSession(BaseModel):
    """A live or finished voice conversation session."""

    id: str
    user_id: str
    user_name: str
    conversation_id: str
    agent_id: str
    provider_conversation_id: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    duration: int = Field(default=0, ge=0)
    status: SessionStatus = SessionStatus.STARTING
    client_type: ClientType = ClientType.WEB
    metadata: dict[str, Any] = Field(default_factory=dict)

    def can_transition(self, target: SessionStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]


class UsageRecord(BaseModel):
    """Per-user, per-day usage accumulator."""

    user_id: str
    usage_date: date
    total_duration: int = Field(default=0, ge=0)
    session_count: int = Field(default=0, ge=0)
    limit: int = Field(ge=0)
    is_limit_reached: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining_time(self) -> int:
        return max(0, self.limit - self.total_duration)


class EndAllResult(BaseModel):
    ended: int
    session_ids: list[str]


class ServiceStats(BaseModel):
    active_sessions: int
    total_users: int
    avg_session_duration: int


class DebugState(BaseModel):
    active_ids: list[str]
    active_count: int
    sample: VoiceSession | None = None


class StartConversationRequest(BaseModel):
    agent_id: str = Field(..., min_length=1, alias="agentId")
    conversation_id: str = Field(..., min_length=1, alias="conversationId")
    client_type: ClientType = Field(default=ClientType.WEB, alias="clientType")
    metadata: dict[str, Any] | None = Field(default=None, description="Free-form client metadata")

    model_config = ConfigDict(populate_by_name=True)


class ConversationData(BaseModel):
    token: str
    agent_id: str
    connection_type: str = "webrtc"
    overrides: dict[str, Any]


class SessionSummary(BaseModel):
    id: str
    agent_id: str
    status: SessionStatus
    duration: int
    start_time: datetime
    end_time: datetime | None = None
    client_type: ClientType

    @classmethod
    def from_session(cls, session: VoiceSession) -> "SessionSummary":
        return cls(
            id=session.id,
            agent_id=session.agent_id,
            status=session.status,
            duration=session.duration,
            start_time=session.start_time,
            end_time=session.end_time,
            client_type=session.client_type,
        )


class StartConversationResponse(BaseModel):
    session_id: str
    conversation_data: ConversationData
    session: SessionSummary


class SessionListResponse(BaseModel):
    sessions: list[SessionSummary]
    total: int


class ProviderConnectedRequest(BaseModel):
    provider_conversation_id: str = Field(..., min_length=1, alias="providerConversationId")

    model_config = ConfigDict(populate_by_name=True)
