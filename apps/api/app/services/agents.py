"""Static directory of voice agent personas."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass

from ..core.config import Settings
from ..core.errors import AgentInactive, AgentNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AgentPersona:
    """A named configuration of the upstream voice agent."""

    id: str
    agent_id: str
    name: str
    description: str
    language: str
    specialization: str
    is_active: bool = True

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def default_personas(settings: Settings) -> list[AgentPersona]:
    """Persona list with upstream ids taken from settings."""

    return [
        AgentPersona(
            id="agent_1",
            agent_id=settings.agent_1_id,
            name="Main Agent",
            description="Primary customer support agent",
            language="Polish",
            specialization="customer_support",
        ),
        AgentPersona(
            id="agent_2",
            agent_id=settings.agent_2_id,
            name="Miły Agent",
            description="Specialized in dietary consultations",
            language="Polish",
            specialization="diet_consultation",
        ),
        AgentPersona(
            id="agent_3",
            agent_id=settings.agent_3_id,
            name="Inteligentny Agent",
            description="Sales and product recommendations",
            language="Polish",
            specialization="sales",
        ),
        AgentPersona(
            id="agent_4",
            agent_id=settings.agent_4_id,
            name="Wesoły Agent",
            description="Technical support and troubleshooting",
            language="Polish",
            specialization="technical_support",
        ),
        AgentPersona(
            id="agent_5",
            agent_id=settings.agent_5_id,
            name="Slawkowy Agent",
            description="Testowy to do rozmowy",
            language="Polish",
            specialization="technical_support",
        ),
    ]


class AgentDirectory:
    """Read-only registry built once at start-up; list order is preserved."""

    def __init__(self, personas: Iterable[AgentPersona]) -> None:
        self._agents: dict[str, AgentPersona] = {}
        for persona in personas:
            self._agents[persona.id] = persona
        logger.info("Initialized %d voice agents", len(self._agents))

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgentDirectory":
        return cls(default_personas(settings))

    def get(self, agent_id: str) -> AgentPersona | None:
        return self._agents.get(agent_id)

    def list_active(self) -> list[AgentPersona]:
        return [agent for agent in self._agents.values() if agent.is_active]

    def get_by_specialization(self, specialization: str) -> AgentPersona | None:
        """First active persona with the specialization, in configuration order."""

        for agent in self._agents.values():
            if agent.specialization == specialization and agent.is_active:
                return agent
        return None

    def require_active(self, agent_id: str) -> AgentPersona:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(f"Agent {agent_id} not found")
        if not agent.is_active:
            raise AgentInactive(f"Agent {agent_id} is not active")
        return agent
