"""Agent registry: named capability sets and the currently active one.

The remote session only sees the tools of the active agent. Swapping the active
agent changes which names :meth:`AgentRegistry.resolve` can bind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from .types import Capability, ToolSpec

__all__ = [
    "Agent",
    "AgentRegistry",
    "DuplicateAgentError",
    "DuplicateToolError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateAgentError(Exception):
    """Raised when attempting to register an agent with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Agent '{name}' is already registered")


class DuplicateToolError(Exception):
    """Raised when an agent declares the same tool name twice."""

    def __init__(self, agent: str, name: str) -> None:
        self.agent = agent
        self.name = name
        super().__init__(f"Agent '{agent}' declares tool '{name}' more than once")


# -----------------------------------------------------------------------------
# Agent
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class Agent:
    """A named capability set with its own instructions.

    Attributes:
        name: Agent name used by the agent swapper.
        description: Short description shown to the model when choosing agents.
        instructions: Session instructions pushed while the agent is active.
        capabilities: Tools exposed while the agent is active.
    """

    name: str
    description: str = ""
    instructions: str = ""
    capabilities: list[Capability] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for capability in self.capabilities:
            if capability.name in seen:
                raise DuplicateToolError(self.name, capability.name)
            seen.add(capability.name)

    def find(self, tool_name: str) -> Capability | None:
        for capability in self.capabilities:
            if capability.name == tool_name:
                return capability
        return None

    def tool_specs(self) -> list[ToolSpec]:
        return [capability.spec for capability in self.capabilities]


ActivationListener = Callable[[Agent | None, Agent], None]


# -----------------------------------------------------------------------------
# Agent Registry
# -----------------------------------------------------------------------------


class AgentRegistry:
    """Registry of agents with exactly one active agent once any is registered.

    Example:
        registry = AgentRegistry()
        registry.register(Agent(name="trader", capabilities=[buy_tool]))
        registry.register(Agent(name="wallet", capabilities=[balance_tool]))
        registry.activate("wallet")

        capability = registry.resolve("getBalance")
    """

    def __init__(self, agents: Iterable[Agent] = ()) -> None:
        self._agents: dict[str, Agent] = {}
        self._active: str | None = None
        self._listeners: list[ActivationListener] = []
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent, *, allow_override: bool = False) -> Agent:
        """Register an agent; the first registered agent becomes active.

        Raises:
            DuplicateAgentError: If the name is taken and ``allow_override`` is False.
        """
        if agent.name in self._agents and not allow_override:
            raise DuplicateAgentError(agent.name)
        self._agents[agent.name] = agent
        LOGGER.debug("Registered agent %s with %d tool(s)", agent.name, len(agent.capabilities))
        if self._active is None:
            self._active = agent.name
        return agent

    def unregister(self, name: str) -> bool:
        if name not in self._agents:
            return False
        del self._agents[name]
        if self._active == name:
            self._active = next(iter(self._agents), None)
        LOGGER.debug("Unregistered agent %s", name)
        return True

    def get(self, name: str) -> Agent | None:
        return self._agents.get(name)

    def has(self, name: str) -> bool:
        return name in self._agents

    def activate(self, name: str) -> Agent:
        """Make ``name`` the active agent.

        Raises:
            KeyError: If no agent with that name is registered.
        """
        agent = self._agents.get(name)
        if agent is None:
            raise KeyError(name)
        previous = self.active_agent
        self._active = name
        if previous is None or previous.name != name:
            LOGGER.info(
                "Active agent changed: %s -> %s",
                previous.name if previous else None,
                name,
            )
            for listener in list(self._listeners):
                listener(previous, agent)
        return agent

    @property
    def active_agent(self) -> Agent | None:
        if self._active is None:
            return None
        return self._agents.get(self._active)

    def resolve(self, tool_name: str) -> Capability | None:
        """Return the active agent's capability called ``tool_name``, if any."""
        agent = self.active_agent
        if agent is None:
            return None
        return agent.find(tool_name)

    def active_capabilities(self) -> list[Capability]:
        agent = self.active_agent
        return list(agent.capabilities) if agent else []

    def list_agents(self) -> list[Agent]:
        return list(self._agents.values())

    def list_names(self) -> list[str]:
        return list(self._agents)

    def add_listener(self, listener: ActivationListener) -> None:
        self._listeners.append(listener)

    def tool_definitions(self, extra: Iterable[ToolSpec] = ()) -> list[dict[str, Any]]:
        """Realtime tool entries for the active agent followed by ``extra`` specs."""
        specs = [capability.spec for capability in self.active_capabilities()]
        specs.extend(extra)
        return [spec.to_realtime_tool() for spec in specs]

    def describe(self) -> Mapping[str, str]:
        return {agent.name: agent.description for agent in self._agents.values()}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: str) -> bool:
        return name in self._agents
