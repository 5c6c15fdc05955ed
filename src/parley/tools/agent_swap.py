"""Built-in capability that switches the active agent mid-conversation."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import UnknownAgentError
from .registry import AgentRegistry
from .types import AgentSwapProps, ToolCallContext, ToolResult, ToolSpec

LOGGER = logging.getLogger(__name__)

AGENT_SWAPPER_NAME = "getAgentSwapper"


class AgentSwapTool:
    """Activate another agent and ask the dispatcher to replay the user's request.

    The remote model calls this when the user asks for something the active agent
    cannot do. The result never renders in the chat; the dispatcher pushes the new
    tool set and re-sends ``original_request`` as if the user had just said it.
    """

    def __init__(self, registry: AgentRegistry) -> None:
        self._registry = registry

    @property
    def name(self) -> str:
        return AGENT_SWAPPER_NAME

    @property
    def spec(self) -> ToolSpec:
        agents = self._registry.describe()
        listing = "; ".join(f"{name}: {desc}" if desc else name for name, desc in agents.items())
        return ToolSpec(
            name=AGENT_SWAPPER_NAME,
            description=(
                "Switch to the agent able to handle the user's request when none of the "
                f"current tools fit. Available agents: {listing}"
            ),
            parameters={
                "type": "object",
                "properties": {
                    "agent_name": {"type": "string", "enum": list(agents)},
                    "original_request": {
                        "type": "string",
                        "description": "The user's request, verbatim, to replay after switching.",
                    },
                },
                "required": ["agent_name", "original_request"],
            },
        )

    async def invoke(self, arguments: Mapping[str, Any], context: ToolCallContext) -> ToolResult:
        agent_name = str(arguments.get("agent_name") or "").strip()
        original_request = str(arguments.get("original_request") or "")
        if not self._registry.has(agent_name):
            error = UnknownAgentError(details={"agent_name": agent_name, "available": self._registry.list_names()})
            LOGGER.warning("Agent swap requested unknown agent %r", agent_name)
            return ToolResult.failure(error.to_dict())

        agent = self._registry.activate(agent_name)
        LOGGER.info("Swapped to agent %s for response %s", agent.name, context.response_id)
        return ToolResult.success(
            {"status": "switched", "agent": agent.name},
            props=AgentSwapProps(original_request=original_request, agent_name=agent.name),
        )
