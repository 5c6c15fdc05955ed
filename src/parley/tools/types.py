"""Capability types shared by the agent registry and the dispatch engine.

This module defines the invocation contract for locally implemented tools:
the declared :class:`ToolSpec`, the :class:`ToolCallContext` handed to each
invocation, and the :class:`ToolResult` a capability returns.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Literal, Mapping, Protocol, Union, runtime_checkable

__all__ = [
    "AGENT_SWAP_TYPE",
    "ToolSpec",
    "ToolCallContext",
    "AgentSwapProps",
    "ToolProps",
    "ToolResult",
    "Capability",
    "CapabilityHandler",
    "SimpleCapability",
]

AGENT_SWAP_TYPE = "agent_swap"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Specification for a capability's interface.

    Attributes:
        name: Unique identifier the remote session calls the tool by.
        description: Human-readable description of what the tool does.
        parameters: JSON Schema for the tool's parameters.
    """

    name: str
    description: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_realtime_tool(self) -> dict[str, Any]:
        """Convert to the flat realtime ``session.tools`` entry."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else {
                "type": "object",
                "properties": {},
                "required": [],
            },
        }


# -----------------------------------------------------------------------------
# Call context and results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallContext:
    """Ambient data for one invocation.

    Attributes:
        response_id: Identifier of the response that requested the call.
        call_id: Identifier used to correlate the reply with the call.
        current_wallet: Wallet identity active when the call was dispatched.
        agent_name: Agent whose capability set resolved the call.
    """

    response_id: str | None
    call_id: str | None
    current_wallet: Any = None
    agent_name: str | None = None


@dataclass(slots=True, frozen=True)
class AgentSwapProps:
    """Result props telling the dispatcher to replay ``original_request`` silently."""

    original_request: str
    agent_name: str | None = None
    type: Literal["agent_swap"] = AGENT_SWAP_TYPE


ToolProps = Union[AgentSwapProps, Mapping[str, Any]]


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of a capability invocation.

    ``response`` is what gets sent back to the remote session. ``props`` is either
    renderable data for the chat history or :class:`AgentSwapProps`.
    """

    status: Literal["success", "failure"]
    response: Any = None
    props: ToolProps | None = None

    @classmethod
    def success(cls, response: Any = None, props: ToolProps | None = None) -> "ToolResult":
        return cls(status="success", response=response, props=props)

    @classmethod
    def failure(cls, response: Any = None, props: ToolProps | None = None) -> "ToolResult":
        return cls(status="failure", response=response, props=props)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def is_agent_swap(self) -> bool:
        return isinstance(self.props, AgentSwapProps)

    def renderable_props(self) -> Mapping[str, Any]:
        if self.props is None or isinstance(self.props, AgentSwapProps):
            return {}
        return self.props


# -----------------------------------------------------------------------------
# Capability protocol
# -----------------------------------------------------------------------------


@runtime_checkable
class Capability(Protocol):
    """Protocol for tool implementations invoked by the dispatch engine."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def invoke(self, arguments: Mapping[str, Any], context: ToolCallContext) -> ToolResult:
        """Run the tool.

        Args:
            arguments: Decoded call arguments enriched with ``current_wallet``.
            context: Ambient call data.
        """
        ...


CapabilityHandler = Callable[
    [Mapping[str, Any], ToolCallContext],
    Union[ToolResult, Coroutine[Any, Any, ToolResult]],
]


@dataclass
class SimpleCapability:
    """Capability wrapping a plain sync or async callable.

    Example:
        async def get_balance(args, context):
            return ToolResult.success({"sol": 1.5}, props={"sol": 1.5})

        capability = SimpleCapability(
            spec=ToolSpec(name="getBalance", description="Return the wallet balance"),
            handler=get_balance,
        )
    """

    spec: ToolSpec
    handler: CapabilityHandler

    @property
    def name(self) -> str:
        return self.spec.name

    async def invoke(self, arguments: Mapping[str, Any], context: ToolCallContext) -> ToolResult:
        result = self.handler(arguments, context)
        if inspect.isawaitable(result):
            result = await result
        return result
