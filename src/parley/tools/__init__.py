"""Capability registry, agent swapping and tool dispatch.

Example:
    from parley.tools import Agent, AgentRegistry, SimpleCapability, ToolResult, ToolSpec

    registry = AgentRegistry()
    registry.register(
        Agent(
            name="wallet",
            capabilities=[
                SimpleCapability(
                    spec=ToolSpec(name="getBalance", description="Wallet balance"),
                    handler=lambda args, context: ToolResult.success({"sol": 1}),
                )
            ],
        )
    )
"""

from .types import (
    AGENT_SWAP_TYPE,
    AgentSwapProps,
    Capability,
    CapabilityHandler,
    SimpleCapability,
    ToolCallContext,
    ToolProps,
    ToolResult,
    ToolSpec,
)

from .registry import (
    Agent,
    AgentRegistry,
    DuplicateAgentError,
    DuplicateToolError,
)

from .agent_swap import AGENT_SWAPPER_NAME, AgentSwapTool

from .dispatch import (
    DispatchOutcome,
    DispatchRecord,
    ToolDispatchEngine,
)

__all__ = [
    # types.py
    "AGENT_SWAP_TYPE",
    "AgentSwapProps",
    "Capability",
    "CapabilityHandler",
    "SimpleCapability",
    "ToolCallContext",
    "ToolProps",
    "ToolResult",
    "ToolSpec",
    # registry.py
    "Agent",
    "AgentRegistry",
    "DuplicateAgentError",
    "DuplicateToolError",
    # agent_swap.py
    "AGENT_SWAPPER_NAME",
    "AgentSwapTool",
    # dispatch.py
    "DispatchOutcome",
    "DispatchRecord",
    "ToolDispatchEngine",
]
