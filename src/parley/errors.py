"""Exception types shared across the orchestrator.

Tool failures follow a structured, JSON-serialisable shape so they can be
sent back to the remote session as a ``function_call_output`` payload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

__all__ = [
    "ParleyError",
    "EventDecodeError",
    "SessionError",
    "SessionNegotiationError",
    "ErrorCode",
    "ToolError",
    "ToolNotFoundError",
    "InvalidToolArgumentsError",
    "ToolFailedError",
    "ToolTimeoutError",
    "UnknownAgentError",
]


class ParleyError(Exception):
    """Base class for orchestrator errors."""


class EventDecodeError(ParleyError):
    """Raised when an inbound payload cannot be decoded into a protocol event."""

    def __init__(self, message: str, *, payload: Any = None) -> None:
        self.payload = payload
        super().__init__(message)


class SessionError(ParleyError):
    """Raised when the realtime session cannot fulfil a lifecycle request."""


class SessionNegotiationError(SessionError):
    """Raised when the transport could not be opened."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


# -----------------------------------------------------------------------------
# Tool errors
# -----------------------------------------------------------------------------


class ErrorCode:
    """Constants for error codes used in tool call replies."""

    TOOL_NOT_FOUND = "tool_not_found"
    INVALID_ARGUMENTS = "invalid_arguments"
    TOOL_FAILED = "tool_failed"
    TIMEOUT = "timeout"
    UNKNOWN_AGENT = "unknown_agent"


@dataclass
class ToolError(ParleyError):
    """Base exception class for all tool errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for the remote model.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON tool replies."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class ToolNotFoundError(ToolError):
    """The requested tool is not part of the active capability set."""

    error_code: str = field(default=ErrorCode.TOOL_NOT_FOUND)
    message: str = field(default="Tool is not available for the active agent")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Call getAgentSwapper to switch to an agent that provides this tool")

    tool_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_name:
            result["tool_name"] = self.tool_name
        return result


@dataclass
class InvalidToolArgumentsError(ToolError):
    """The tool call arguments were not a JSON object."""

    error_code: str = field(default=ErrorCode.INVALID_ARGUMENTS)
    message: str = field(default="Tool arguments must be a JSON object")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Retry the call with arguments matching the declared schema")


@dataclass
class ToolFailedError(ToolError):
    """The tool raised while running or reported a failure."""

    error_code: str = field(default=ErrorCode.TOOL_FAILED)
    message: str = field(default="Tool execution failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""


@dataclass
class ToolTimeoutError(ToolError):
    """The tool did not finish within the configured timeout."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Tool execution timed out")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Tell the user the request is taking too long")

    severity: ClassVar[str] = "warning"


@dataclass
class UnknownAgentError(ToolError):
    """An agent swap targeted an agent that is not registered."""

    error_code: str = field(default=ErrorCode.UNKNOWN_AGENT)
    message: str = field(default="Requested agent is not registered")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Pick one of the agent names listed in the tool schema")
