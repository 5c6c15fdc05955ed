"""Tool dispatch for completed realtime responses.

When a response finishes with ``function_call`` items, each call is resolved
against the active agent, invoked locally and its outcome applied to the
conversation:

- agent swaps reply to the call, push the new tool set and replay the user's
  original request, then stop processing the response
- successful results are appended to the chat history and sent back
- failures are logged and, if configured, reported back to the remote model
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

from ..chat.message_model import ChatMessage
from ..errors import (
    InvalidToolArgumentsError,
    ToolError,
    ToolFailedError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from .agent_swap import AGENT_SWAPPER_NAME, AgentSwapTool
from .types import AgentSwapProps, Capability, ToolCallContext, ToolResult

if TYPE_CHECKING:  # pragma: no cover
    from ..realtime.events import OutputItem, ResponseDone
    from ..state import ConversationState

__all__ = [
    "DispatchOutcome",
    "DispatchRecord",
    "DispatchListener",
    "ToolDispatchEngine",
]

LOGGER = logging.getLogger(__name__)

WalletProvider = Callable[[], Any]


# -----------------------------------------------------------------------------
# Dispatch Record
# -----------------------------------------------------------------------------


class DispatchOutcome(str, Enum):
    RENDERED = "rendered"
    SWAPPED = "swapped"
    FAILED = "failed"
    UNRESOLVED = "unresolved"
    STALE = "stale"


# Outcomes that abandon the remaining function calls of a response.
_STOPS_BATCH = frozenset({DispatchOutcome.SWAPPED, DispatchOutcome.UNRESOLVED, DispatchOutcome.STALE})


@dataclass(slots=True)
class DispatchRecord:
    """What happened to one ``function_call`` item.

    Attributes:
        tool_name: Name the remote model called.
        call_id: Correlation id of the call.
        response_id: Response that carried the call.
        outcome: How the call was applied to the conversation.
        result: The capability's result, when it produced one.
        error: Structured error for failed or unresolved calls.
        replied: Whether a ``function_call_output`` was sent.
        execution_time_ms: Time spent inside the capability.
    """

    tool_name: str
    call_id: str | None
    response_id: str | None
    outcome: DispatchOutcome
    result: ToolResult | None = None
    error: ToolError | None = None
    replied: bool = False
    execution_time_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tool_name": self.tool_name,
            "call_id": self.call_id,
            "response_id": self.response_id,
            "outcome": self.outcome.value,
            "replied": self.replied,
            "execution_time_ms": self.execution_time_ms,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


# -----------------------------------------------------------------------------
# Dispatch Listener
# -----------------------------------------------------------------------------


class DispatchListener(Protocol):
    """Callback protocol for dispatch events."""

    def on_tool_start(self, tool_name: str, arguments: Mapping[str, Any]) -> None:
        ...

    def on_tool_complete(self, record: DispatchRecord) -> None:
        ...


# -----------------------------------------------------------------------------
# Dispatch Engine
# -----------------------------------------------------------------------------


class ToolDispatchEngine:
    """Executes the tool calls of completed responses against the active agent.

    Example:
        engine = ToolDispatchEngine(state, swapper=AgentSwapTool(registry))
        records = await engine.handle_response_done(event)
    """

    def __init__(
        self,
        state: ConversationState,
        *,
        swapper: AgentSwapTool | None = None,
        wallet_provider: WalletProvider | None = None,
        tool_timeout: float | None = 30.0,
        reply_on_error: bool = False,
        listener: DispatchListener | None = None,
    ) -> None:
        self._state = state
        self._swapper = swapper or AgentSwapTool(state.registry)
        self._wallet_provider = wallet_provider
        self._tool_timeout = tool_timeout if tool_timeout and tool_timeout > 0 else None
        self._reply_on_error = reply_on_error
        self._listener = listener

    def set_listener(self, listener: DispatchListener | None) -> None:
        self._listener = listener

    @property
    def swapper(self) -> AgentSwapTool:
        return self._swapper

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle_response_done(self, event: ResponseDone) -> list[DispatchRecord]:
        """Process the response's function calls in order.

        Processing stops after an agent swap, at a call no capability answers, or
        once the session has changed under a running capability.
        """

        generation = self._state.session.generation
        records: list[DispatchRecord] = []
        for item in event.function_calls:
            record = await self._dispatch(item, event.response_id, generation)
            records.append(record)
            self._notify_complete(record)
            if record.outcome in _STOPS_BATCH:
                break
        return records

    async def _dispatch(self, item: OutputItem, response_id: str | None, generation: int) -> DispatchRecord:
        tool_name = item.name or ""
        capability = self._resolve(tool_name)
        if capability is None:
            agent = self._state.registry.active_agent
            LOGGER.warning(
                "No capability %r on agent %s; abandoning call %s and the rest of the response",
                tool_name,
                agent.name if agent else None,
                item.call_id,
            )
            error = ToolNotFoundError(tool_name=tool_name)
            replied = self._reply_error(error, item.call_id, generation)
            return DispatchRecord(
                tool_name=tool_name,
                call_id=item.call_id,
                response_id=response_id,
                outcome=DispatchOutcome.UNRESOLVED,
                error=error,
                replied=replied,
            )

        start = time.perf_counter()
        try:
            arguments = self._decode_arguments(item.arguments)
        except InvalidToolArgumentsError as error:
            result = ToolResult.failure(error.to_dict())
            return self._apply_failure(tool_name, item, response_id, generation, result, error, start)

        arguments["current_wallet"] = self._current_wallet()
        agent = self._state.registry.active_agent
        context = ToolCallContext(
            response_id=response_id,
            call_id=item.call_id,
            current_wallet=arguments["current_wallet"],
            agent_name=agent.name if agent else None,
        )
        self._notify_start(tool_name, arguments)
        result, error = await self._invoke(capability, arguments, context)

        if self._state.session.generation != generation:
            LOGGER.info("Discarding result of %s; session changed while it ran", tool_name)
            return DispatchRecord(
                tool_name=tool_name,
                call_id=item.call_id,
                response_id=response_id,
                outcome=DispatchOutcome.STALE,
                result=result,
                error=error,
                execution_time_ms=_elapsed_ms(start),
            )

        if not result.ok:
            return self._apply_failure(tool_name, item, response_id, generation, result, error, start)
        if isinstance(result.props, AgentSwapProps):
            return self._apply_swap(tool_name, item, response_id, generation, result, result.props, start)
        return self._apply_success(tool_name, item, response_id, generation, result, start)

    def _resolve(self, tool_name: str) -> Capability | None:
        if tool_name == AGENT_SWAPPER_NAME:
            return self._swapper
        return self._state.registry.resolve(tool_name)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        capability: Capability,
        arguments: Mapping[str, Any],
        context: ToolCallContext,
    ) -> tuple[ToolResult, ToolError | None]:
        try:
            result = await asyncio.wait_for(capability.invoke(arguments, context), timeout=self._tool_timeout)
        except asyncio.TimeoutError:
            error = ToolTimeoutError(details={"tool_name": capability.name, "timeout": self._tool_timeout})
            LOGGER.warning("Tool %s timed out after %ss", capability.name, self._tool_timeout)
            return ToolResult.failure(error.to_dict()), error
        except ToolError as error:
            LOGGER.warning("Tool %s failed: %s", capability.name, error)
            return ToolResult.failure(error.to_dict()), error
        except Exception as exc:
            LOGGER.exception("Tool %s failed unexpectedly", capability.name)
            error = ToolFailedError(message=str(exc) or type(exc).__name__, details={"tool_name": capability.name})
            return ToolResult.failure(error.to_dict()), error

        if not isinstance(result, ToolResult):
            error = ToolFailedError(
                message=f"Tool returned {type(result).__name__} instead of a ToolResult",
                details={"tool_name": capability.name},
            )
            LOGGER.error("Tool %s returned an invalid result", capability.name)
            return ToolResult.failure(error.to_dict()), error
        return result, None

    def _decode_arguments(self, raw: str | None) -> dict[str, Any]:
        if raw is None or not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidToolArgumentsError(details={"reason": str(exc)}) from exc
        if not isinstance(decoded, dict):
            raise InvalidToolArgumentsError(details={"received": type(decoded).__name__})
        return decoded

    def _current_wallet(self) -> Any:
        if self._wallet_provider is None:
            return None
        return self._wallet_provider()

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _apply_swap(
        self,
        tool_name: str,
        item: OutputItem,
        response_id: str | None,
        generation: int,
        result: ToolResult,
        props: AgentSwapProps,
        start: float,
    ) -> DispatchRecord:
        session = self._state.session
        replied = session.send_function_call_response(result.response, item.call_id, generation=generation)
        self._state.assembler.clear()
        session.update_session("tools")
        session.send_text_message(props.original_request)
        LOGGER.info("Agent swap to %s; replayed original request", props.agent_name)
        return DispatchRecord(
            tool_name=tool_name,
            call_id=item.call_id,
            response_id=response_id,
            outcome=DispatchOutcome.SWAPPED,
            result=result,
            replied=replied,
            execution_time_ms=_elapsed_ms(start),
            metadata={"agent": props.agent_name},
        )

    def _apply_success(
        self,
        tool_name: str,
        item: OutputItem,
        response_id: str | None,
        generation: int,
        result: ToolResult,
        start: float,
    ) -> DispatchRecord:
        message = ChatMessage.from_tool(
            tool_name,
            result.renderable_props(),
            response_id=response_id,
            call_id=item.call_id,
        )
        self._state.history.append(message)
        replied = self._state.session.send_function_call_response(
            result.response, item.call_id, generation=generation
        )
        self._state.assembler.clear()
        return DispatchRecord(
            tool_name=tool_name,
            call_id=item.call_id,
            response_id=response_id,
            outcome=DispatchOutcome.RENDERED,
            result=result,
            replied=replied,
            execution_time_ms=_elapsed_ms(start),
        )

    def _apply_failure(
        self,
        tool_name: str,
        item: OutputItem,
        response_id: str | None,
        generation: int,
        result: ToolResult,
        error: ToolError | None,
        start: float,
    ) -> DispatchRecord:
        if error is None:
            error = ToolFailedError(details={"tool_name": tool_name, "response": result.response})
        LOGGER.warning("Tool %s failed for call %s: %s", tool_name, item.call_id, error)
        replied = False
        if self._reply_on_error:
            payload = result.response if result.response is not None else error.to_dict()
            replied = self._state.session.send_function_call_response(payload, item.call_id, generation=generation)
        self._state.assembler.clear()
        return DispatchRecord(
            tool_name=tool_name,
            call_id=item.call_id,
            response_id=response_id,
            outcome=DispatchOutcome.FAILED,
            result=result,
            error=error,
            replied=replied,
            execution_time_ms=_elapsed_ms(start),
        )

    def _reply_error(self, error: ToolError, call_id: str | None, generation: int) -> bool:
        if not self._reply_on_error:
            return False
        return self._state.session.send_function_call_response(error.to_dict(), call_id, generation=generation)

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    def _notify_start(self, tool_name: str, arguments: Mapping[str, Any]) -> None:
        if self._listener is None:
            return
        try:
            self._listener.on_tool_start(tool_name, arguments)
        except Exception:
            LOGGER.debug("Listener on_tool_start failed", exc_info=True)

    def _notify_complete(self, record: DispatchRecord) -> None:
        if self._listener is None:
            return
        try:
            self._listener.on_tool_complete(record)
        except Exception:
            LOGGER.debug("Listener on_tool_complete failed", exc_info=True)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
