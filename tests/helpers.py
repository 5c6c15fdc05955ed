"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Mapping

from parley.chat.message_model import ChatHistory
from parley.chat.transcript import TranscriptAssembler
from parley.realtime.event_log import SessionEventLogger
from parley.realtime.session import RealtimeSession
from parley.services.settings import Settings
from parley.state import ConversationState
from parley.tools.agent_swap import AgentSwapTool
from parley.tools.registry import Agent, AgentRegistry
from parley.tools.types import ToolCallContext, ToolResult, ToolSpec


class FakeTransport:
    """In-memory transport recording outbound events.

    Example:
        transport = FakeTransport()
        transport.push({"type": "session.created"})
        assert transport.sent_types() == ["session.update"]
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.listeners: list[Callable[[Any], None]] = []
        self.closed = False

    def subscribe(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        self.listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return _unsubscribe

    def send(self, event: Mapping[str, Any]) -> None:
        self.sent.append(dict(event))

    async def close(self) -> None:
        self.closed = True

    def push(self, payload: Mapping[str, Any] | str) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        for listener in list(self.listeners):
            listener(raw)

    def sent_types(self) -> list[str]:
        return [event["type"] for event in self.sent]

    def function_outputs(self) -> list[dict[str, Any]]:
        return [
            event["item"]
            for event in self.sent
            if event["type"] == "conversation.item.create" and event["item"]["type"] == "function_call_output"
        ]

    def user_texts(self) -> list[str]:
        return [
            event["item"]["content"][0]["text"]
            for event in self.sent
            if event["type"] == "conversation.item.create" and event["item"]["type"] == "message"
        ]


class TransportQueue:
    """Transport factory handing out a fresh :class:`FakeTransport` per call."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []

    async def __call__(self) -> FakeTransport:
        transport = FakeTransport()
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class RecordingCapability:
    """Capability that records invocations and returns a canned result."""

    def __init__(
        self,
        name: str,
        result: ToolResult | None = None,
        *,
        error: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self._spec = ToolSpec(name=name, description=f"{name} tool", parameters={"type": "object"})
        self.result = result or ToolResult.success({"ok": True}, props={"tool": name})
        self.error = error
        self.gate = gate
        self.calls: list[tuple[dict[str, Any], ToolCallContext]] = []

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> ToolSpec:
        return self._spec

    async def invoke(self, arguments: Mapping[str, Any], context: ToolCallContext) -> ToolResult:
        self.calls.append((dict(arguments), context))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


def build_state(
    registry: AgentRegistry | None = None,
    *,
    settings: Settings | None = None,
    factory: TransportQueue | None = None,
    event_logger: SessionEventLogger | None = None,
) -> tuple[ConversationState, TransportQueue]:
    """Assemble a session, assembler and registry around a fake transport factory."""

    registry = registry if registry is not None else AgentRegistry([Agent(name="default")])
    factory = factory or TransportQueue()
    session = RealtimeSession(
        settings or Settings(),
        registry,
        transport_factory=factory,
        swapper=AgentSwapTool(registry),
        event_logger=event_logger or SessionEventLogger(enabled=False),
    )
    state = ConversationState(session=session, assembler=TranscriptAssembler(ChatHistory()), registry=registry)
    return state, factory


async def open_session(state: ConversationState, factory: TransportQueue) -> FakeTransport:
    """Start the session and mark it open without going through the router."""

    await state.session.start()
    state.session.mark_open()
    transport = factory.last
    transport.sent.clear()
    return transport


def function_call(name: str, arguments: Any = None, *, call_id: str = "call-1") -> dict[str, Any]:
    if arguments is None:
        arguments = {}
    return {
        "type": "function_call",
        "name": name,
        "call_id": call_id,
        "arguments": arguments if isinstance(arguments, str) else json.dumps(arguments),
    }


def response_done(*items: Mapping[str, Any], response_id: str = "resp-1") -> dict[str, Any]:
    return {
        "type": "response.done",
        "event_id": "evt-done",
        "response": {"id": response_id, "status": "completed", "output": list(items)},
    }
