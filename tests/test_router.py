"""Tests for inbound event routing."""

from __future__ import annotations

import asyncio

import pytest

from parley.realtime.router import EventRouter
from parley.realtime.session import SessionState
from parley.tools.dispatch import ToolDispatchEngine
from parley.tools.registry import Agent, AgentRegistry
from parley.tools.types import ToolResult
from tests.helpers import RecordingCapability, build_state, function_call, response_done


def _router(registry: AgentRegistry | None = None):
    state, factory = build_state(registry)
    router = EventRouter(state, ToolDispatchEngine(state))
    router.bind()
    return state, factory, router


@pytest.mark.asyncio
async def test_session_created_opens_and_pushes_full_configuration() -> None:
    state, factory, _router_ = _router()
    await state.session.start()

    factory.last.push({"type": "session.created", "session": {"id": "s1"}})

    assert state.session.state is SessionState.OPEN
    assert factory.last.sent_types() == ["session.update"]
    assert factory.last.sent[0]["session"]["type"] == "realtime"


@pytest.mark.asyncio
async def test_transcript_events_flow_into_history() -> None:
    state, factory, _ = _router()
    await state.session.start()
    transport = factory.last

    transport.push({"type": "conversation.item.input_audio_transcription.completed", "item_id": "u1", "transcript": "hi"})
    transport.push({"type": "response.audio_transcript.delta", "response_id": "r1", "delta": "Hel"})
    transport.push({"type": "response.audio_transcript.delta", "response_id": "r1", "delta": "lo"})
    assert state.assembler.draft is not None
    transport.push({"type": "response.audio_transcript.done", "response_id": "r1", "transcript": "Hello"})

    assert [message.text for message in state.history] == ["hi", "Hello"]
    assert state.assembler.draft is None


@pytest.mark.asyncio
async def test_malformed_and_unknown_events_are_dropped() -> None:
    state, factory, router = _router()
    await state.session.start()

    factory.last.push("{not json")
    event = router.receive({"type": "input_audio_buffer.speech_started"})

    assert event is not None
    assert state.session.state is SessionState.NEGOTIATING
    assert len(state.history) == 0


@pytest.mark.asyncio
async def test_session_expired_error_forces_idle() -> None:
    state, factory, _ = _router()
    await state.session.start()
    transport = factory.last
    transport.push({"type": "session.created"})

    transport.push({"type": "error", "error": {"type": "session_expired", "message": "expired"}})
    await asyncio.sleep(0)

    assert state.session.state is SessionState.IDLE
    assert transport.closed


@pytest.mark.asyncio
async def test_other_errors_leave_state_unchanged() -> None:
    state, factory, _ = _router()
    await state.session.start()
    factory.last.push({"type": "session.created"})

    factory.last.push({"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}})

    assert state.session.state is SessionState.OPEN


@pytest.mark.asyncio
async def test_router_follows_replacement_transport() -> None:
    state, factory, _ = _router()
    await state.session.start()
    first = factory.last

    await state.session.start()
    second = factory.last
    first.push({"type": "session.created"})

    assert first.listeners == []
    assert state.session.state is SessionState.NEGOTIATING

    second.push({"type": "session.created"})

    assert state.session.state is SessionState.OPEN


@pytest.mark.asyncio
async def test_response_done_schedules_tool_dispatch() -> None:
    tool = RecordingCapability("getBalance", ToolResult.success({"sol": 3}, props={"sol": 3}))
    state, factory, router = _router(AgentRegistry([Agent(name="wallet", capabilities=[tool])]))
    await state.session.start()
    transport = factory.last
    transport.push({"type": "session.created"})
    transport.sent.clear()

    transport.push(response_done(function_call("getBalance")))
    assert router.pending == 1
    await router.drain()

    assert len(tool.calls) == 1
    assert state.history[-1].kind == "tool_result"
    assert transport.sent_types() == ["conversation.item.create", "response.create"]


@pytest.mark.asyncio
async def test_response_done_without_function_calls_schedules_nothing() -> None:
    state, factory, router = _router()
    await state.session.start()

    factory.last.push(response_done({"type": "message", "content": []}))

    assert router.pending == 0


@pytest.mark.asyncio
async def test_unbind_stops_delivery() -> None:
    state, factory, router = _router()
    await state.session.start()

    router.unbind()
    factory.last.push({"type": "session.created"})

    assert state.session.state is SessionState.NEGOTIATING
