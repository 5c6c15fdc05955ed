"""Tests for the realtime session state machine and outbound primitives."""

from __future__ import annotations

import asyncio
import json

import pytest

from parley.errors import SessionNegotiationError
from parley.realtime.session import RealtimeSession, SessionState
from parley.services.settings import Settings
from parley.tools.agent_swap import AGENT_SWAPPER_NAME
from parley.tools.registry import Agent, AgentRegistry
from tests.helpers import RecordingCapability, TransportQueue, build_state, open_session


@pytest.mark.asyncio
async def test_start_negotiates_and_waits_for_session_created() -> None:
    state, factory = build_state()
    session = state.session

    assert session.state is SessionState.NOT_STARTED
    await session.start()

    assert session.state is SessionState.NEGOTIATING
    assert session.transport is factory.last
    assert not session.send_text_message("too early")
    assert factory.last.sent == []

    session.mark_open()

    assert session.state is SessionState.OPEN


@pytest.mark.asyncio
async def test_failed_negotiation_returns_to_idle() -> None:
    async def _fail():
        raise OSError("network down")

    registry = AgentRegistry([Agent(name="default")])
    session = RealtimeSession(Settings(), registry, transport_factory=_fail)

    with pytest.raises(SessionNegotiationError):
        await session.start()

    assert session.state is SessionState.IDLE
    assert session.transport is None


@pytest.mark.asyncio
async def test_stop_closes_transport_and_bumps_generation() -> None:
    state, factory = build_state()
    transport = await open_session(state, factory)
    generation = state.session.generation

    await state.session.stop()

    assert transport.closed
    assert state.session.state is SessionState.IDLE
    assert state.session.generation > generation
    assert not state.session.send_text_message("after stop")
    assert transport.sent == []


@pytest.mark.asyncio
async def test_restart_replaces_transport() -> None:
    state, factory = build_state()
    first = await open_session(state, factory)

    await state.session.start()

    assert first.closed
    assert state.session.transport is factory.last
    assert factory.last is not first
    assert state.session.state is SessionState.NEGOTIATING


@pytest.mark.asyncio
@pytest.mark.parametrize("starting", [SessionState.NOT_STARTED, SessionState.NEGOTIATING, SessionState.OPEN])
async def test_expiry_forces_idle_from_any_state(starting: SessionState) -> None:
    state, factory = build_state()
    if starting is not SessionState.NOT_STARTED:
        await state.session.start()
    if starting is SessionState.OPEN:
        state.session.mark_open()
    assert state.session.state is starting
    transport = factory.last if factory.created else None
    generation = state.session.generation

    state.session.mark_expired()
    await asyncio.sleep(0)

    assert state.session.state is SessionState.IDLE
    assert state.session.transport is None
    assert state.session.generation == generation + 1
    if transport is not None:
        assert transport.closed
    assert not state.session.send_text_message("too late")


@pytest.mark.asyncio
async def test_send_text_message_emits_item_then_response_create() -> None:
    state, factory = build_state()
    transport = await open_session(state, factory)

    assert state.session.send_text_message("hello there")

    assert transport.sent_types() == ["conversation.item.create", "response.create"]
    item = transport.sent[0]["item"]
    assert item == {
        "type": "message",
        "role": "user",
        "content": [{"type": "input_text", "text": "hello there"}],
    }
    assert all(event["event_id"] for event in transport.sent)


@pytest.mark.asyncio
async def test_function_call_response_serializes_payload() -> None:
    state, factory = build_state()
    transport = await open_session(state, factory)

    assert state.session.send_function_call_response({"balance": 2}, "call-7")

    assert transport.sent_types() == ["conversation.item.create", "response.create"]
    output = transport.function_outputs()[0]
    assert output["call_id"] == "call-7"
    assert json.loads(output["output"]) == {"balance": 2}


@pytest.mark.asyncio
async def test_function_call_response_for_stale_generation_is_dropped() -> None:
    state, factory = build_state()
    transport = await open_session(state, factory)
    stale = state.session.generation - 1

    assert not state.session.send_function_call_response({"x": 1}, "call-1", generation=stale)
    assert transport.sent == []


@pytest.mark.asyncio
async def test_update_session_all_includes_agent_tools_and_swapper() -> None:
    trader = Agent(name="trader", instructions="Trade tokens.", capabilities=[RecordingCapability("buy")])
    wallet = Agent(name="wallet", capabilities=[RecordingCapability("getBalance")])
    settings = Settings(instructions="Be brief.", voice="verse")
    state, factory = build_state(AgentRegistry([trader, wallet]), settings=settings)
    transport = await open_session(state, factory)

    assert state.session.update_session("all")

    payload = transport.sent[0]
    assert payload["type"] == "session.update"
    config = payload["session"]
    assert config["type"] == "realtime"
    assert config["output_modalities"] == ["audio"]
    assert config["audio"]["output"] == {"voice": "verse"}
    assert config["instructions"] == "Be brief.\n\nTrade tokens."
    assert [tool["name"] for tool in config["tools"]] == ["buy", AGENT_SWAPPER_NAME]
    assert config["tools"][0]["type"] == "function"
    assert config["audio"]["input"] == {"transcription": {"model": "whisper-1"}, "turn_detection": {"type": "server_vad"}}
    assert not {"voice", "modalities", "input_audio_transcription", "turn_detection"} & set(config)


@pytest.mark.asyncio
async def test_single_agent_does_not_advertise_swapper() -> None:
    registry = AgentRegistry([Agent(name="solo", capabilities=[RecordingCapability("ping")])])
    state, factory = build_state(registry)
    transport = await open_session(state, factory)

    state.session.update_session("tools")

    config = transport.sent[0]["session"]
    assert [tool["name"] for tool in config["tools"]] == ["ping"]
    assert config["type"] == "realtime"
    assert "audio" not in config


@pytest.mark.asyncio
async def test_text_only_settings_and_voice_scope_use_realtime_shape() -> None:
    settings = Settings(modalities=["text"], voice="ash", input_audio_transcription_model=None, turn_detection=None)
    state, factory = build_state(settings=settings)
    await open_session(state, factory)

    full = state.session.build_session_config("all")
    voice = state.session.build_session_config("voice")

    assert full["output_modalities"] == ["text"]
    assert full["audio"] == {"input": {"turn_detection": None}, "output": {"voice": "ash"}}
    assert voice == {"type": "realtime", "audio": {"output": {"voice": "ash"}}}


@pytest.mark.asyncio
async def test_update_session_is_noop_unless_open() -> None:
    state, factory = build_state()
    await state.session.start()

    assert not state.session.update_session("all")
    assert factory.last.sent == []


@pytest.mark.asyncio
async def test_stop_during_negotiation_discards_late_transport() -> None:
    gate = asyncio.Event()
    queue = TransportQueue()

    async def _slow_factory():
        await gate.wait()
        return await queue()

    registry = AgentRegistry([Agent(name="default")])
    session = RealtimeSession(Settings(), registry, transport_factory=_slow_factory)
    starting = asyncio.create_task(session.start())
    await asyncio.sleep(0)

    await session.stop()
    gate.set()
    await starting

    assert session.state is SessionState.IDLE
    assert session.transport is None
    assert queue.last.closed
