"""Tests for the OpenAI realtime transport adapter."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosed

from parley.errors import SessionError, SessionNegotiationError
from parley.realtime.transport import OpenAIRealtimeTransport, Transport, open_realtime_transport
from parley.services.settings import Settings


class _FakeConnection:
    def __init__(self) -> None:
        self.inbound: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def recv_bytes(self) -> bytes:
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, event: dict[str, Any]) -> None:
        self.sent.append(event)

    async def close(self) -> None:
        self.closed = True


class _FakeManager:
    def __init__(self, client: "_FakeClient") -> None:
        self._client = client

    async def enter(self) -> _FakeConnection:
        self._client.attempts += 1
        if self._client.failures:
            raise self._client.failures.pop(0)
        return self._client.connection


class _FakeRealtime:
    def __init__(self, client: "_FakeClient") -> None:
        self._client = client

    def connect(self, *, model: str) -> _FakeManager:
        self._client.models.append(model)
        return _FakeManager(self._client)


class _FakeClient:
    def __init__(self, failures: list[BaseException] | None = None) -> None:
        self.connection = _FakeConnection()
        self.failures = list(failures or [])
        self.attempts = 0
        self.models: list[str] = []
        self.realtime = _FakeRealtime(self)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_transport_delivers_frames_in_order_and_writes_events() -> None:
    connection = _FakeConnection()
    transport = OpenAIRealtimeTransport(connection)
    received: list[bytes] = []
    transport.subscribe(received.append)
    transport.start()

    await connection.inbound.put(b'{"type": "a"}')
    await connection.inbound.put(b'{"type": "b"}')
    transport.send({"type": "response.create"})
    await _settle()

    assert isinstance(transport, Transport)
    assert received == [b'{"type": "a"}', b'{"type": "b"}']
    assert connection.sent[0]["type"] == "response.create"
    assert connection.sent[0]["event_id"].startswith("evt_")

    await transport.close()
    assert connection.closed
    with pytest.raises(SessionError):
        transport.send({"type": "response.create"})


@pytest.mark.asyncio
async def test_unsubscribed_listener_stops_receiving() -> None:
    connection = _FakeConnection()
    transport = OpenAIRealtimeTransport(connection)
    received: list[bytes] = []
    unsubscribe = transport.subscribe(received.append)
    transport.start()

    unsubscribe()
    await connection.inbound.put(b"{}")
    await _settle()

    assert received == []
    await transport.close()


@pytest.mark.asyncio
async def test_remote_close_marks_transport_closed() -> None:
    connection = _FakeConnection()
    transport = OpenAIRealtimeTransport(connection)
    transport.start()

    await connection.inbound.put(ConnectionClosed(None, None))
    await _settle()

    assert transport.closed
    await transport.close()


@pytest.mark.asyncio
async def test_open_realtime_transport_retries_transient_failures() -> None:
    client = _FakeClient(failures=[OSError("reset")])
    settings = Settings(model="gpt-realtime", connect_retries=3, retry_min_seconds=0, retry_max_seconds=0)

    transport = await open_realtime_transport(settings, client=client)

    assert client.attempts == 2
    assert client.models == ["gpt-realtime", "gpt-realtime"]
    await transport.close()


@pytest.mark.asyncio
async def test_open_realtime_transport_gives_up_after_retries() -> None:
    client = _FakeClient(failures=[OSError("down")] * 5)
    settings = Settings(connect_retries=2, retry_min_seconds=0, retry_max_seconds=0)

    with pytest.raises(SessionNegotiationError):
        await open_realtime_transport(settings, client=client)

    assert client.attempts == 2
