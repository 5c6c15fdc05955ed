"""Transport adapters carrying realtime protocol events.

The orchestrator only needs three things from a transport: a way to subscribe to
inbound frames, a non-blocking ``send`` that enqueues an outbound event, and an
async ``close``. :class:`OpenAIRealtimeTransport` provides them on top of an
``openai`` realtime websocket connection.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Mapping, Protocol, runtime_checkable

from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import SessionError, SessionNegotiationError
from ..services.settings import Settings

__all__ = [
    "Transport",
    "TransportListener",
    "TransportFactory",
    "OpenAIRealtimeTransport",
    "open_realtime_transport",
]

LOGGER = logging.getLogger(__name__)

TransportListener = Callable[[Any], None]


@runtime_checkable
class Transport(Protocol):
    """Bidirectional channel of JSON protocol events."""

    def subscribe(self, listener: TransportListener) -> Callable[[], None]:
        """Register ``listener`` for inbound frames; return a callable that unsubscribes."""
        ...

    def send(self, event: Mapping[str, Any]) -> None:
        """Enqueue ``event`` for delivery."""
        ...

    async def close(self) -> None:
        ...


TransportFactory = Callable[[], Awaitable[Transport]]


class OpenAIRealtimeTransport:
    """Pump frames between an OpenAI realtime connection and local subscribers.

    Inbound frames are delivered to listeners in arrival order by a reader task.
    Outbound events are queued by :meth:`send` and written by a writer task so that
    callers on the event loop never block on the socket.
    """

    def __init__(self, connection: Any) -> None:
        self._connection = connection
        self._listeners: list[TransportListener] = []
        self._outbound: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._reader: asyncio.Task[None] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the reader and writer tasks on the running loop."""

        if self._reader is not None:
            return
        self._reader = asyncio.create_task(self._read_loop(), name="parley-transport-reader")
        self._writer = asyncio.create_task(self._write_loop(), name="parley-transport-writer")

    def subscribe(self, listener: TransportListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def send(self, event: Mapping[str, Any]) -> None:
        if self._closed:
            raise SessionError("Transport is closed")
        message = dict(event)
        message.setdefault("event_id", f"evt_{uuid.uuid4().hex}")
        self._outbound.put_nowait(message)

    async def close(self) -> None:
        if self._closed and self._reader is None:
            return
        self._closed = True
        tasks = [task for task in (self._reader, self._writer) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reader = None
        self._writer = None
        self._listeners.clear()
        try:
            await self._connection.close()
        except (ConnectionClosed, OSError) as exc:  # pragma: no cover - socket already gone
            LOGGER.debug("Realtime connection close failed: %s", exc)

    async def _read_loop(self) -> None:
        try:
            while True:
                raw = await self._connection.recv_bytes()
                for listener in list(self._listeners):
                    listener(raw)
        except ConnectionClosed as exc:
            LOGGER.info("Realtime connection closed by remote (code=%s)", getattr(exc, "code", None))
        finally:
            self._closed = True

    async def _write_loop(self) -> None:
        while True:
            event = await self._outbound.get()
            try:
                await self._connection.send(event)
            except ConnectionClosed:
                LOGGER.warning("Dropping outbound %s event; connection closed", event.get("type"))
                return


async def open_realtime_transport(
    settings: Settings,
    *,
    client: AsyncOpenAI | None = None,
) -> OpenAIRealtimeTransport:
    """Open a realtime websocket connection with retry semantics.

    Raises:
        SessionNegotiationError: If the connection cannot be opened.
    """

    openai_client = client or AsyncOpenAI(api_key=settings.api_key or None, base_url=settings.base_url)
    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max(1, settings.connect_retries)),
        wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
        retry=retry_if_exception_type((OSError, WebSocketException, asyncio.TimeoutError)),
    )
    LOGGER.debug("Opening realtime connection for model %s", settings.model)
    try:
        async for attempt in retrying:
            with attempt:
                connection = await openai_client.realtime.connect(model=settings.model).enter()
    except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
        raise SessionNegotiationError(f"Unable to open realtime connection: {exc}", cause=exc) from exc

    transport = OpenAIRealtimeTransport(connection)
    transport.start()
    return transport
