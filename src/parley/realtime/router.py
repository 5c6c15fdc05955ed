"""Route decoded inbound events to the session, the assembler and tool dispatch."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from ..errors import EventDecodeError
from .events import (
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    ErrorEvent,
    InputTranscriptCompleted,
    RealtimeEvent,
    ResponseDone,
    SessionCreated,
    decode_event,
)
from .transport import Transport

if TYPE_CHECKING:  # pragma: no cover
    from ..state import ConversationState
    from ..tools.dispatch import ToolDispatchEngine

__all__ = ["EventRouter"]

LOGGER = logging.getLogger(__name__)


class EventRouter:
    """Subscribe to the session's transport and handle inbound events in arrival order.

    Every handler except tool dispatch runs to completion inside :meth:`receive`.
    Tool dispatch for a ``response.done`` runs as a task so a slow capability does
    not hold up transcript events; :meth:`drain` waits for those tasks.
    """

    def __init__(self, state: ConversationState, dispatcher: ToolDispatchEngine) -> None:
        self._state = state
        self._dispatcher = dispatcher
        self._unsubscribe: Callable[[], None] | None = None
        self._remove_session_listener: Callable[[], None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._handlers: dict[type, Callable[[Any], None]] = {
            SessionCreated: self._on_session_created,
            ErrorEvent: self._on_error,
            InputTranscriptCompleted: self._on_input_transcript,
            AssistantTranscriptDelta: self._on_transcript_delta,
            AssistantTranscriptDone: self._on_transcript_done,
            ResponseDone: self._on_response_done,
        }

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind(self) -> None:
        """Follow the session's transport, re-subscribing whenever it is replaced."""

        if self._remove_session_listener is not None:
            return
        session = self._state.session
        self._remove_session_listener = session.add_transport_listener(self._on_transport_changed)
        self._on_transport_changed(session.transport)

    def unbind(self) -> None:
        if self._remove_session_listener is not None:
            self._remove_session_listener()
            self._remove_session_listener = None
        self._detach()

    def _on_transport_changed(self, transport: Transport | None) -> None:
        self._detach()
        if transport is not None:
            self._unsubscribe = transport.subscribe(self.receive)
            LOGGER.debug("Event router subscribed to new transport")

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._pending)

    def receive(self, raw: Any) -> RealtimeEvent | None:
        """Decode one inbound payload and apply it.

        Malformed payloads are logged and dropped. Returns the decoded event.
        """

        try:
            event = decode_event(raw)
        except EventDecodeError as exc:
            LOGGER.warning("Dropping malformed realtime event: %s", exc)
            self._state.session.event_log.log_inbound(raw)
            return None

        self._state.session.event_log.log_inbound(raw)
        handler = self._handlers.get(type(event))
        if handler is None:
            LOGGER.debug("Ignoring realtime event %s", getattr(event, "type", type(event).__name__))
            return event
        try:
            handler(event)
        except Exception:
            LOGGER.exception("Handler for %s failed", type(event).__name__)
        return event

    async def drain(self) -> None:
        """Wait until every scheduled tool dispatch has finished."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_session_created(self, event: SessionCreated) -> None:
        session = self._state.session
        session.mark_open()
        session.update_session("all")

    def _on_error(self, event: ErrorEvent) -> None:
        if event.is_session_expired:
            self._state.session.mark_expired()
            return
        LOGGER.warning(
            "Realtime error (type=%s, code=%s): %s",
            event.error_type,
            event.code,
            event.message,
        )

    def _on_input_transcript(self, event: InputTranscriptCompleted) -> None:
        self._state.assembler.on_input_transcript_completed(event.response_id, event.transcript)

    def _on_transcript_delta(self, event: AssistantTranscriptDelta) -> None:
        self._state.assembler.on_assistant_delta(event.response_id, event.delta)

    def _on_transcript_done(self, event: AssistantTranscriptDone) -> None:
        self._state.assembler.on_assistant_done(event.response_id)

    def _on_response_done(self, event: ResponseDone) -> None:
        if not event.function_calls:
            return
        task = asyncio.get_running_loop().create_task(self._dispatcher.handle_response_done(event))
        self._pending.add(task)
        task.add_done_callback(self._on_dispatch_finished)

    def _on_dispatch_finished(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Tool dispatch failed", exc_info=exc)
