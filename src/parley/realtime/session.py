"""Realtime session lifecycle and outbound message primitives."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Literal, Mapping, Sequence

from ..errors import SessionError, SessionNegotiationError
from ..services.settings import Settings
from .event_log import SessionEventLog, SessionEventLogger, _NullSessionEventLog
from .transport import Transport, TransportFactory

if TYPE_CHECKING:  # pragma: no cover
    from ..tools.agent_swap import AgentSwapTool
    from ..tools.registry import AgentRegistry

__all__ = ["SessionState", "SessionScope", "RealtimeSession"]

LOGGER = logging.getLogger(__name__)

SessionScope = Literal["all", "tools", "voice", "instructions"]
TransportChangeListener = Callable[[Transport | None], None]


class SessionState(str, Enum):
    NOT_STARTED = "not-started"
    NEGOTIATING = "negotiating"
    OPEN = "open"
    IDLE = "idle"


class RealtimeSession:
    """Track one streaming conversation and push events into it.

    Nothing is written to the transport unless the session is ``open``. The
    ``generation`` counter changes whenever the session starts negotiating, is
    stopped or expires; work that suspended while holding an older generation must
    not touch the session once it resumes.
    """

    def __init__(
        self,
        settings: Settings,
        registry: AgentRegistry,
        *,
        transport_factory: TransportFactory,
        swapper: AgentSwapTool | None = None,
        event_logger: SessionEventLogger | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._transport_factory = transport_factory
        self._swapper = swapper
        self._event_logger = event_logger or SessionEventLogger(enabled=settings.debug_event_logging)
        self._event_log: SessionEventLog | _NullSessionEventLog = _NullSessionEventLog()
        self._state = SessionState.NOT_STARTED
        self._generation = 0
        self._transport: Transport | None = None
        self._transport_listeners: list[TransportChangeListener] = []
        self._closing: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN and self._transport is not None

    @property
    def event_log(self) -> SessionEventLog | _NullSessionEventLog:
        return self._event_log

    def add_transport_listener(self, listener: TransportChangeListener) -> Callable[[], None]:
        """Call ``listener`` with the new transport (or ``None``) whenever it changes."""

        self._transport_listeners.append(listener)

        def _remove() -> None:
            if listener in self._transport_listeners:
                self._transport_listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Negotiate a new transport; the session opens once ``session.created`` arrives.

        Raises:
            SessionNegotiationError: If the transport factory fails.
        """

        if self._transport is not None or self._state is SessionState.NEGOTIATING:
            LOGGER.info("Restarting realtime session (state=%s)", self._state.value)
            await self.stop()

        self._generation += 1
        generation = self._generation
        self._state = SessionState.NEGOTIATING
        active = self._registry.active_agent
        self._event_log = self._event_logger.start_session(
            generation=generation,
            model=self._settings.model,
            agent=active.name if active else None,
        )
        LOGGER.debug("Negotiating realtime session (generation=%s)", generation)

        try:
            transport = await self._transport_factory()
        except SessionNegotiationError as exc:
            self._fail_negotiation(generation, exc)
            raise
        except Exception as exc:
            self._fail_negotiation(generation, exc)
            raise SessionNegotiationError(f"Transport factory failed: {exc}", cause=exc) from exc

        if generation != self._generation:
            LOGGER.info("Session changed while negotiating; closing late transport")
            await transport.close()
            return
        self._set_transport(transport)

    async def stop(self) -> None:
        """Tear down the transport and leave the session ``idle``."""

        if self._state is SessionState.NOT_STARTED and self._transport is None:
            return
        transport = self._transport
        self._generation += 1
        self._state = SessionState.IDLE
        self._set_transport(None)
        if transport is not None:
            await transport.close()
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        self._event_log.close(reason="stopped")
        LOGGER.info("Realtime session stopped")

    def mark_open(self) -> None:
        if self._transport is None:
            LOGGER.warning("Ignoring session.created without an active transport")
            return
        self._state = SessionState.OPEN
        LOGGER.info("Realtime session open (generation=%s)", self._generation)

    def mark_expired(self) -> None:
        """Force the session to ``idle`` whatever state it was in."""

        previous = self._state
        transport = self._transport
        self._generation += 1
        self._state = SessionState.IDLE
        self._set_transport(None)
        if transport is not None:
            task = asyncio.get_running_loop().create_task(transport.close())
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
        self._event_log.close(reason="expired")
        LOGGER.warning("Realtime session expired (was %s)", previous.value)

    # ------------------------------------------------------------------
    # Outbound primitives
    # ------------------------------------------------------------------

    def send_event(self, event: Mapping[str, Any]) -> bool:
        """Enqueue ``event`` on the transport; return False when the session is not open."""

        transport = self._transport
        if self._state is not SessionState.OPEN or transport is None:
            LOGGER.warning(
                "Dropping outbound %s event; session is %s",
                event.get("type"),
                self._state.value,
            )
            return False
        message = dict(event)
        message.setdefault("event_id", f"evt_{uuid.uuid4().hex}")
        try:
            transport.send(message)
        except SessionError as exc:
            LOGGER.warning("Failed to send %s event: %s", message.get("type"), exc)
            return False
        self._event_log.log_outbound(message)
        return True

    def update_session(self, scope: SessionScope = "all") -> bool:
        """Push the session configuration for ``scope``."""

        if not self.is_open:
            LOGGER.debug("Skipping session.update(%s); session is %s", scope, self._state.value)
            return False
        return self.send_event({"type": "session.update", "session": self.build_session_config(scope)})

    def send_text_message(self, text: str) -> bool:
        """Add a user text message to the conversation and request a response."""

        if not self.is_open:
            LOGGER.warning("Cannot send text message; session is %s", self._state.value)
            return False
        item = {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        }
        if not self.send_event(item):
            return False
        return self.send_event({"type": "response.create"})

    def send_function_call_response(
        self,
        payload: Any,
        call_id: str | None,
        *,
        generation: int | None = None,
    ) -> bool:
        """Reply to tool call ``call_id`` and request the follow-up response.

        ``generation`` is the session generation captured when the call was
        dispatched; replies for a session that has since been replaced are dropped.
        """

        if generation is not None and generation != self._generation:
            LOGGER.info(
                "Dropping reply for call %s; session generation %s is no longer current",
                call_id,
                generation,
            )
            return False
        if not call_id:
            LOGGER.warning("Cannot reply to a tool call without a call_id")
            return False
        output = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        item = {
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": output,
            },
        }
        if not self.send_event(item):
            return False
        return self.send_event({"type": "response.create"})

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def build_session_config(self, scope: SessionScope = "all") -> dict[str, Any]:
        """Return the ``session`` object of a ``session.update`` for ``scope``.

        The payload follows the GA realtime schema: ``type`` is always ``"realtime"``
        and audio options nest under ``audio.input`` and ``audio.output``.
        """

        settings = self._settings
        config: dict[str, Any] = {"type": "realtime"}
        audio_input: dict[str, Any] = {}
        audio_output: dict[str, Any] = {}
        if scope in ("all", "instructions", "tools"):
            config["instructions"] = self._instructions()
        if scope in ("all", "tools"):
            config["tools"] = self._tool_definitions()
            config["tool_choice"] = settings.tool_choice
        if scope in ("all", "voice"):
            audio_output["voice"] = settings.voice
        if scope == "all":
            config["output_modalities"] = _output_modalities(settings.modalities)
            if settings.input_audio_transcription_model:
                audio_input["transcription"] = {"model": settings.input_audio_transcription_model}
            audio_input["turn_detection"] = dict(settings.turn_detection) if settings.turn_detection else None
        audio = {key: value for key, value in (("input", audio_input), ("output", audio_output)) if value}
        if audio:
            config["audio"] = audio
        return config

    def _instructions(self) -> str:
        parts = [self._settings.instructions.strip()]
        agent = self._registry.active_agent
        if agent is not None and agent.instructions:
            parts.append(agent.instructions.strip())
        return "\n\n".join(part for part in parts if part)

    def _tool_definitions(self) -> list[dict[str, Any]]:
        extra = []
        if self._swapper is not None and len(self._registry) > 1:
            extra.append(self._swapper.spec)
        return self._registry.tool_definitions(extra=extra)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_transport(self, transport: Transport | None) -> None:
        if transport is self._transport:
            return
        self._transport = transport
        for listener in list(self._transport_listeners):
            listener(transport)

    def _fail_negotiation(self, generation: int, exc: BaseException) -> None:
        LOGGER.error("Realtime session negotiation failed: %s", exc)
        if generation == self._generation:
            self._state = SessionState.IDLE
        self._event_log.log_failure(message=str(exc))


def _output_modalities(modalities: Sequence[str]) -> list[str]:
    # GA sessions accept exactly one output modality.
    return ["audio"] if "audio" in modalities else ["text"]
