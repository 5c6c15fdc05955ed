"""Realtime protocol events, transports, session lifecycle and routing."""

from .events import (
    SESSION_EXPIRED,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    ErrorEvent,
    InputTranscriptCompleted,
    OutputItem,
    RealtimeEvent,
    ResponseDone,
    SessionCreated,
    UnknownEvent,
    decode_event,
)
from .event_log import SessionEventLog, SessionEventLogger
from .transport import OpenAIRealtimeTransport, Transport, TransportFactory, open_realtime_transport
from .session import RealtimeSession, SessionScope, SessionState
from .router import EventRouter

__all__ = [
    # events.py
    "SESSION_EXPIRED",
    "AssistantTranscriptDelta",
    "AssistantTranscriptDone",
    "ErrorEvent",
    "InputTranscriptCompleted",
    "OutputItem",
    "RealtimeEvent",
    "ResponseDone",
    "SessionCreated",
    "UnknownEvent",
    "decode_event",
    # event_log.py
    "SessionEventLog",
    "SessionEventLogger",
    # transport.py
    "OpenAIRealtimeTransport",
    "Transport",
    "TransportFactory",
    "open_realtime_transport",
    # session.py
    "RealtimeSession",
    "SessionScope",
    "SessionState",
    # router.py
    "EventRouter",
]
