"""Typed representations of inbound realtime protocol events.

Raw payloads are JSON objects keyed by a ``type`` discriminator. :func:`decode_event`
turns them into one of the closed set of event dataclasses below; any ``type`` this
module does not know becomes an :class:`UnknownEvent` so callers can ignore it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from ..errors import EventDecodeError

__all__ = [
    "SESSION_EXPIRED",
    "SessionCreated",
    "ErrorEvent",
    "InputTranscriptCompleted",
    "AssistantTranscriptDelta",
    "AssistantTranscriptDone",
    "OutputItem",
    "ResponseDone",
    "UnknownEvent",
    "RealtimeEvent",
    "decode_event",
]

SESSION_EXPIRED = "session_expired"


@dataclass(slots=True, frozen=True)
class SessionCreated:
    event_id: str | None = None
    session: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    error_type: str | None
    message: str = ""
    code: str | None = None
    event_id: str | None = None

    @property
    def is_session_expired(self) -> bool:
        return self.error_type == SESSION_EXPIRED or self.code == SESSION_EXPIRED


@dataclass(slots=True, frozen=True)
class InputTranscriptCompleted:
    response_id: str | None
    transcript: str
    item_id: str | None = None
    event_id: str | None = None


@dataclass(slots=True, frozen=True)
class AssistantTranscriptDelta:
    response_id: str | None
    delta: str
    event_id: str | None = None


@dataclass(slots=True, frozen=True)
class AssistantTranscriptDone:
    response_id: str | None
    transcript: str | None = None
    event_id: str | None = None


@dataclass(slots=True, frozen=True)
class OutputItem:
    """One entry of ``response.output``; only ``function_call`` items carry a name."""

    type: str
    name: str | None = None
    arguments: str | None = None
    call_id: str | None = None

    @property
    def is_function_call(self) -> bool:
        return self.type == "function_call"


@dataclass(slots=True, frozen=True)
class ResponseDone:
    response_id: str | None
    output: tuple[OutputItem, ...] = ()
    status: str | None = None
    event_id: str | None = None

    @property
    def function_calls(self) -> tuple[OutputItem, ...]:
        return tuple(item for item in self.output if item.is_function_call)


@dataclass(slots=True, frozen=True)
class UnknownEvent:
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)


RealtimeEvent = Union[
    SessionCreated,
    ErrorEvent,
    InputTranscriptCompleted,
    AssistantTranscriptDelta,
    AssistantTranscriptDone,
    ResponseDone,
    UnknownEvent,
]


def decode_event(raw: str | bytes | bytearray | Mapping[str, Any]) -> RealtimeEvent:
    """Decode a raw transport payload into a typed event.

    Raises:
        EventDecodeError: If the payload is not a JSON object with a string ``type``
            or a known event is missing a required field.
    """

    payload = _load_payload(raw)
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventDecodeError("Event payload has no 'type' discriminator", payload=payload)
    parser = _PARSERS.get(event_type)
    if parser is None:
        return UnknownEvent(type=event_type, payload=payload)
    try:
        return parser(payload)
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise EventDecodeError(f"Malformed '{event_type}' event: {exc}", payload=payload) from exc


def _load_payload(raw: str | bytes | bytearray | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EventDecodeError("Event payload is not valid UTF-8", payload=raw) from exc
    if not isinstance(raw, str):
        raise EventDecodeError(f"Unsupported payload type {type(raw).__name__}", payload=raw)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EventDecodeError(f"Event payload is not valid JSON: {exc.msg}", payload=raw) from exc
    if not isinstance(payload, dict):
        raise EventDecodeError("Event payload must be a JSON object", payload=raw)
    return payload


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _parse_session_created(payload: Mapping[str, Any]) -> SessionCreated:
    session = payload.get("session") or {}
    if not isinstance(session, Mapping):
        raise TypeError("'session' must be an object")
    return SessionCreated(event_id=_optional_str(payload.get("event_id")), session=dict(session))


def _parse_error(payload: Mapping[str, Any]) -> ErrorEvent:
    error = payload.get("error") or {}
    if not isinstance(error, Mapping):
        raise TypeError("'error' must be an object")
    return ErrorEvent(
        error_type=_optional_str(error.get("type")),
        message=str(error.get("message") or ""),
        code=_optional_str(error.get("code")),
        event_id=_optional_str(payload.get("event_id")),
    )


def _parse_input_transcript(payload: Mapping[str, Any]) -> InputTranscriptCompleted:
    transcript = payload["transcript"]
    if not isinstance(transcript, str):
        raise TypeError("'transcript' must be a string")
    return InputTranscriptCompleted(
        response_id=_optional_str(payload.get("response_id") or payload.get("item_id")),
        transcript=transcript,
        item_id=_optional_str(payload.get("item_id")),
        event_id=_optional_str(payload.get("event_id")),
    )


def _parse_transcript_delta(payload: Mapping[str, Any]) -> AssistantTranscriptDelta:
    delta = payload["delta"]
    if not isinstance(delta, str):
        raise TypeError("'delta' must be a string")
    return AssistantTranscriptDelta(
        response_id=_optional_str(payload.get("response_id")),
        delta=delta,
        event_id=_optional_str(payload.get("event_id")),
    )


def _parse_transcript_done(payload: Mapping[str, Any]) -> AssistantTranscriptDone:
    return AssistantTranscriptDone(
        response_id=_optional_str(payload.get("response_id")),
        transcript=_optional_str(payload.get("transcript")),
        event_id=_optional_str(payload.get("event_id")),
    )


def _parse_output_item(item: Any) -> OutputItem:
    if not isinstance(item, Mapping):
        raise TypeError("response output items must be objects")
    arguments = item.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return OutputItem(
        type=str(item.get("type") or ""),
        name=_optional_str(item.get("name")),
        arguments=arguments,
        call_id=_optional_str(item.get("call_id")),
    )


def _parse_response_done(payload: Mapping[str, Any]) -> ResponseDone:
    response = payload.get("response") or {}
    if not isinstance(response, Mapping):
        raise TypeError("'response' must be an object")
    output = response.get("output") or []
    if not isinstance(output, list):
        raise TypeError("'response.output' must be a list")
    return ResponseDone(
        response_id=_optional_str(response.get("id") or payload.get("response_id")),
        output=tuple(_parse_output_item(item) for item in output),
        status=_optional_str(response.get("status")),
        event_id=_optional_str(payload.get("event_id")),
    )


# Both the beta and GA names of the transcript events are accepted.
_PARSERS: dict[str, Callable[[Mapping[str, Any]], RealtimeEvent]] = {
    "session.created": _parse_session_created,
    "error": _parse_error,
    "conversation.item.input_audio_transcription.completed": _parse_input_transcript,
    "response.audio_transcript.delta": _parse_transcript_delta,
    "response.output_audio_transcript.delta": _parse_transcript_delta,
    "response.audio_transcript.done": _parse_transcript_done,
    "response.output_audio_transcript.done": _parse_transcript_done,
    "response.done": _parse_response_done,
}
