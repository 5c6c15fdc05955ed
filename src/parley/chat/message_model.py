"""Chat message data models and the in-memory chat history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ClassVar, Dict, Iterator, Literal, Mapping, Union

LOGGER = logging.getLogger(__name__)

Sender = Literal["user", "assistant"]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class UserAudioTranscript:
    """Final transcript of something the user said."""

    kind: ClassVar[str] = "user_audio_transcript"

    text: str
    response_id: str | None = None
    sender: Sender = "user"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "text": self.text, "response_id": self.response_id, "sender": self.sender}


@dataclass(slots=True, frozen=True)
class AssistantText:
    """Assistant transcript text; ``final`` is False while it is still a draft."""

    kind: ClassVar[str] = "assistant_text"

    text: str
    response_id: str | None = None
    final: bool = True
    sender: Sender = "assistant"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "text": self.text,
            "response_id": self.response_id,
            "final": self.final,
            "sender": self.sender,
        }


@dataclass(slots=True, frozen=True)
class ToolResultContent:
    """Renderable output of a tool call."""

    kind: ClassVar[str] = "tool_result"

    tool_name: str
    data: Mapping[str, Any] = field(default_factory=dict)
    response_id: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "tool_name": self.tool_name,
            "data": dict(self.data),
            "response_id": self.response_id,
        }


MessageContent = Union[UserAudioTranscript, AssistantText, ToolResultContent]


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """Represents a committed row inside the chat history."""

    id: str
    content: MessageContent
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def kind(self) -> str:
        return self.content.kind

    @property
    def text(self) -> str:
        """Plain-text rendering used by logs and simple front-ends."""

        content = self.content
        if isinstance(content, ToolResultContent):
            return f"[{content.tool_name}]"
        return content.text

    @classmethod
    def from_tool(
        cls,
        tool_name: str,
        props: Mapping[str, Any] | None,
        *,
        response_id: str | None,
        call_id: str | None = None,
    ) -> "ChatMessage":
        """Build the chat row that renders a successful tool result."""

        identifier = call_id or response_id or tool_name
        content = ToolResultContent(tool_name=tool_name, data=dict(props or {}), response_id=response_id)
        return cls(id=identifier, content=content)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for logs and front-ends."""

        return {
            "id": self.id,
            "content": self.content.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class DraftMessage:
    """The single in-progress assistant message assembled from transcript deltas."""

    response_id: str | None
    text: str = ""
    sender: Sender = "assistant"
    created_at: datetime = field(default_factory=_utcnow)

    def append(self, fragment: str) -> None:
        self.text += fragment

    def commit(self) -> ChatMessage:
        """Freeze the draft into an immutable chat message."""

        content = AssistantText(text=self.text, response_id=self.response_id, final=True, sender=self.sender)
        return ChatMessage(id=self.response_id or "", content=content, created_at=self.created_at)


HistoryListener = Callable[[ChatMessage], None]


class ChatHistory:
    """Insertion-ordered chat history kept in process memory."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._listeners: list[HistoryListener] = []

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)
        LOGGER.debug("Committed %s message %s", message.kind, message.id)
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:  # pragma: no cover - listener bugs must not break the stream
                LOGGER.exception("Chat history listener failed")

    def add_listener(self, listener: HistoryListener) -> Callable[[], None]:
        """Register ``listener`` for commits and return a callable that removes it."""

        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> ChatMessage:
        return self._messages[index]
