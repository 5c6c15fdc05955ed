"""Chat message models and transcript assembly."""

from .message_model import (
    AssistantText,
    ChatHistory,
    ChatMessage,
    DraftMessage,
    MessageContent,
    ToolResultContent,
    UserAudioTranscript,
)
from .transcript import TranscriptAssembler

__all__ = [
    "AssistantText",
    "ChatHistory",
    "ChatMessage",
    "DraftMessage",
    "MessageContent",
    "ToolResultContent",
    "TranscriptAssembler",
    "UserAudioTranscript",
]
