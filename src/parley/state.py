"""Conversation state shared by the router, the assembler and the dispatch engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .chat.message_model import ChatHistory
    from .chat.transcript import TranscriptAssembler
    from .realtime.session import RealtimeSession
    from .tools.registry import AgentRegistry

__all__ = ["ConversationState"]


@dataclass(slots=True)
class ConversationState:
    """One owned bundle of mutable conversation state.

    The session, the assembler's draft and history, and the active agent are only
    ever mutated from the event loop, so components hold a reference to this
    object instead of copies of its parts.
    """

    session: RealtimeSession
    assembler: TranscriptAssembler
    registry: AgentRegistry

    @property
    def history(self) -> ChatHistory:
        return self.assembler.history
