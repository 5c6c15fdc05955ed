"""Realtime conversational event orchestration."""

from .conversation import Conversation, ConversationState

__all__ = ["Conversation", "ConversationState", "__version__"]

__version__ = "0.1.0"
