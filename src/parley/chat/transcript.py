"""Assemble streaming transcript fragments into committed chat messages."""

from __future__ import annotations

import logging

from .message_model import ChatHistory, ChatMessage, DraftMessage, Sender, UserAudioTranscript

LOGGER = logging.getLogger(__name__)


class TranscriptAssembler:
    """Owns the single draft message and commits finished transcripts to history.

    Deltas always extend the current draft, whatever their response id: the router
    delivers events sequentially and at most one assistant response is expected to
    stream at a time. Completions are checked against the draft's response id so a
    stale ``done`` can never commit a newer draft.
    """

    def __init__(self, history: ChatHistory) -> None:
        self._history = history
        self._draft: DraftMessage | None = None

    @property
    def draft(self) -> DraftMessage | None:
        return self._draft

    @property
    def history(self) -> ChatHistory:
        return self._history

    def on_input_transcript_completed(
        self,
        response_id: str | None,
        text: str,
        sender: Sender = "user",
    ) -> ChatMessage:
        """Commit a finished user transcript without touching the draft."""

        message = ChatMessage(
            id=response_id or "",
            content=UserAudioTranscript(text=text, response_id=response_id, sender=sender),
        )
        self._history.append(message)
        return message

    def on_assistant_delta(self, response_id: str | None, fragment: str) -> DraftMessage:
        """Start a draft with ``fragment`` or append it to the existing one."""

        draft = self._draft
        if draft is None:
            draft = DraftMessage(response_id=response_id, text=fragment)
            self._draft = draft
            LOGGER.debug("Started draft for response %s", response_id)
            return draft
        if response_id and draft.response_id and response_id != draft.response_id:
            LOGGER.debug(
                "Delta for response %s extends draft of response %s",
                response_id,
                draft.response_id,
            )
        draft.append(fragment)
        return draft

    def on_assistant_done(self, response_id: str | None) -> ChatMessage | None:
        """Commit the draft if the completion belongs to it.

        Returns the committed message, or ``None`` when there was nothing to commit
        or the completion referred to a different response.
        """

        draft = self._draft
        if draft is None:
            return None
        if response_id and response_id != draft.response_id:
            LOGGER.debug(
                "Ignoring completion for response %s; draft belongs to %s",
                response_id,
                draft.response_id,
            )
            return None
        self._draft = None
        message = draft.commit()
        self._history.append(message)
        return message

    def clear(self) -> None:
        """Discard the draft without committing it."""

        if self._draft is not None:
            LOGGER.debug("Discarding draft for response %s", self._draft.response_id)
        self._draft = None
