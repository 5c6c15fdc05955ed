"""High-level facade wiring a realtime session to chat history and local tools."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from .chat.message_model import ChatHistory, ChatMessage, DraftMessage
from .chat.transcript import TranscriptAssembler
from .realtime.event_log import SessionEventLogger
from .realtime.router import EventRouter
from .realtime.session import RealtimeSession, SessionScope, SessionState
from .realtime.transport import TransportFactory, open_realtime_transport
from .services.settings import Settings
from .state import ConversationState
from .tools.agent_swap import AgentSwapTool
from .tools.dispatch import DispatchListener, ToolDispatchEngine
from .tools.registry import Agent, AgentRegistry

__all__ = ["Conversation", "ConversationState"]

LOGGER = logging.getLogger(__name__)


class Conversation:
    """A voice/text conversation with a remote model that can call local tools.

    Example:
        registry = AgentRegistry([Agent(name="wallet", capabilities=[balance_tool])])
        conversation = Conversation(Settings(api_key="sk-..."), registry)
        await conversation.start()
        conversation.send_text("What is my balance?")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: AgentRegistry | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        wallet_provider: Callable[[], Any] | None = None,
        event_logger: SessionEventLogger | None = None,
        history: ChatHistory | None = None,
        listener: DispatchListener | None = None,
    ) -> None:
        self._settings = settings or Settings()
        registry = registry if registry is not None else AgentRegistry()
        if self._settings.default_agent:
            if registry.has(self._settings.default_agent):
                registry.activate(self._settings.default_agent)
            else:
                LOGGER.warning("Default agent %r is not registered", self._settings.default_agent)

        swapper = AgentSwapTool(registry)
        factory = transport_factory or functools.partial(open_realtime_transport, self._settings)
        session = RealtimeSession(
            self._settings,
            registry,
            transport_factory=factory,
            swapper=swapper,
            event_logger=event_logger,
        )
        self.state = ConversationState(
            session=session,
            assembler=TranscriptAssembler(history if history is not None else ChatHistory()),
            registry=registry,
        )
        self.dispatcher = ToolDispatchEngine(
            self.state,
            swapper=swapper,
            wallet_provider=wallet_provider,
            tool_timeout=self._settings.tool_timeout,
            reply_on_error=self._settings.reply_on_tool_error,
            listener=listener,
        )
        self.router = EventRouter(self.state, self.dispatcher)
        self.router.bind()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def session(self) -> RealtimeSession:
        return self.state.session

    @property
    def session_state(self) -> SessionState:
        return self.state.session.state

    @property
    def registry(self) -> AgentRegistry:
        return self.state.registry

    @property
    def history(self) -> ChatHistory:
        return self.state.history

    @property
    def draft(self) -> DraftMessage | None:
        return self.state.assembler.draft

    @property
    def active_agent(self) -> Agent | None:
        return self.state.registry.active_agent

    def add_message_listener(self, listener: Callable[[ChatMessage], None]) -> Callable[[], None]:
        return self.state.history.add_listener(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.state.session.start()

    async def stop(self) -> None:
        await self.state.session.stop()

    async def close(self) -> None:
        """Stop the session and wait for in-flight tool dispatch to settle."""

        await self.stop()
        await self.router.drain()
        self.router.unbind()

    async def __aenter__(self) -> "Conversation":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_text(self, text: str) -> bool:
        return self.state.session.send_text_message(text)

    def update_session(self, scope: SessionScope = "all") -> bool:
        return self.state.session.update_session(scope)

    def activate_agent(self, name: str) -> Agent:
        """Switch the active agent and push its tools to an open session.

        Raises:
            KeyError: If ``name`` is not registered.
        """

        agent = self.state.registry.activate(name)
        self.state.session.update_session("tools")
        return agent

    async def drain(self) -> None:
        await self.router.drain()
