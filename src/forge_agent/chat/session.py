"""Conversation session: transcript, streaming state and caller-facing operations."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from forge_agent.ai.client import CompletionService
from forge_agent.ai.conversation import build_api_messages, format_entity_refs
from forge_agent.ai.tool_runner import TurnSettings, run_tool_loop
from forge_agent.ai.tools.registry import ToolRegistry
from forge_agent.chat.approval import ApprovalManager
from forge_agent.chat.models import Message, TokenUsage, ToolCall
from forge_agent.chat.sanitizer import sanitize_chat_input
from forge_agent.config import ChatConfig
from forge_agent.core.errors import ForgeAgentError, MessageNotFound, StreamCancelled
from forge_agent.core.types import Feedback, Role
from forge_agent.documents.context import build_scene_context
from forge_agent.documents.store import DocumentStore
from forge_agent.log import bind_turn, clear_turn, get_logger
from forge_agent.storage.conversation_repo import ConversationRepository

logger = get_logger(__name__)

Listener = Callable[["ChatSession"], None]


class ChatSession:
    """One conversation with the model about one document store.

    Only one send can be in flight. State changes are announced to
    subscribers after they happen.
    """

    def __init__(
        self,
        service: CompletionService,
        store: DocumentStore,
        tool_registry: ToolRegistry,
        config: ChatConfig | None = None,
        repo: ConversationRepository | None = None,
        context_builder: Callable[[Any], str] = build_scene_context,
    ):
        config = config or ChatConfig()
        self._service = service
        self._store = store
        self._tool_registry = tool_registry
        self._repo = repo
        self._context_builder = context_builder
        self._approvals = ApprovalManager(store)
        self._config = config
        self._listeners: list[Listener] = []
        self._cancel_event: asyncio.Event | None = None

        self.messages: list[Message] = []
        self.is_streaming = False
        self.error: Optional[str] = None
        self.loop_iteration = 0
        self.session_tokens = TokenUsage()
        self.model = config.model
        self.thinking_enabled = config.thinking_enabled
        self.approval_mode = config.approval_mode

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def get_message(self, message_id: str) -> Message:
        for message in self.messages:
            if message.id == message_id:
                return message
        raise MessageNotFound(message_id)

    async def send_message(
        self,
        text: str,
        images: list[str] | None = None,
        entity_refs: dict[str, str] | None = None,
    ) -> Message | None:
        """Send a user message and run the tool loop to completion.

        Returns the assistant message, or None when a send is already in
        flight or there is nothing to send.
        """
        if self.is_streaming:
            logger.debug("send_ignored_while_streaming")
            return None

        text = sanitize_chat_input(text)
        if not text and not images:
            return None

        user_message = Message(
            role=Role.USER,
            content=format_entity_refs(text, entity_refs),
            images=list(images) if images else None,
            entity_refs=dict(entity_refs) if entity_refs else None,
        )
        assistant_message = Message(role=Role.ASSISTANT, tool_calls=[])
        api_messages = build_api_messages([*self.messages, user_message])

        cancel_event = asyncio.Event()
        turn_usage = TokenUsage()
        self.messages.extend([user_message, assistant_message])
        self.is_streaming = True
        self.error = None
        self.loop_iteration = 0
        self._cancel_event = cancel_event
        self._notify()
        bind_turn(assistant_message.id, self.model)

        try:
            settings = TurnSettings(
                model=self.model,
                context=self._context_builder(self._store.snapshot()),
                system_prompt=self._config.system_prompt,
                max_tokens=self._config.max_tokens,
                thinking=self.thinking_enabled,
                approval_gated=self.approval_mode,
                max_rounds=self._config.max_loop_iterations,
            )
            await run_tool_loop(
                self._service,
                self._store,
                self._tool_registry,
                assistant_message,
                api_messages,
                settings,
                turn_usage,
                cancel_event=cancel_event,
                on_update=self._notify,
                on_error=self._set_error,
                on_round=self._set_loop_iteration,
            )
        except StreamCancelled:
            logger.info("send_cancelled", message_id=assistant_message.id)
        except Exception as e:
            logger.error("send_failed", message_id=assistant_message.id, error=str(e))
            self.error = str(e) or "Chat request failed"
        finally:
            # Usage already reported has been billed, so it counts even for
            # cancelled or failed sends.
            assistant_message.token_cost = turn_usage.total
            self.session_tokens.merge(turn_usage)
            self.is_streaming = False
            self.loop_iteration = 0
            if self._cancel_event is cancel_event:
                self._cancel_event = None
            clear_turn()
            self._notify()

        return assistant_message

    def _set_error(self, message: str) -> None:
        self.error = message

    def _set_loop_iteration(self, iteration: int) -> None:
        self.loop_iteration = iteration

    def stop_streaming(self) -> bool:
        """Cancel the in-flight send. Returns False when nothing is streaming."""
        cancel_event = self._cancel_event
        if cancel_event is None:
            return False
        cancel_event.set()
        self._cancel_event = None
        logger.info("stop_streaming_requested")
        self._notify()
        return True

    def set_model(self, model: str) -> None:
        self.model = model
        self._notify()

    def set_thinking_enabled(self, enabled: bool) -> None:
        self.thinking_enabled = enabled
        self._notify()

    def set_approval_mode(self, enabled: bool) -> None:
        """Takes effect from the next send; a running send keeps its mode."""
        self.approval_mode = enabled
        self._notify()

    async def approve_tool_calls(self, message_id: str) -> list[ToolCall]:
        approved = await self._approvals.approve(self.get_message(message_id))
        self._notify()
        return approved

    def reject_tool_calls(self, message_id: str) -> list[ToolCall]:
        rejected = self._approvals.reject(self.get_message(message_id))
        self._notify()
        return rejected

    def batch_undo_message(self, message_id: str) -> list[ToolCall]:
        undone = self._approvals.batch_undo(self.get_message(message_id))
        self._notify()
        return undone

    def set_message_feedback(self, message_id: str, feedback: Feedback | str | None) -> None:
        message = self.get_message(message_id)
        message.feedback = Feedback(feedback) if feedback else None
        self._notify()

    def clear_chat(self) -> None:
        self.messages = []
        self.error = None
        self.session_tokens.reset()
        self._notify()

    async def save_conversation(self, project_id: str) -> int:
        if self._repo is None:
            raise ForgeAgentError("No conversation repository configured")
        return await self._repo.save(project_id, self.messages)

    async def load_conversation(self, project_id: str) -> bool:
        """Replace the transcript with the stored one. False when nothing is stored."""
        if self._repo is None:
            raise ForgeAgentError("No conversation repository configured")
        if self.is_streaming:
            logger.debug("load_ignored_while_streaming", project_id=project_id)
            return False
        messages = await self._repo.load(project_id)
        if not messages:
            return False
        self.messages = messages
        self.error = None
        self._notify()
        return True
