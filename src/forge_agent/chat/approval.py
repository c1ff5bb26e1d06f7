"""Resolve previewed tool calls and reverse applied ones."""

from __future__ import annotations

from forge_agent.ai.gate import execute_tool_call
from forge_agent.chat.models import Message, ToolCall
from forge_agent.core.types import ToolCallStatus
from forge_agent.documents.store import DocumentStore
from forge_agent.log import get_logger

logger = get_logger(__name__)


class ApprovalManager:
    """Approve, reject and batch-undo the tool calls of one message."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def approve(self, message: Message) -> list[ToolCall]:
        """Execute every previewed call in message order, one at a time.

        A failing call is recorded as an error and the rest still run.
        """
        previewed = message.tool_calls_with_status(ToolCallStatus.PREVIEW)
        for call in previewed:
            await execute_tool_call(self._store, call)
        if previewed:
            logger.info("tool_calls_approved", message_id=message.id, count=len(previewed))
        return previewed

    def reject(self, message: Message) -> list[ToolCall]:
        previewed = message.tool_calls_with_status(ToolCallStatus.PREVIEW)
        for call in previewed:
            call.transition(ToolCallStatus.REJECTED)
        if previewed:
            logger.info("tool_calls_rejected", message_id=message.id, count=len(previewed))
        return previewed

    def batch_undo(self, message: Message) -> list[ToolCall]:
        """Undo the message's applied, undoable calls through the shared history.

        The history also holds edits made outside the agent, so this is best
        effort: it stops as soon as the store has nothing left to undo, and
        only the calls actually reversed (a chronological prefix) are marked.
        """
        targets = [
            tc
            for tc in message.tool_calls or []
            if tc.status == ToolCallStatus.SUCCESS and tc.undoable
        ]
        if not targets:
            return []

        undone_count = 0
        for _ in targets:
            if not self._store.can_undo or not self._store.undo():
                break
            undone_count += 1

        undone = targets[:undone_count]
        for call in undone:
            call.transition(ToolCallStatus.UNDONE)

        logger.info(
            "batch_undo",
            message_id=message.id,
            requested=len(targets),
            undone=undone_count,
        )
        return undone
