"""Execute assembled tool calls immediately or hold them for approval."""

from __future__ import annotations

from forge_agent.chat.models import Message, ToolCall
from forge_agent.core.types import StopReason, ToolCallStatus
from forge_agent.documents.store import DocumentStore, ToolExecutionResult
from forge_agent.log import get_logger

logger = get_logger(__name__)


async def execute_tool_call(store: DocumentStore, call: ToolCall) -> ToolCall:
    """Run one call against the store and record success or error on it.

    Executors are expected to report failures in their result, but one that
    raises still only fails its own call.
    """
    try:
        outcome = await store.execute_tool_call(call.name, call.input, store.snapshot())
    except Exception as e:
        logger.error("tool_executor_raised", tool=call.name, call_id=call.id, error=str(e))
        outcome = ToolExecutionResult(success=False, error=str(e) or type(e).__name__)

    if outcome.success:
        call.transition(ToolCallStatus.SUCCESS, result=outcome.result)
        logger.info("tool_call_executed", tool=call.name, call_id=call.id)
    else:
        call.transition(ToolCallStatus.ERROR, error=outcome.error or "Unknown error")
        logger.warning("tool_call_failed", tool=call.name, call_id=call.id, error=call.error)
    return call


class ExecutionGate:
    """Per-round policy for completed tool calls.

    Without approval gating every call runs as soon as its input is complete.
    With gating, calls are collected and decided at the end of the round: a
    round that asks for more tool work still runs them (the model needs the
    results), the final round leaves them in preview for the user.
    """

    def __init__(self, store: DocumentStore, approval_gated: bool):
        self._store = store
        self._approval_gated = approval_gated
        self._deferred: list[ToolCall] = []

    async def submit(self, call: ToolCall) -> None:
        if self._approval_gated:
            self._deferred.append(call)
            logger.debug("tool_call_deferred", tool=call.name, call_id=call.id)
            return
        await execute_tool_call(self._store, call)

    async def finish_round(self, stop_reason: str, message: Message) -> None:
        """Settle the calls deferred during this round."""
        deferred, self._deferred = self._deferred, []
        if not deferred:
            return

        if stop_reason == StopReason.TOOL_USE:
            for call in deferred:
                await execute_tool_call(self._store, call)
            return

        for call in message.tool_calls_with_status(ToolCallStatus.PENDING):
            call.transition(ToolCallStatus.PREVIEW)
        logger.info("tool_calls_awaiting_approval", message_id=message.id, count=len(deferred))
