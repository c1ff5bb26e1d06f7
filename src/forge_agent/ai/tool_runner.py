"""Iterative tool-use loop over a streamed completion."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Callable, assert_never

from forge_agent.ai.assembler import ToolCallAssembler
from forge_agent.ai.client import CompletionRequest, CompletionService
from forge_agent.ai.conversation import build_follow_up
from forge_agent.ai.gate import ExecutionGate
from forge_agent.ai.stream import (
    ContentBlockStop,
    StreamError,
    TextDelta,
    ThinkingDelta,
    ThinkingStart,
    ToolInputDelta,
    ToolStart,
    TurnComplete,
    Usage,
    decode_stream,
)
from forge_agent.ai.tools.registry import ToolRegistry
from forge_agent.chat.models import Message, TokenUsage
from forge_agent.config import MAX_LOOP_ITERATIONS
from forge_agent.core.errors import StreamCancelled
from forge_agent.core.types import StopReason, ToolCallStatus
from forge_agent.documents.store import DocumentStore
from forge_agent.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TurnSettings:
    """Values fixed for the whole loop, read once when the send starts."""

    model: str
    context: str = ""
    system_prompt: str = ""
    max_tokens: int = 4096
    thinking: bool = False
    approval_gated: bool = False
    max_rounds: int = MAX_LOOP_ITERATIONS


@dataclass
class TurnLoopResult:
    stop_reason: str
    rounds: int


async def run_tool_loop(
    service: CompletionService,
    store: DocumentStore,
    tool_registry: ToolRegistry,
    message: Message,
    api_messages: list[dict[str, Any]],
    settings: TurnSettings,
    usage: TokenUsage,
    cancel_event: asyncio.Event | None = None,
    on_update: Callable[[], None] | None = None,
    on_error: Callable[[str], None] | None = None,
    on_round: Callable[[int], None] | None = None,
) -> TurnLoopResult:
    """Stream rounds until the model stops asking for tools or the round cap is hit.

    Streams into *message* in place. Usage is accumulated into *usage* as it
    is reported so the caller can commit it however the loop ends.
    Raises StreamCancelled when *cancel_event* is set.
    """
    gate = ExecutionGate(store, approval_gated=settings.approval_gated)
    tools = tool_registry.to_api_list()
    stop_reason: str = StopReason.END_TURN
    rounds = 0

    try:
        while rounds < settings.max_rounds:
            if cancel_event is not None and cancel_event.is_set():
                raise StreamCancelled("Cancelled before round start")
            if on_round:
                on_round(rounds)

            first_call = len(message.tool_calls or [])
            logger.debug("turn_round_started", message_id=message.id, round=rounds)
            request = CompletionRequest(
                messages=api_messages,
                model=settings.model,
                context=settings.context,
                # Follow-ups carry no thinking blocks, so only the opening round thinks
                thinking=settings.thinking and rounds == 0,
                system_prompt=settings.system_prompt,
                max_tokens=settings.max_tokens,
                tools=tools,
            )
            stop_reason = await _stream_round(
                service,
                request,
                ToolCallAssembler(message, tool_registry.is_undoable),
                gate,
                message,
                usage,
                cancel_event,
                on_update,
                on_error,
            )
            rounds += 1

            await gate.finish_round(stop_reason, message)
            _notify(on_update)

            if stop_reason != StopReason.TOOL_USE:
                break

            round_calls = (message.tool_calls or [])[first_call:]
            if not round_calls:
                break

            api_messages.extend(build_follow_up(message.content, round_calls))
            # Tool calls accumulate across rounds, visible text does not
            message.content = ""
            _notify(on_update)
        else:
            logger.warning("tool_round_limit_reached", message_id=message.id, rounds=rounds)
    except BaseException as e:
        _settle_interrupted(message, "Cancelled" if isinstance(e, StreamCancelled) else str(e))
        raise

    logger.info(
        "turn_loop_finished",
        message_id=message.id,
        rounds=rounds,
        stop_reason=stop_reason,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
    )
    return TurnLoopResult(stop_reason=stop_reason, rounds=rounds)


async def _stream_round(
    service: CompletionService,
    request: CompletionRequest,
    assembler: ToolCallAssembler,
    gate: ExecutionGate,
    message: Message,
    usage: TokenUsage,
    cancel_event: asyncio.Event | None,
    on_update: Callable[[], None] | None,
    on_error: Callable[[str], None] | None,
) -> str:
    stop_reason: str = StopReason.END_TURN

    async with aclosing(decode_stream(service.stream(request, cancel_event), cancel_event)) as events:
        async for event in events:
            match event:
                case TextDelta(text=text):
                    message.content += text
                case ThinkingStart():
                    if message.thinking is None:
                        message.thinking = ""
                case ThinkingDelta(text=text):
                    message.thinking = (message.thinking or "") + text
                case ToolStart(id=call_id, name=name):
                    assembler.start(call_id, name)
                case ToolInputDelta(json=fragment):
                    assembler.append(fragment)
                case ContentBlockStop():
                    call = assembler.close()
                    if call is not None:
                        await gate.submit(call)
                case Usage(input_tokens=input_tokens, output_tokens=output_tokens):
                    usage.add(input_tokens, output_tokens)
                case TurnComplete(stop_reason=reason):
                    stop_reason = reason
                case StreamError(message=error_message):
                    logger.error("stream_error_event", message_id=message.id, error=error_message)
                    if on_error:
                        on_error(error_message)
                case _:
                    assert_never(event)
            _notify(on_update)

    dangling = assembler.abandon()
    if dangling is not None:
        dangling.transition(ToolCallStatus.ERROR, error="Tool call input was not completed")
        logger.warning("tool_call_incomplete", call_id=dangling.id, tool=dangling.name)
    return stop_reason


def _settle_interrupted(message: Message, reason: str) -> None:
    """Calls that never ran when the loop is interrupted end as errors."""
    for call in message.tool_calls_with_status(ToolCallStatus.PENDING):
        call.transition(ToolCallStatus.ERROR, error=f"Not executed: {reason}")


def _notify(callback: Callable[[], None] | None) -> None:
    if callback:
        callback()
