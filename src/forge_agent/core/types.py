"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolCallStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    PREVIEW = "preview"
    REJECTED = "rejected"
    UNDONE = "undone"


class StopReason(StrEnum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"


class Feedback(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


# Allowed status moves. Anything not listed here is rejected by ToolCall.
TOOL_CALL_TRANSITIONS: dict[ToolCallStatus, frozenset[ToolCallStatus]] = {
    ToolCallStatus.PENDING: frozenset(
        {ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.PREVIEW}
    ),
    ToolCallStatus.PREVIEW: frozenset(
        {ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.REJECTED}
    ),
    ToolCallStatus.SUCCESS: frozenset({ToolCallStatus.UNDONE}),
    ToolCallStatus.ERROR: frozenset(),
    ToolCallStatus.REJECTED: frozenset(),
    ToolCallStatus.UNDONE: frozenset(),
}
