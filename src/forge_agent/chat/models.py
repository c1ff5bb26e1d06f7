"""Conversation data models: messages, tool calls and token counters."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from forge_agent.core.errors import InvalidToolCallTransition
from forge_agent.core.types import TOOL_CALL_TRANSITIONS, Feedback, Role, ToolCallStatus


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


@dataclass
class ToolCall:
    """One model-requested tool invocation, owned by its assistant message."""

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    undoable: bool = False
    input_frozen: bool = False

    def freeze_input(self, value: Mapping[str, Any]) -> None:
        """Assign the assembled input. Allowed exactly once."""
        if self.input_frozen:
            raise InvalidToolCallTransition(self.id, "input frozen", "input reassigned")
        self.input = MappingProxyType(dict(value))
        self.input_frozen = True

    def can_transition(self, target: ToolCallStatus) -> bool:
        return target in TOOL_CALL_TRANSITIONS[self.status]

    def transition(
        self,
        target: ToolCallStatus,
        *,
        result: Any = None,
        error: Optional[str] = None,
    ) -> None:
        if not self.can_transition(target):
            raise InvalidToolCallTransition(self.id, self.status, target)
        self.status = target
        if target in (ToolCallStatus.SUCCESS, ToolCallStatus.ERROR):
            self.result = result
            self.error = error

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "input": dict(self.input),
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "undoable": self.undoable,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ToolCall:
        call = cls(
            id=data["id"],
            name=data["name"],
            status=ToolCallStatus(data.get("status", ToolCallStatus.PENDING)),
            result=data.get("result"),
            error=data.get("error"),
            undoable=bool(data.get("undoable", False)),
        )
        call.freeze_input(data.get("input") or {})
        return call


@dataclass
class Message:
    """One entry of the transcript."""

    role: Role
    content: str = ""
    id: str = field(default_factory=new_message_id)
    images: Optional[list[str]] = None
    thinking: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    token_cost: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    feedback: Optional[Feedback] = None
    entity_refs: Optional[dict[str, str]] = None

    def find_tool_call(self, call_id: str) -> ToolCall | None:
        for call in self.tool_calls or []:
            if call.id == call_id:
                return call
        return None

    def tool_calls_with_status(self, status: ToolCallStatus) -> list[ToolCall]:
        return [tc for tc in self.tool_calls or [] if tc.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "images": self.images,
            "thinking": self.thinking,
            "tool_calls": (
                [tc.to_dict() for tc in self.tool_calls] if self.tool_calls is not None else None
            ),
            "token_cost": self.token_cost,
            "timestamp": self.timestamp.isoformat(),
            "feedback": self.feedback.value if self.feedback else None,
            "entity_refs": self.entity_refs,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        tool_calls = data.get("tool_calls")
        feedback = data.get("feedback")
        timestamp = data.get("timestamp")
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            content=data.get("content", ""),
            images=data.get("images"),
            thinking=data.get("thinking"),
            tool_calls=(
                [ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls is not None else None
            ),
            token_cost=data.get("token_cost"),
            timestamp=(
                datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc)
            ),
            feedback=Feedback(feedback) if feedback else None,
            entity_refs=data.get("entity_refs"),
        )


@dataclass
class TokenUsage:
    """Consumed input/output units. Only ever grows until reset()."""

    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += max(0, input_tokens)
        self.output_tokens += max(0, output_tokens)

    def merge(self, other: TokenUsage) -> None:
        self.add(other.input_tokens, other.output_tokens)

    def reset(self) -> None:
        self.input_tokens = 0
        self.output_tokens = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens
