"""Assemble streamed tool-call fragments into complete ToolCall inputs."""

from __future__ import annotations

import json
from typing import Any, Callable

from forge_agent.chat.models import Message, ToolCall
from forge_agent.core.errors import ToolCallProtocolError
from forge_agent.log import get_logger

logger = get_logger(__name__)


def parse_tool_input(raw: str) -> dict[str, Any]:
    """Parse accumulated input JSON. Anything that isn't a JSON object becomes {}."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("tool_input_unparseable", length=len(raw))
        return {}
    return value if isinstance(value, dict) else {}


class ToolCallAssembler:
    """Opens tool calls on the active message and fills in their inputs.

    At most one call is open at a time: the model streams tool blocks one
    after another, so a fragment always belongs to the call opened last.
    """

    def __init__(self, message: Message, is_undoable: Callable[[str], bool]):
        self._message = message
        self._is_undoable = is_undoable
        self._active: ToolCall | None = None
        self._fragments: list[str] = []

    @property
    def active_call(self) -> ToolCall | None:
        return self._active

    def start(self, call_id: str, name: str) -> ToolCall:
        if self._active is not None:
            raise ToolCallProtocolError(
                f"Tool call '{call_id}' started while '{self._active.id}' is still open"
            )
        if self._message.find_tool_call(call_id) is not None:
            raise ToolCallProtocolError(f"Duplicate tool call id '{call_id}'")

        call = ToolCall(id=call_id, name=name, undoable=self._is_undoable(name))
        if self._message.tool_calls is None:
            self._message.tool_calls = []
        self._message.tool_calls.append(call)
        self._active = call
        self._fragments = []
        return call

    def append(self, fragment: str) -> None:
        if self._active is None:
            logger.debug("tool_input_delta_without_call", length=len(fragment))
            return
        self._fragments.append(fragment)

    def close(self) -> ToolCall | None:
        """Finish the open call, if any. Text and thinking blocks close with nothing open."""
        call = self._active
        if call is None:
            return None
        call.freeze_input(parse_tool_input("".join(self._fragments)))
        self._active = None
        self._fragments = []
        return call

    def abandon(self) -> ToolCall | None:
        """Drop an open call whose block never closed (stream ended early)."""
        call = self._active
        if call is None:
            return None
        call.freeze_input({})
        self._active = None
        self._fragments = []
        return call
