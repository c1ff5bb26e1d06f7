"""Convert the transcript to Anthropic API message format."""

from __future__ import annotations

import json
import re
from typing import Any

from forge_agent.chat.models import Message, ToolCall
from forge_agent.core.types import Role, ToolCallStatus

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def _image_block(image: str) -> dict[str, Any]:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": "image/png",
            "data": _DATA_URL_PREFIX.sub("", image),
        },
    }


def build_api_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert transcript messages into API messages.

    System messages are local only and are dropped. User images become image
    blocks placed before the text block.
    """
    api_messages: list[dict[str, Any]] = []
    for message in messages:
        if message.role == Role.SYSTEM:
            continue
        if message.role == Role.USER and message.images:
            content: list[dict[str, Any]] = [_image_block(img) for img in message.images]
            content.append({"type": "text", "text": message.content})
            api_messages.append({"role": "user", "content": content})
        else:
            api_messages.append({"role": message.role.value, "content": message.content})
    return api_messages


def format_entity_refs(text: str, entity_refs: dict[str, str] | None) -> str:
    """Append the @-mentioned entities so the model knows their ids."""
    if not entity_refs:
        return text
    ref_list = ", ".join(f"{name} (id: {entity_id})" for name, entity_id in entity_refs.items())
    return f"{text}\n\n[Referenced entities: {ref_list}]"


def tool_result_content(call: ToolCall) -> str:
    if call.status == ToolCallStatus.ERROR:
        return f"Error: {call.error or 'Unknown error'}"
    if call.result is None or call.result == "":
        return "Success"
    if isinstance(call.result, str):
        return call.result
    return json.dumps(call.result, default=str)


def build_follow_up(text: str, tool_calls: list[ToolCall]) -> list[dict[str, Any]]:
    """Build the assistant tool_use block and the matching tool_result block.

    The assistant block carries the round's text plus the tool calls it
    requested; the user block carries one result per call.
    """
    assistant_content: list[dict[str, Any]] = []
    if text:
        assistant_content.append({"type": "text", "text": text})
    for call in tool_calls:
        assistant_content.append(
            {
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": dict(call.input),
            }
        )

    result_content = [
        {
            "type": "tool_result",
            "tool_use_id": call.id,
            "content": tool_result_content(call),
            "is_error": call.status == ToolCallStatus.ERROR,
        }
        for call in tool_calls
    ]

    return [
        {"role": "assistant", "content": assistant_content},
        {"role": "user", "content": result_content},
    ]
