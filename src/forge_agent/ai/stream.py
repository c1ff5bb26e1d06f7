"""Decode the completion stream into typed events.

The wire format is server-sent-event style: one ``data: <json>`` line per
frame, frames separated by a blank line. Each JSON payload carries a ``type``
field naming one of the event kinds below. Frames can be split anywhere across
read chunks, including in the middle of a multi-byte character.
"""

from __future__ import annotations

import asyncio
import codecs
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Union, assert_never

from forge_agent.core.errors import StreamCancelled
from forge_agent.core.types import StopReason
from forge_agent.log import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ThinkingStart:
    pass


@dataclass(frozen=True, slots=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ToolStart:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class ToolInputDelta:
    json: str


@dataclass(frozen=True, slots=True)
class ContentBlockStop:
    index: int | None = None


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class TurnComplete:
    stop_reason: str = StopReason.END_TURN


@dataclass(frozen=True, slots=True)
class StreamError:
    message: str


StreamEvent = Union[
    TextDelta,
    ThinkingStart,
    ThinkingDelta,
    ToolStart,
    ToolInputDelta,
    ContentBlockStop,
    Usage,
    TurnComplete,
    StreamError,
]


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def parse_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Map a decoded JSON payload onto an event. Returns None for unknown kinds."""
    match payload.get("type"):
        case "text_delta":
            return TextDelta(text=str(payload.get("text") or ""))
        case "thinking_start":
            return ThinkingStart()
        case "thinking_delta":
            return ThinkingDelta(text=str(payload.get("text") or ""))
        case "tool_start":
            call_id = payload.get("id")
            name = payload.get("name")
            if not isinstance(call_id, str) or not isinstance(name, str):
                return None
            return ToolStart(id=call_id, name=name)
        case "tool_input_delta":
            return ToolInputDelta(json=str(payload.get("json") or ""))
        case "content_block_stop":
            index = payload.get("index")
            return ContentBlockStop(index=index if isinstance(index, int) else None)
        case "usage":
            return Usage(
                input_tokens=_as_int(payload.get("inputTokens")),
                output_tokens=_as_int(payload.get("outputTokens")),
            )
        case "turn_complete":
            return TurnComplete(stop_reason=payload.get("stop_reason") or StopReason.END_TURN)
        case "error":
            return StreamError(message=str(payload.get("message") or "Unknown stream error"))
        case _:
            return None


def encode_frame(event: StreamEvent) -> bytes:
    """Serialize an event into its wire frame."""
    match event:
        case TextDelta(text=text):
            payload: dict[str, Any] = {"type": "text_delta", "text": text}
        case ThinkingStart():
            payload = {"type": "thinking_start"}
        case ThinkingDelta(text=text):
            payload = {"type": "thinking_delta", "text": text}
        case ToolStart(id=call_id, name=name):
            payload = {"type": "tool_start", "id": call_id, "name": name}
        case ToolInputDelta(json=fragment):
            payload = {"type": "tool_input_delta", "json": fragment}
        case ContentBlockStop(index=index):
            payload = {"type": "content_block_stop", "index": index}
        case Usage(input_tokens=input_tokens, output_tokens=output_tokens):
            payload = {"type": "usage", "inputTokens": input_tokens, "outputTokens": output_tokens}
        case TurnComplete(stop_reason=stop_reason):
            payload = {"type": "turn_complete", "stop_reason": stop_reason}
        case StreamError(message=message):
            payload = {"type": "error", "message": message}
        case _:
            assert_never(event)
    return f"{DATA_PREFIX}{json.dumps(payload)}\n\n".encode("utf-8")


class StreamDecoder:
    """Incremental frame decoder. Feed it chunks, get events back in order."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        # Last element is an incomplete line (or "" when the chunk ended on a newline)
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX):]
            if data == DONE_SENTINEL:
                continue
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("stream_frame_skipped", reason="invalid_json", frame=data[:200])
                continue
            if not isinstance(payload, dict):
                logger.debug("stream_frame_skipped", reason="not_an_object", frame=data[:200])
                continue
            event = parse_event(payload)
            if event is None:
                logger.debug("stream_frame_skipped", reason="unknown_type", type=payload.get("type"))
                continue
            events.append(event)
        return events


async def decode_stream(
    chunks: AsyncIterator[bytes],
    cancel_event: asyncio.Event | None = None,
) -> AsyncIterator[StreamEvent]:
    """Yield events from a byte stream until it ends or is cancelled.

    The cancellation flag is checked before every read and before every
    yielded event. On cancellation the byte stream is closed and
    StreamCancelled is raised.
    """
    decoder = StreamDecoder()

    def _check_cancelled() -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise StreamCancelled("Stream cancelled")

    try:
        _check_cancelled()
        async for chunk in chunks:
            _check_cancelled()
            for event in decoder.feed(chunk):
                _check_cancelled()
                yield event
            _check_cancelled()
        # Backends end their byte stream quietly once cancelled
        _check_cancelled()
        for event in decoder.flush():
            _check_cancelled()
            yield event
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
