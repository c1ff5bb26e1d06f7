from __future__ import annotations

import asyncio

import pytest

from forge_agent.ai.stream import (
    ContentBlockStop,
    StreamDecoder,
    StreamError,
    TextDelta,
    ThinkingDelta,
    ThinkingStart,
    ToolInputDelta,
    ToolStart,
    TurnComplete,
    Usage,
    decode_stream,
    encode_frame,
)
from forge_agent.core.errors import StreamCancelled

from stubs import frame

SAMPLE = b"".join(
    [
        frame(type="thinking_start"),
        frame(type="thinking_delta", text="plan"),
        frame(type="text_delta", text="Creating a cube "),
        frame(type="tool_start", id="toolu_1", name="spawn_entity"),
        frame(type="tool_input_delta", json='{"entityType":'),
        frame(type="tool_input_delta", json='"cube"}'),
        frame(type="content_block_stop", index=1),
        frame(type="usage", inputTokens=12, outputTokens=7),
        frame(type="turn_complete", stop_reason="tool_use"),
    ]
)

EXPECTED = [
    ThinkingStart(),
    ThinkingDelta(text="plan"),
    TextDelta(text="Creating a cube "),
    ToolStart(id="toolu_1", name="spawn_entity"),
    ToolInputDelta(json='{"entityType":'),
    ToolInputDelta(json='"cube"}'),
    ContentBlockStop(index=1),
    Usage(input_tokens=12, output_tokens=7),
    TurnComplete(stop_reason="tool_use"),
]


def _decode_all(chunks: list[bytes]) -> list:
    decoder = StreamDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


def test_decodes_events_in_arrival_order() -> None:
    assert _decode_all([SAMPLE]) == EXPECTED


def test_split_at_any_byte_gives_same_events() -> None:
    for split in range(1, len(SAMPLE)):
        assert _decode_all([SAMPLE[:split], SAMPLE[split:]]) == EXPECTED, split


def test_byte_at_a_time_gives_same_events() -> None:
    assert _decode_all([SAMPLE[i : i + 1] for i in range(len(SAMPLE))]) == EXPECTED


def test_multibyte_character_split_across_chunks() -> None:
    data = 'data: {"type": "text_delta", "text": "큐브 🎲"}\n\n'.encode("utf-8")
    middle = data.index("큐".encode("utf-8")) + 1
    assert _decode_all([data[:middle], data[middle:]]) == [TextDelta(text="큐브 🎲")]


def test_malformed_and_unknown_frames_are_skipped() -> None:
    data = b"".join(
        [
            b"data: {not json\n\n",
            b"data: [1, 2]\n\n",
            frame(type="text_start"),
            frame(type="done"),
            b": keep-alive comment\n\n",
            b"event: ping\n\n",
            b"data: [DONE]\n\n",
            frame(type="tool_start", id=7),
            frame(type="text_delta", text="ok"),
        ]
    )
    assert _decode_all([data]) == [TextDelta(text="ok")]


def test_trailing_frame_without_newline_is_decoded_at_end() -> None:
    data = b'data: {"type": "text_delta", "text": "tail"}'
    assert _decode_all([data]) == [TextDelta(text="tail")]


def test_crlf_line_endings() -> None:
    data = b'data: {"type": "text_delta", "text": "a"}\r\n\r\n'
    assert _decode_all([data]) == [TextDelta(text="a")]


def test_usage_and_turn_complete_defaults() -> None:
    data = frame(type="usage", outputTokens=3) + frame(type="turn_complete") + frame(
        type="error"
    )
    assert _decode_all([data]) == [
        Usage(input_tokens=0, output_tokens=3),
        TurnComplete(stop_reason="end_turn"),
        StreamError(message="Unknown stream error"),
    ]


def test_encode_frame_is_understood_by_decoder() -> None:
    encoded = b"".join(encode_frame(event) for event in EXPECTED)
    assert _decode_all([encoded]) == EXPECTED


async def _chunks(parts: list[bytes], closed: list[bool]):
    try:
        for part in parts:
            yield part
    finally:
        closed.append(True)


def test_decode_stream_yields_all_events_and_closes_source() -> None:
    async def run() -> tuple[list, list[bool]]:
        closed: list[bool] = []
        events = [e async for e in decode_stream(_chunks([SAMPLE[:40], SAMPLE[40:]], closed))]
        return events, closed

    events, closed = asyncio.run(run())
    assert events == EXPECTED
    assert closed == [True]


def test_decode_stream_stops_when_cancelled() -> None:
    async def run() -> tuple[list, list[bool]]:
        closed: list[bool] = []
        cancel = asyncio.Event()
        parts = [frame(type="text_delta", text="a"), frame(type="text_delta", text="b")]
        seen = []
        with pytest.raises(StreamCancelled):
            async for event in decode_stream(_chunks(parts, closed), cancel):
                seen.append(event)
                cancel.set()
        return seen, closed

    seen, closed = asyncio.run(run())
    assert seen == [TextDelta(text="a")]
    assert closed == [True]


def test_decode_stream_cancelled_before_start_reads_nothing() -> None:
    async def run() -> list[bool]:
        closed: list[bool] = []
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(StreamCancelled):
            async for _ in decode_stream(_chunks([SAMPLE], closed), cancel):
                pass
        return closed

    assert asyncio.run(run()) == []


def test_null_text_fields_decode_as_empty() -> None:
    data = b"".join(
        [
            frame(type="text_delta", text=None),
            frame(type="thinking_delta", text=None),
            frame(type="tool_input_delta", json=None),
        ]
    )
    assert _decode_all([data]) == [TextDelta(text=""), ThinkingDelta(text=""), ToolInputDelta(json="")]


def test_source_that_stops_quietly_on_cancel_still_raises() -> None:
    async def run() -> list:
        cancel = asyncio.Event()
        waiting = asyncio.Event()
        resume = asyncio.Event()

        async def quiet_source():
            yield frame(type="text_delta", text="a")
            waiting.set()
            await resume.wait()
            # A backend that notices the cancel simply ends its stream
            if cancel.is_set():
                return
            yield frame(type="text_delta", text="b")

        seen = []

        async def consume() -> None:
            async for event in decode_stream(quiet_source(), cancel):
                seen.append(event)

        task = asyncio.create_task(consume())
        await waiting.wait()
        cancel.set()
        resume.set()
        with pytest.raises(StreamCancelled):
            await task
        return seen

    assert asyncio.run(run()) == [TextDelta(text="a")]
