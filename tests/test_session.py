from __future__ import annotations

import asyncio

import pytest

from forge_agent.chat.session import ChatSession
from forge_agent.config import ChatConfig
from forge_agent.core.errors import CompletionError, ForgeAgentError, MessageNotFound
from forge_agent.core.types import Feedback, Role, ToolCallStatus
from forge_agent.documents.store import ToolExecutionResult
from forge_agent.storage.conversation_repo import ConversationRepository
from forge_agent.storage.database import Database

from stubs import RecordingStore, ScriptedService, frame, make_registry, tool_round


def _session(service, store=None, repo=None, **config) -> ChatSession:
    return ChatSession(
        service=service,
        store=store or RecordingStore(),
        tool_registry=make_registry(spawn_cube=True, get_scene_graph=False),
        config=ChatConfig(**config),
        repo=repo,
        context_builder=lambda snapshot: "## Scene",
    )


def _spawn_round(*call_ids: str, stop_reason: str = "end_turn", usage=None) -> list[bytes]:
    return tool_round(
        [(call_id, "spawn_cube", ['{"size": 1}']) for call_id in call_ids],
        stop_reason,
        text="On it.",
        usage=usage,
    )


def test_send_runs_tools_and_records_transcript() -> None:
    service = ScriptedService([_spawn_round("toolu_1")])
    store = RecordingStore()
    session = _session(service, store)
    updates: list[bool] = []
    session.subscribe(lambda s: updates.append(s.is_streaming))

    reply = asyncio.run(session.send_message("  make a cube  "))

    assert [m.role for m in session.messages] == [Role.USER, Role.ASSISTANT]
    assert session.messages[0].content == "make a cube"
    assert reply is session.messages[1]
    assert reply.content == "On it."
    assert reply.tool_calls[0].status == ToolCallStatus.SUCCESS
    assert store.calls == [("spawn_cube", {"size": 1})]
    assert session.is_streaming is False
    assert session.error is None
    assert updates[0] is True and updates[-1] is False
    assert service.requests[0].context == "## Scene"


def test_empty_input_is_not_sent() -> None:
    service = ScriptedService([_spawn_round("toolu_1")])
    session = _session(service)
    assert asyncio.run(session.send_message("  \x00 ")) is None
    assert session.messages == []
    assert service.requests == []


def test_unsubscribe_stops_notifications() -> None:
    session = _session(ScriptedService([tool_round([], "end_turn", text="hi")]))
    seen: list[int] = []
    unsubscribe = session.subscribe(lambda s: seen.append(1))
    unsubscribe()
    asyncio.run(session.send_message("hello"))
    assert seen == []


def test_gated_calls_wait_then_reject_without_executing() -> None:
    service = ScriptedService([_spawn_round("toolu_1", "toolu_2")])
    store = RecordingStore()
    session = _session(service, store, approval_mode=True)

    async def run():
        reply = await session.send_message("two cubes")
        assert [c.status for c in reply.tool_calls] == [ToolCallStatus.PREVIEW] * 2
        rejected = session.reject_tool_calls(reply.id)
        approved = await session.approve_tool_calls(reply.id)
        return reply, rejected, approved

    reply, rejected, approved = asyncio.run(run())

    assert len(rejected) == 2
    assert approved == []
    assert [c.status for c in reply.tool_calls] == [ToolCallStatus.REJECTED] * 2
    assert store.calls == []


def test_approve_runs_calls_in_order_past_failures() -> None:
    def outcome(name, tool_input):
        return ToolExecutionResult(success=tool_input["size"] != 2, error="too big")

    service = ScriptedService(
        [
            tool_round(
                [
                    ("toolu_1", "spawn_cube", ['{"size": 1}']),
                    ("toolu_2", "spawn_cube", ['{"size": 2}']),
                    ("toolu_3", "spawn_cube", ['{"size": 3}']),
                ],
                "end_turn",
            )
        ]
    )
    store = RecordingStore(outcome=outcome)
    session = _session(service, store, approval_mode=True)

    async def run():
        reply = await session.send_message("three cubes")
        await session.approve_tool_calls(reply.id)
        return reply

    reply = asyncio.run(run())

    assert [c.status for c in reply.tool_calls] == [
        ToolCallStatus.SUCCESS,
        ToolCallStatus.ERROR,
        ToolCallStatus.SUCCESS,
    ]
    assert reply.tool_calls[1].error == "too big"
    assert [tool_input["size"] for _, tool_input in store.calls] == [1, 2, 3]


def test_session_tokens_sum_over_sends_and_clear_resets() -> None:
    service = ScriptedService(
        [
            tool_round([], "end_turn", text="a", usage=(100, 20)),
            tool_round([], "end_turn", text="b", usage=(50, 10)),
        ]
    )
    session = _session(service)

    async def run():
        first = await session.send_message("one")
        second = await session.send_message("two")
        return first, second

    first, second = asyncio.run(run())

    assert first.token_cost == 120
    assert second.token_cost == 60
    assert (session.session_tokens.input_tokens, session.session_tokens.output_tokens) == (150, 30)
    # The second request carries the first exchange
    assert [m["role"] for m in service.requests[1].messages] == ["user", "assistant", "user"]

    session.clear_chat()
    assert session.messages == []
    assert session.session_tokens.total == 0


def test_send_while_streaming_is_ignored() -> None:
    service = ScriptedService([tool_round([], "end_turn", text="slow")], pause_at=(0, 0))
    session = _session(service)

    async def run():
        first = asyncio.create_task(session.send_message("first"))
        await service.reached.wait()
        second = await session.send_message("second")
        service.release.set()
        await first
        return second

    assert asyncio.run(run()) is None
    assert [m.content for m in session.messages] == ["first", "slow"]
    assert len(service.requests) == 1


def test_stop_streaming_cancels_quietly_and_keeps_usage() -> None:
    chunks = [
        frame(type="usage", inputTokens=40, outputTokens=2),
        frame(type="text_delta", text="Let me "),
        frame(type="text_delta", text="think"),
        frame(type="turn_complete"),
    ]
    service = ScriptedService([chunks], pause_at=(0, 2))
    session = _session(service)

    async def run():
        task = asyncio.create_task(session.send_message("go"))
        await service.reached.wait()
        assert session.stop_streaming() is True
        assert session.is_streaming is True
        assert session.stop_streaming() is False
        service.release.set()
        return await task

    reply = asyncio.run(run())

    assert session.error is None
    assert session.is_streaming is False
    assert reply.content == "Let me "
    assert reply.token_cost == 42
    assert session.session_tokens.total == 42
    assert service.closed_streams == 1


def test_stop_streaming_when_idle_returns_false() -> None:
    session = _session(ScriptedService([]))
    assert session.stop_streaming() is False


def test_transport_failure_sets_error() -> None:
    service = ScriptedService([], fail_with=CompletionError("boom", status_code=502))
    session = _session(service)

    reply = asyncio.run(session.send_message("hello"))

    assert session.error == "boom"
    assert session.is_streaming is False
    assert reply.token_cost == 0


def test_error_frame_surfaces_on_session() -> None:
    service = ScriptedService(
        [[frame(type="error", message="rate limited"), frame(type="turn_complete")]]
    )
    session = _session(service)
    asyncio.run(session.send_message("hello"))
    assert session.error == "rate limited"


def test_entity_refs_are_appended_to_user_text() -> None:
    service = ScriptedService([tool_round([], "end_turn", text="ok")])
    session = _session(service)

    asyncio.run(session.send_message("move @Cube up", entity_refs={"Cube": "3", "Lamp": "7"}))

    expected = "move @Cube up\n\n[Referenced entities: Cube (id: 3), Lamp (id: 7)]"
    assert session.messages[0].content == expected
    assert session.messages[0].entity_refs == {"Cube": "3", "Lamp": "7"}
    assert service.requests[0].messages[-1] == {"role": "user", "content": expected}


def test_images_are_sent_before_text() -> None:
    service = ScriptedService([tool_round([], "end_turn", text="nice")])
    session = _session(service)

    asyncio.run(session.send_message("", images=["data:image/png;base64,QUJD"]))

    content = service.requests[0].messages[-1]["content"]
    assert content[0]["source"]["data"] == "QUJD"
    assert content[1] == {"type": "text", "text": ""}


def test_unknown_message_id_raises() -> None:
    session = _session(ScriptedService([]))
    with pytest.raises(MessageNotFound):
        session.reject_tool_calls("msg_missing")
    with pytest.raises(MessageNotFound):
        session.batch_undo_message("msg_missing")
    with pytest.raises(MessageNotFound):
        session.set_message_feedback("msg_missing", "positive")


def test_feedback_is_recorded() -> None:
    session = _session(ScriptedService([tool_round([], "end_turn", text="ok")]))
    reply = asyncio.run(session.send_message("hi"))
    session.set_message_feedback(reply.id, "negative")
    assert reply.feedback == Feedback.NEGATIVE
    session.set_message_feedback(reply.id, None)
    assert reply.feedback is None


def test_approval_mode_change_mid_turn_applies_to_next_send() -> None:
    service = ScriptedService([_spawn_round("toolu_1"), _spawn_round("toolu_2")], pause_at=(0, 0))
    session = _session(service)

    async def run():
        task = asyncio.create_task(session.send_message("cube"))
        await service.reached.wait()
        session.set_approval_mode(True)
        service.release.set()
        first = await task
        second = await session.send_message("another")
        return first, second

    first, second = asyncio.run(run())

    assert first.tool_calls[0].status == ToolCallStatus.SUCCESS
    assert second.tool_calls[0].status == ToolCallStatus.PREVIEW


def test_batch_undo_marks_only_what_history_allowed() -> None:
    service = ScriptedService([_spawn_round("toolu_1", "toolu_2", "toolu_3")])
    store = RecordingStore()
    session = _session(service, store)

    reply = asyncio.run(session.send_message("three cubes"))
    # Only one step of history is left, e.g. after the user undid edits by hand
    store.history = 1

    undone = session.batch_undo_message(reply.id)

    assert [c.id for c in undone] == ["toolu_1"]
    assert [c.status for c in reply.tool_calls] == [
        ToolCallStatus.UNDONE,
        ToolCallStatus.SUCCESS,
        ToolCallStatus.SUCCESS,
    ]
    assert store.undo_calls == 1


def test_batch_undo_skips_queries_and_failures() -> None:
    def outcome(name, tool_input):
        return ToolExecutionResult(success=tool_input.get("ok", True), error="nope")

    service = ScriptedService(
        [
            tool_round(
                [
                    ("toolu_1", "get_scene_graph", ["{}"]),
                    ("toolu_2", "spawn_cube", ['{"ok": false}']),
                    ("toolu_3", "spawn_cube", ["{}"]),
                ],
                "end_turn",
            )
        ]
    )
    store = RecordingStore(outcome=outcome)
    session = _session(service, store)

    reply = asyncio.run(session.send_message("go"))
    undone = session.batch_undo_message(reply.id)

    assert [c.id for c in undone] == ["toolu_3"]
    assert reply.tool_calls[0].status == ToolCallStatus.SUCCESS
    assert reply.tool_calls[1].status == ToolCallStatus.ERROR
    assert session.batch_undo_message(reply.id) == []


def test_save_and_load_keep_latest_messages() -> None:
    script = [tool_round([], "end_turn", text=f"reply {i}") for i in range(30)]

    async def run():
        db = Database(":memory:")
        await db.initialize()
        try:
            repo = ConversationRepository(db)
            session = _session(ScriptedService(script), repo=repo)
            for i in range(30):
                await session.send_message(f"message {i}")
            kept = await session.save_conversation("proj")

            fresh = _session(ScriptedService([]), repo=repo)
            loaded = await fresh.load_conversation("proj")
            missing = await fresh.load_conversation("other")
            return kept, loaded, missing, fresh.messages
        finally:
            await db.close()

    kept, loaded, missing, messages = asyncio.run(run())

    assert kept == 50
    assert loaded is True
    assert missing is False
    assert len(messages) == 50
    assert messages[0].content == "message 5"
    assert messages[-1].content == "reply 29"


def test_persistence_requires_a_repository() -> None:
    session = _session(ScriptedService([]))
    with pytest.raises(ForgeAgentError):
        asyncio.run(session.save_conversation("proj"))
