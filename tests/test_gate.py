from __future__ import annotations

import asyncio

from forge_agent.ai.gate import ExecutionGate, execute_tool_call
from forge_agent.chat.models import Message, ToolCall
from forge_agent.core.types import Role, ToolCallStatus
from forge_agent.documents.store import ToolExecutionResult

from stubs import RecordingStore


def _call(call_id: str, name: str = "spawn_entity", **tool_input) -> ToolCall:
    call = ToolCall(id=call_id, name=name, undoable=True)
    call.freeze_input(tool_input)
    return call


def _message(*calls: ToolCall) -> Message:
    return Message(role=Role.ASSISTANT, tool_calls=list(calls))


def test_successful_execution_records_result() -> None:
    store = RecordingStore()
    call = _call("toolu_1", size=1)
    asyncio.run(execute_tool_call(store, call))
    assert call.status == ToolCallStatus.SUCCESS
    assert call.result == {"ok": True}
    assert store.calls == [("spawn_entity", {"size": 1})]


def test_failed_execution_records_error() -> None:
    store = RecordingStore(outcome=lambda name, _: ToolExecutionResult(success=False))
    call = _call("toolu_1")
    asyncio.run(execute_tool_call(store, call))
    assert call.status == ToolCallStatus.ERROR
    assert call.error == "Unknown error"


def test_raising_executor_only_fails_its_own_call() -> None:
    def outcome(name, tool_input):
        if tool_input.get("explode"):
            raise RuntimeError("bad")
        return ToolExecutionResult(success=True, result="done")

    store = RecordingStore(outcome=outcome)
    bad, good = _call("toolu_1", explode=True), _call("toolu_2")

    async def run() -> None:
        await execute_tool_call(store, bad)
        await execute_tool_call(store, good)

    asyncio.run(run())
    assert bad.status == ToolCallStatus.ERROR
    assert bad.error == "bad"
    assert good.status == ToolCallStatus.SUCCESS
    assert len(store.calls) == 2


def test_ungated_calls_run_on_submit() -> None:
    store = RecordingStore()
    gate = ExecutionGate(store, approval_gated=False)
    call = _call("toolu_1")
    asyncio.run(gate.submit(call))
    assert call.status == ToolCallStatus.SUCCESS


def test_gated_final_round_leaves_calls_in_preview() -> None:
    store = RecordingStore()
    gate = ExecutionGate(store, approval_gated=True)
    first, second = _call("toolu_1"), _call("toolu_2")
    message = _message(first, second)

    async def run() -> None:
        await gate.submit(first)
        await gate.submit(second)
        assert first.status == ToolCallStatus.PENDING
        await gate.finish_round("end_turn", message)

    asyncio.run(run())
    assert [c.status for c in message.tool_calls] == [ToolCallStatus.PREVIEW] * 2
    assert store.calls == []


def test_gated_tool_use_round_executes_deferred_in_order() -> None:
    store = RecordingStore()
    gate = ExecutionGate(store, approval_gated=True)
    calls = [_call("toolu_1", name="a"), _call("toolu_2", name="b")]
    message = _message(*calls)

    async def run() -> None:
        for call in calls:
            await gate.submit(call)
        await gate.finish_round("tool_use", message)

    asyncio.run(run())
    assert [name for name, _ in store.calls] == ["a", "b"]
    assert all(c.status == ToolCallStatus.SUCCESS for c in calls)


def test_finish_round_without_deferred_calls_changes_nothing() -> None:
    store = RecordingStore()
    gate = ExecutionGate(store, approval_gated=True)
    stale = _call("toolu_1")
    message = _message(stale)
    asyncio.run(gate.finish_round("end_turn", message))
    assert stale.status == ToolCallStatus.PENDING
