"""End-to-end tests for ConversationRuntime."""

import asyncio
import json

from turnstile import create_runtime
from turnstile.engine.models import ApprovalEventType, ApprovalStatus, InteractionStatus, Message, Role


def _frame(event_type, data, event_id, message_id=None, session_id="s1"):
    return {
        "v": 2,
        "type": "agent_event",
        "payload": {
            "event_type": event_type,
            "session_id": session_id,
            "event_id": event_id,
            "message_id": message_id,
            "data": data,
        },
    }


def _tool_turn(tool_name="bash", call_id="X"):
    return [
        _frame("chunk", {"delta": "Let me check."}, "e1", "m1"),
        _frame("tool_call", {"tool_name": tool_name, "call_id": call_id, "tool_input": {"cmd": "ls"}}, "e2", "m1"),
        _frame("tool_result", {"call_id": call_id, "result": "a.txt"}, "e3", "m1"),
        _frame("chunk", {"delta": "One file."}, "e4", "m2"),
        _frame("done", {}, "e5"),
    ]


class TestRuntime:
    async def test_tool_turn_timeline(self, runtime):
        await runtime.add_message("s1", Message(id="u1", role=Role.USER, content="list files"))
        events = [e async for e in runtime.handle(_tool_turn())]
        assert len(events) == 5

        messages = await runtime.messages("s1")
        assert [m.role for m in messages] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        visible = await runtime.visible_messages("s1")
        assert [m.id for m in visible] == ["u1", messages[2].id, "m2"]
        assert await runtime.is_final("s1", messages[3])
        assert not await runtime.is_final("s1", messages[1])
        assert not messages[3].is_streaming

        responses = await runtime.responses("s1")
        assert len(responses) == 1 and responses[0].final_message.id == "m2"

        scoped = await runtime.interactions("s1", "m2")
        assert [(i.call.id, i.status) for i in scoped.interactions] == [("X", InteractionStatus.COMPLETED)]

    async def test_async_frame_source(self, runtime):
        async def frames():
            for frame in _tool_turn():
                yield json.dumps(frame)

        events = [e async for e in runtime.handle(frames())]
        assert [e.sequence for e in events] == [1, 2, 3, 4, 5]

    async def test_duplicate_frames_are_applied_once(self, runtime):
        frame = _frame("tool_call", {"tool_name": "bash", "call_id": "X"}, "e2", "m1")
        await runtime.ingest(frame)
        await runtime.ingest(frame)
        [message] = await runtime.messages("s1")
        assert len(message.content) == 1

    async def test_redelivered_tool_call_is_gated_once(self, runtime, bus):
        requested = []
        bus.subscribe(ApprovalEventType.APPROVAL_REQUESTED, requested.append)
        frame = _frame("tool_call", {"tool_name": "str_replace_editor", "call_id": "E1"}, "e2", "m1")

        assert await runtime.ingest(frame) is not None
        timeout_at = runtime.gatekeeper.get_invocation("E1").timeout_at
        await asyncio.sleep(0.01)
        assert await runtime.ingest(frame) is None

        assert len(requested) == 1
        assert runtime.gatekeeper.get_invocation("E1").timeout_at == timeout_at
        assert runtime.gatekeeper.armed_timers == 1

    async def test_sessions_in_arrival_order(self, runtime):
        await runtime.ingest(_frame("chunk", {"delta": "a"}, "e1", "m1", session_id="s2"))
        await runtime.ingest(_frame("chunk", {"delta": "b"}, "e1", "m1", session_id="s1"))
        await runtime.ingest("garbage")
        assert await runtime.sessions() == ["s2", "s1"]

        await runtime.close_session("s2")
        assert await runtime.sessions() == ["s1"]

    async def test_garbage_is_dropped(self, runtime):
        assert await runtime.ingest("not json") is None
        assert await runtime.messages("unknown") == []

    async def test_sensitive_call_is_gated(self, runtime):
        await runtime.ingest(_frame(
            "tool_call", {"tool_name": "str_replace_editor", "call_id": "E1"}, "e2", "m1",
        ))
        [pending] = runtime.pending_approvals("s1")
        assert pending.tool_use_id == "E1"
        assert pending.job_id == "e2"

        waiter = asyncio.create_task(runtime.clear_tool_call("s1", "E1"))
        await asyncio.sleep(0)
        assert await runtime.decide("E1", "APPROVED", "alice")
        assert await waiter is ApprovalStatus.APPROVED
        assert not await runtime.decide("E1", "REJECTED", "bob")
        assert runtime.pending_approvals("s1") == []

    async def test_unlisted_call_clears_immediately(self, runtime):
        await runtime.ingest(_frame("tool_call", {"tool_name": "cat", "call_id": "C1"}, "e2", "m1"))
        assert runtime.pending_approvals("s1") == []
        assert await runtime.clear_tool_call("s1", "C1") is ApprovalStatus.APPROVED

    async def test_unknown_call_fails_closed(self, runtime):
        assert await runtime.clear_tool_call("s1", "ghost") is ApprovalStatus.REJECTED

    async def test_close_session_cancels_timers_and_writes_trace(self, runtime, trace_collector):
        await runtime.ingest(_frame("tool_call", {"tool_name": "delete_file", "call_id": "D1"}, "e2", "m1"))
        assert runtime.gatekeeper.armed_timers == 1

        await runtime.close_session("s1")
        assert runtime.gatekeeper.armed_timers == 0
        assert await runtime.messages("s1") == []

        lines = trace_collector.path_for("s1").read_text().splitlines()
        kinds = [json.loads(line)["event"] for line in lines]
        assert kinds == ["ingest", "approval_requested", "session_closed"]

    async def test_sessions_are_independent(self, runtime):
        await runtime.ingest(_frame("chunk", {"delta": "a"}, "e1", "m1", session_id="s1"))
        await runtime.ingest(_frame("chunk", {"delta": "b"}, "e1", "m1", session_id="s2"))
        assert len(await runtime.messages("s1")) == 1
        assert len(await runtime.messages("s2")) == 1


class TestCreateRuntime:
    async def test_env_configuration(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TURNSTILE_APPROVAL_ENABLED", "true")
        monkeypatch.setenv("TURNSTILE_APPROVAL_TOOLS", "bash, /^rm/")
        monkeypatch.setenv("TURNSTILE_APPROVAL_TIMEOUT_MINUTES", "2")
        monkeypatch.setenv("TURNSTILE_EXCLUDED_TOOLS", "todo_write")
        runtime = create_runtime(trace_dir=str(tmp_path))
        try:
            config = runtime.gatekeeper.config
            assert config.approval_enabled
            assert config.default_timeout_minutes == 2
            assert runtime.gatekeeper.requires_approval("rmdir")
            assert not runtime.gatekeeper.requires_approval("cat")
        finally:
            await runtime.aclose()

    async def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.delenv("TURNSTILE_APPROVAL_ENABLED", raising=False)
        runtime = create_runtime(trace_dir=str(tmp_path))
        try:
            assert not runtime.gatekeeper.requires_approval("str_replace_editor")
        finally:
            await runtime.aclose()
