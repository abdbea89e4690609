"""Tests for the orchestrator core."""

from __future__ import annotations

import asyncio

import pytest

from tests.mock_providers import (
    FailingProvider,
    HangingProvider,
    MockProvider,
    make_text_provider,
    make_tool_then_text_provider,
    malformed_tool_call_pass,
    multi_tool_call_pass,
    text_pass,
    tool_call_pass,
)
from tests.mock_tools import CancellingTool, EchoTool, FailingTool, SlowTool
from chatloop.llm.providers.base import CompletionError
from chatloop.llm.types import (
    AssistantMessage,
    DeltaEvent,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)
from chatloop.orchestrator.core import (
    CANCELLED_RESULT,
    DEPTH_LIMIT_NOTICE,
    Orchestrator,
    TurnState,
)
from chatloop.orchestrator.events import (
    EVENT_NOTICE,
    EVENT_TEXT_DELTA,
    EVENT_TOOL_CALLS,
    EVENT_TOOL_RESULT,
    EVENT_TURN_COMPLETE,
)
from chatloop.tools import ReadFileTool
from chatloop.tools.registry import ToolRegistry
from chatloop.types import ErrorCode


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def registry(echo_tool):
    return ToolRegistry([echo_tool, FailingTool()])


def _make_orchestrator(provider, registry, **kwargs):
    kwargs.setdefault("tool_timeout", 5.0)
    return Orchestrator(provider=provider, registry=registry, **kwargs)


async def _collect(orchestrator, user_input, cancel=None):
    return [event async for event in orchestrator.run(user_input, cancel)]


def _of_type(events, event_type):
    return [e for e in events if e.event_type == event_type]


def _tool_results(events):
    return [e.payload["result"] for e in _of_type(events, EVENT_TOOL_RESULT)]


class TestTextTurn:
    async def test_text_response_completes(self, registry):
        orch = _make_orchestrator(make_text_provider("Hello world!"), registry)
        events = await _collect(orch, "hi")

        text = "".join(e.payload["text"] for e in _of_type(events, EVENT_TEXT_DELTA))
        assert text == "Hello world!"
        assert orch.state is TurnState.DONE
        assert events[-1].event_type == EVENT_TURN_COMPLETE
        assert events[-1].payload == {"state": "done", "content": "Hello world!"}

        messages = orch.transcript.messages
        assert [type(m) for m in messages] == [UserMessage, AssistantMessage]
        assert messages[1].content == "Hello world!"
        assert messages[1].tool_calls is None

    async def test_trailing_whitespace_trimmed(self, registry):
        provider = MockProvider(passes=[[DeltaEvent(text="Answer.\n\n  ")]])
        orch = _make_orchestrator(provider, registry)
        await _collect(orch, "q")
        assert orch.transcript[-1].content == "Answer."

    async def test_empty_pass_appends_nothing(self, registry):
        orch = _make_orchestrator(MockProvider(passes=[[]]), registry)
        events = await _collect(orch, "hello?")

        assert orch.state is TurnState.DONE
        assert len(orch.transcript) == 1
        assert isinstance(orch.transcript[0], UserMessage)
        assert events[-1].payload["content"] is None

    async def test_whitespace_only_pass_appends_nothing(self, registry):
        provider = MockProvider(passes=[[DeltaEvent(text="  \n")]])
        orch = _make_orchestrator(provider, registry)
        await _collect(orch, "hello?")
        assert len(orch.transcript) == 1

    async def test_transcript_carries_over_turns(self, registry):
        provider = MockProvider(passes=[text_pass("first"), text_pass("second")])
        orch = _make_orchestrator(provider, registry)
        await _collect(orch, "one")
        await _collect(orch, "two")

        assert [m.content for m in orch.transcript] == ["one", "first", "two", "second"]
        assert [m.content for m in provider.last_messages] == ["one", "first", "two"]


class TestRequestShape:
    async def test_system_prompt_sent_but_not_stored(self, registry):
        provider = make_text_provider("ok")
        orch = _make_orchestrator(provider, registry, system_prompt="Be brief.")
        await _collect(orch, "hi")

        assert isinstance(provider.last_messages[0], SystemMessage)
        assert provider.last_messages[0].content == "Be brief."
        assert not any(isinstance(m, SystemMessage) for m in orch.transcript)

    async def test_tool_schemas_sent(self, registry):
        provider = make_text_provider("ok")
        orch = _make_orchestrator(provider, registry)
        await _collect(orch, "hi")

        names = [t["function"]["name"] for t in provider.last_tools]
        assert names == ["echo", "explode"]
        params = provider.last_tools[0]["function"]["parameters"]
        assert params["additionalProperties"] is False

    async def test_empty_registry_sends_no_tools(self):
        provider = make_text_provider("ok")
        orch = _make_orchestrator(provider, ToolRegistry())
        await _collect(orch, "hi")
        assert provider.last_tools is None

    async def test_stream_flag_forwarded(self, registry):
        provider = make_text_provider("ok")
        orch = _make_orchestrator(provider, registry, stream=False)
        await _collect(orch, "hi")
        assert provider.last_stream is False


class TestSuccessfulToolCall:
    async def test_echo_tool_lifecycle(self, registry, echo_tool):
        provider = make_tool_then_text_provider(
            "echo", {"message": "hello"}, "Echo result: hello", call_id="call_1"
        )
        orch = _make_orchestrator(provider, registry)
        events = await _collect(orch, "test echo")

        assert provider.call_count == 2
        assert echo_tool.calls == [{"message": "hello"}]
        assert orch.state is TurnState.DONE

        kinds = [e.event_type for e in events if e.event_type != EVENT_TEXT_DELTA]
        assert kinds == [EVENT_TOOL_CALLS, EVENT_TOOL_RESULT, EVENT_TURN_COMPLETE]

        messages = orch.transcript.messages
        assert [m.role for m in messages] == ["user", "assistant", "function", "assistant"]
        assert messages[1].tool_calls[0].id == "call_1"
        assert messages[2].tool_call_id == "call_1"
        assert messages[2].name == "echo"
        assert messages[2].content == "hello"
        assert messages[3].content == "Echo result: hello"

        # The second request carries the tool result
        assert isinstance(provider.last_messages[-1], ToolResultMessage)

    async def test_read_file_end_to_end(self, tmp_path, monkeypatch):
        (tmp_path / "a.txt").write_text("hello", encoding="utf-8")
        monkeypatch.chdir(tmp_path)

        provider = make_tool_then_text_provider(
            "read_file", {"path": "a.txt"}, "a.txt contains: hello"
        )
        orch = _make_orchestrator(provider, ToolRegistry([ReadFileTool()]))
        await _collect(orch, "what's in a.txt")

        messages = orch.transcript.messages
        assert [m.role for m in messages] == ["user", "assistant", "function", "assistant"]
        assert messages[0].content == "what's in a.txt"
        assert messages[1].tool_calls[0].name == "read_file"
        assert messages[1].tool_calls[0].arguments == {"path": "a.txt"}
        assert messages[2].content == "hello"
        assert messages[3].content == "a.txt contains: hello"

    async def test_text_alongside_tool_calls_kept(self, registry):
        provider = MockProvider(passes=[
            tool_call_pass("echo", {"message": "x"}, content_prefix="Let me check. "),
            text_pass("done"),
        ])
        orch = _make_orchestrator(provider, registry)
        await _collect(orch, "go")
        assert orch.transcript[1].content == "Let me check. "
        assert orch.transcript[1].tool_calls

    async def test_multiple_calls_run_in_slot_order(self, registry, echo_tool):
        provider = MockProvider(passes=[
            multi_tool_call_pass([
                ("echo", {"message": "first"}, "call_a"),
                ("echo", {"message": "second"}, "call_b"),
            ]),
            text_pass("both done"),
        ])
        orch = _make_orchestrator(provider, registry)
        await _collect(orch, "two calls")

        assert [c["message"] for c in echo_tool.calls] == ["first", "second"]
        results = [m for m in orch.transcript if isinstance(m, ToolResultMessage)]
        assert [r.tool_call_id for r in results] == ["call_a", "call_b"]


class TestToolFailures:
    async def _single_result(self, registry, tool_name, args, **kwargs):
        provider = make_tool_then_text_provider(tool_name, args, "noted")
        orch = _make_orchestrator(provider, registry, **kwargs)
        events = await _collect(orch, "go")
        assert orch.state is TurnState.DONE
        results = _tool_results(events)
        assert len(results) == 1
        return orch, results[0]

    async def test_unknown_tool(self, registry):
        orch, result = await self._single_result(registry, "nonexistent_tool", {"arg": "val"})
        assert result.success is False
        assert result.error_code == ErrorCode.UNKNOWN_TOOL
        assert result.content == "Tool nonexistent_tool is not implemented."
        assert orch.transcript[2].content == "Tool nonexistent_tool is not implemented."

    async def test_bad_args_produce_validation_error(self, registry, echo_tool):
        _, result = await self._single_result(registry, "echo", {"message": 12345})
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.content.startswith("Validation error:")
        assert echo_tool.calls == []

    async def test_extra_keys_rejected(self, registry, echo_tool):
        _, result = await self._single_result(
            registry, "echo", {"message": "hi", "extra": 1}
        )
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert echo_tool.calls == []

    async def test_tool_exception_becomes_result(self, registry):
        _, result = await self._single_result(registry, "explode", {})
        assert result.error_code == ErrorCode.TOOL_EXCEPTION
        assert result.content == "Error calling explode: kaboom"

    async def test_tool_timeout(self):
        registry = ToolRegistry([SlowTool()])
        _, result = await self._single_result(registry, "slow", {}, tool_timeout=0.05)
        assert result.error_code == ErrorCode.TIMEOUT

    async def test_malformed_arguments(self, registry, echo_tool):
        provider = MockProvider(passes=[malformed_tool_call_pass("echo"), text_pass("sorry")])
        orch = _make_orchestrator(provider, registry)
        events = await _collect(orch, "go")

        notices = _of_type(events, EVENT_NOTICE)
        assert len(notices) == 1
        assert notices[0].payload["level"] == "warning"
        assert "tool_call_json_parse_failed" in notices[0].payload["text"]

        result = _tool_results(events)[0]
        assert result.error_code == ErrorCode.INVALID_ARGUMENTS
        assert echo_tool.calls == []

        # The bad JSON is never echoed back to the service
        wire = orch.transcript[1].to_wire()
        assert wire["tool_calls"][0]["function"]["arguments"] == "{}"
        assert orch.state is TurnState.DONE


class TestPassBound:
    async def test_stops_after_four_passes(self, registry, echo_tool):
        provider = MockProvider(passes=[tool_call_pass("echo", {"message": "again"})])
        orch = _make_orchestrator(provider, registry)
        events = await _collect(orch, "loop forever")

        assert provider.call_count == 4
        assert orch.passes == 4
        assert orch.state is TurnState.ABORTED

        requests = [
            m for m in orch.transcript
            if isinstance(m, AssistantMessage) and m.tool_calls
        ]
        results = [m for m in orch.transcript if isinstance(m, ToolResultMessage)]
        assert len(requests) == 4
        assert len(results) == 4
        assert len(echo_tool.calls) == 4

        notices = [e.payload["text"] for e in _of_type(events, EVENT_NOTICE)]
        assert notices == [DEPTH_LIMIT_NOTICE]
        assert events[-1].payload["state"] == "aborted"

    async def test_custom_pass_bound(self, registry):
        provider = MockProvider(passes=[tool_call_pass("echo", {"message": "again"})])
        orch = _make_orchestrator(provider, registry, max_tool_passes=2)
        await _collect(orch, "loop")
        assert provider.call_count == 2

    async def test_transcript_usable_after_abort(self, registry):
        provider = MockProvider(passes=[
            tool_call_pass("echo", {"message": "a"}),
            tool_call_pass("echo", {"message": "b"}),
            text_pass("finally"),
        ])
        orch = _make_orchestrator(provider, registry, max_tool_passes=2)
        await _collect(orch, "first turn")
        assert orch.state is TurnState.ABORTED
        assert orch.transcript.pending_tool_call_ids() == []

        await _collect(orch, "second turn")
        assert orch.state is TurnState.DONE
        assert orch.transcript[-1].content == "finally"

    def test_rejects_zero_passes(self, registry):
        with pytest.raises(ValueError):
            Orchestrator(make_text_provider("x"), registry, max_tool_passes=0)


class TestTransportErrors:
    async def test_completion_error_propagates(self, registry):
        provider = FailingProvider(events=[DeltaEvent(text="partial")])
        orch = _make_orchestrator(provider, registry)

        with pytest.raises(CompletionError) as exc_info:
            await _collect(orch, "hi")

        assert exc_info.value.status_code == 500
        assert provider.call_count == 1
        assert orch.state is TurnState.ABORTED
        # The user message stays, nothing from the failed pass is appended
        assert [m.role for m in orch.transcript] == ["user"]


class TestCancellation:
    async def test_cancel_during_tool_execution_leaves_no_orphans(self, echo_tool):
        cancel = asyncio.Event()
        interrupter = CancellingTool(cancel)
        registry = ToolRegistry([echo_tool, interrupter])
        provider = MockProvider(passes=[
            multi_tool_call_pass([
                ("interrupt", {}, "call_1"),
                ("echo", {"message": "never"}, "call_2"),
            ]),
        ])
        orch = _make_orchestrator(provider, registry)
        events = await _collect(orch, "go", cancel)

        assert orch.state is TurnState.ABORTED
        assert provider.call_count == 1
        assert interrupter.call_count == 1
        assert echo_tool.calls == []

        results = [m for m in orch.transcript if isinstance(m, ToolResultMessage)]
        assert [r.tool_call_id for r in results] == ["call_1", "call_2"]
        assert results[1].content == "Tool call cancelled by user"
        assert results[1].name == "echo"
        assert orch.transcript.pending_tool_call_ids() == []

        notices = [e.payload["text"] for e in _of_type(events, EVENT_NOTICE)]
        assert notices == ["Interrupted."]
        assert events[-1].payload["state"] == "aborted"

    async def test_cancel_during_stream_appends_nothing(self, registry):
        cancel = asyncio.Event()
        provider = HangingProvider(events=[DeltaEvent(text="partial")])
        orch = _make_orchestrator(provider, registry)

        task = asyncio.create_task(_collect(orch, "hi", cancel))
        await asyncio.wait_for(provider.started.wait(), timeout=1.0)
        cancel.set()
        events = await asyncio.wait_for(task, timeout=1.0)

        assert provider.closed is True
        assert orch.state is TurnState.ABORTED
        assert [m.role for m in orch.transcript] == ["user"]
        assert events[-1].event_type == EVENT_TURN_COMPLETE

    async def test_task_cancel_during_tool_fills_results(self):
        slow = SlowTool()
        provider = MockProvider(passes=[tool_call_pass("slow", {}, call_id="call_s")])
        orch = _make_orchestrator(provider, ToolRegistry([slow]), tool_timeout=30.0)

        task = asyncio.create_task(_collect(orch, "hi"))
        await asyncio.wait_for(slow.started.wait(), timeout=1.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orch.state is TurnState.ABORTED
        assert orch.transcript.pending_tool_call_ids() == []
        assert orch.transcript[-1].content == "Tool call cancelled by user"

    async def test_consumer_closing_after_tool_calls_leaves_no_orphans(self, registry, echo_tool):
        provider = make_tool_then_text_provider("echo", {"message": "hi"}, "Done.")
        orch = _make_orchestrator(provider, registry)

        turn = orch.run("hello")
        async for event in turn:
            if event.event_type == EVENT_TOOL_CALLS:
                break
        await turn.aclose()

        assert orch.state is TurnState.ABORTED
        assert echo_tool.calls == []
        assert orch.transcript.pending_tool_call_ids() == []
        last = orch.transcript[-1]
        assert isinstance(last, ToolResultMessage)
        assert last.tool_call_id == "call_abc123"
        assert last.content == CANCELLED_RESULT

        # The next request carries a result for the abandoned call
        await _collect(orch, "again")
        assert [m.role for m in provider.last_messages] == [
            "user", "assistant", "function", "user",
        ]

    async def test_consumer_closing_after_completion_keeps_done(self, registry):
        orch = _make_orchestrator(make_text_provider("Hi"), registry)

        turn = orch.run("hello")
        async for event in turn:
            if event.event_type == EVENT_TURN_COMPLETE:
                break
        await turn.aclose()

        assert orch.state is TurnState.DONE
        assert [m.role for m in orch.transcript] == ["user", "assistant"]
