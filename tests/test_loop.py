from unittest.mock import AsyncMock

import pytest

from clawbridge.agent.events import ThinkingLogEvent, TokenUsageEvent, ToolActivityEvent
from clawbridge.agent.loop import (
    CANCELLED_TEXT,
    COMPACTION_REQUEST,
    EMPTY_TURN_TEXT,
    ITERATION_CAP_TEXT,
    MAX_TOOL_OUTPUT_CHARS,
    NUDGE_MESSAGES,
    ToolUseLoop,
    strip_internal,
)
from clawbridge.errors import BackendError
from clawbridge.models import AgentInvocation, ToolDefinition

TOOLS = [ToolDefinition("list_files", "Get the time", {"type": "object", "properties": {}})]


def _text(text: str, stop_reason: str = "end_turn") -> dict:
    return {
        "content": [{"type": "text", "text": text}],
        "stop_reason": stop_reason,
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


def _tool_call(call_id: str = "call_1", name: str = "list_files", arguments: dict | None = None) -> dict:
    return {
        "content": [{"type": "tool_use", "id": call_id, "name": name, "input": arguments or {}}],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


class FakeProvider:
    def __init__(self, responses) -> None:
        self._responses = list(responses)
        self.requests: list[dict] = []

    async def complete(self, request):  # noqa: ANN001, ANN201
        self.requests.append({**request, "messages": list(request["messages"])})
        return self._responses.pop(0)


class RepeatingProvider(FakeProvider):
    def __init__(self, response) -> None:
        super().__init__([])
        self._response = response

    async def complete(self, request):  # noqa: ANN001, ANN201
        self.requests.append({**request, "messages": list(request["messages"])})
        return self._response


def _invocation() -> AgentInvocation:
    return AgentInvocation(group_id="cli:main", messages=[{"role": "user", "content": "You: hi"}], system_prompt="sys")


def _loop(provider, executor=None, events=None) -> ToolUseLoop:
    if executor is None:
        executor = AsyncMock()
        executor.execute.return_value = '{"utc_time": "now"}'
    sink = events if events is not None else []
    return ToolUseLoop(provider, executor, TOOLS, emit=sink.append)


@pytest.mark.asyncio
async def test_tool_round_then_final_text():
    provider = FakeProvider([_tool_call(), _text("It is noon.")])
    executor = AsyncMock()
    executor.execute.return_value = "noon"
    events: list = []
    invocation = _invocation()

    text = await _loop(provider, executor, events).run(invocation, "claude-sonnet-4-6", 1024)

    assert text == "It is noon."
    executor.execute.assert_awaited_once_with("list_files", {}, "cli:main")
    second = provider.requests[1]["messages"]
    assert second[-2]["role"] == "assistant"
    assert second[-1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "noon"}],
    }
    assert provider.requests[0]["tools"][0]["name"] == "list_files"
    assert invocation.has_used_tools is True
    statuses = [event.status for event in events if isinstance(event, ToolActivityEvent)]
    assert statuses == ["running", "done"]
    usage = [event for event in events if isinstance(event, TokenUsageEvent)]
    assert len(usage) == 2
    assert usage[0].usage.context_limit == 200_000
    assert invocation.input_tokens == 20


@pytest.mark.asyncio
async def test_iteration_cap_stops_after_25_calls():
    provider = RepeatingProvider(_tool_call())

    text = await _loop(provider).run(_invocation(), "claude-sonnet-4-6", 1024)

    assert text == ITERATION_CAP_TEXT
    assert len(provider.requests) == 25


@pytest.mark.asyncio
async def test_text_only_answers_are_nudged_with_escalating_messages():
    provider = RepeatingProvider(_text("I would check the time."))
    invocation = _invocation()

    text = await _loop(provider).run(invocation, "claude-sonnet-4-6", 1024)

    assert text == "I would check the time."
    assert len(provider.requests) == 6
    assert invocation.auto_continue_count == 5
    nudges = [request["messages"][-1]["content"] for request in provider.requests[1:]]
    assert nudges[0] == NUDGE_MESSAGES[0]
    assert nudges[1] == NUDGE_MESSAGES[1]
    assert set(nudges[2:]) == {NUDGE_MESSAGES[2]}
    assert len(set(nudges)) == 3


@pytest.mark.asyncio
async def test_final_text_after_tools_is_not_nudged():
    provider = FakeProvider([_tool_call(), _text("done")])

    await _loop(provider).run(_invocation(), "m", 1024)

    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_empty_text_after_tools_is_nudged():
    provider = FakeProvider([_tool_call(), _text(""), _text("finally")])

    text = await _loop(provider).run(_invocation(), "m", 1024)

    assert text == "finally"
    assert len(provider.requests) == 3


@pytest.mark.asyncio
async def test_empty_answer_is_replaced_by_placeholder_turn_before_nudge():
    empty = {"content": [], "stop_reason": "end_turn", "usage": {}}
    provider = FakeProvider([_tool_call(), empty, _text("finally")])

    await _loop(provider).run(_invocation(), "m", 1024)

    assistant_turn, nudge = provider.requests[2]["messages"][-2:]
    assert assistant_turn == {"role": "assistant", "content": [{"type": "text", "text": EMPTY_TURN_TEXT}]}
    assert nudge == {"role": "user", "content": NUDGE_MESSAGES[0]}


@pytest.mark.asyncio
async def test_internal_reasoning_is_removed():
    provider = FakeProvider([_tool_call(), _text("<internal>plan</internal>Answer")])

    assert await _loop(provider).run(_invocation(), "m", 1024) == "Answer"
    assert strip_internal("a<internal>\nx\n</internal>b") == "ab"


@pytest.mark.asyncio
async def test_tool_output_is_truncated():
    provider = FakeProvider([_tool_call(), _text("ok")])
    executor = AsyncMock()
    executor.execute.return_value = "x" * (MAX_TOOL_OUTPUT_CHARS + 10)

    await _loop(provider, executor).run(_invocation(), "m", 1024)

    result = provider.requests[1]["messages"][-1]["content"][0]["content"]
    assert len(result) == MAX_TOOL_OUTPUT_CHARS


@pytest.mark.asyncio
async def test_cancel_stops_before_next_call():
    loop: ToolUseLoop
    executor = AsyncMock()

    async def execute(name, arguments, group_id):  # noqa: ANN001, ANN202
        loop.cancel()
        return "ok"

    executor.execute.side_effect = execute
    provider = RepeatingProvider(_tool_call())
    loop = _loop(provider, executor)

    text = await loop.run(_invocation(), "m", 1024)

    assert text == CANCELLED_TEXT
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_backend_errors_propagate():
    provider = AsyncMock()
    provider.complete.side_effect = BackendError(500, "boom")

    with pytest.raises(BackendError):
        await _loop(provider).run(_invocation(), "m", 1024)


@pytest.mark.asyncio
async def test_compact_sends_summary_request_without_tools():
    provider = FakeProvider([_text("  summary of chat  ")])
    events: list = []
    messages = [{"role": "user", "content": "You: hi"}, {"role": "assistant", "content": "hello"}]

    summary = await _loop(provider, events=events).compact("cli:main", messages, "sys", "m", 8096)

    assert summary == "summary of chat"
    request = provider.requests[0]
    assert "tools" not in request
    assert request["max_tokens"] == 4096
    assert request["messages"][-1] == {"role": "user", "content": COMPACTION_REQUEST}
    assert "COMPACTION TASK" in request["system"]
    labels = [event.label for event in events if isinstance(event, ThinkingLogEvent)]
    assert "Compaction complete" in labels
