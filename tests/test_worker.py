import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from clawbridge.agent.events import (
    CancelCommand,
    CompactCommand,
    CompactDoneEvent,
    ErrorEvent,
    InvokeCommand,
    ResponseEvent,
    TaskCreatedEvent,
    TypingEvent,
)
from clawbridge.agent.worker import AgentWorker
from clawbridge.errors import BackendError
from clawbridge.models import ScheduledTask


def _invoke(group_id: str = "cli:main") -> InvokeCommand:
    return InvokeCommand(
        group_id=group_id,
        messages=[{"role": "user", "content": "You: hi"}],
        system_prompt="sys",
        model="m",
        max_tokens=1024,
    )


async def _drain_until(worker: AgentWorker, kinds: tuple) -> list:
    seen = []
    while True:
        event = await asyncio.wait_for(worker.events.get(), timeout=2)
        seen.append(event)
        if isinstance(event, kinds):
            return seen


@pytest.mark.asyncio
async def test_invoke_emits_typing_then_response():
    engine = MagicMock()
    engine.run = AsyncMock(return_value="hello")
    worker = AgentWorker(engine)

    await worker.handle_invoke(_invoke())

    assert isinstance(worker.events.get_nowait(), TypingEvent)
    event = worker.events.get_nowait()
    assert event == ResponseEvent(group_id="cli:main", text="hello")


@pytest.mark.asyncio
async def test_invoke_failure_becomes_error_event():
    engine = MagicMock()
    engine.run = AsyncMock(side_effect=BackendError(429, "slow down"))
    worker = AgentWorker(engine)

    await worker.handle_invoke(_invoke("sig:+1"))

    worker.events.get_nowait()
    event = worker.events.get_nowait()
    assert isinstance(event, ErrorEvent)
    assert event.group_id == "sig:+1"
    assert "slow down" in event.error


@pytest.mark.asyncio
async def test_compact_failure_is_prefixed():
    engine = MagicMock()
    engine.compact = AsyncMock(side_effect=RuntimeError("no backend"))
    worker = AgentWorker(engine)

    await worker.handle_compact(
        CompactCommand(group_id="cli:main", messages=[], system_prompt="sys", model="m", max_tokens=1024)
    )

    worker.events.get_nowait()
    event = worker.events.get_nowait()
    assert event.error == "Compaction failed: no backend"


@pytest.mark.asyncio
async def test_commands_are_processed_serially_and_cancel_is_immediate():
    release = asyncio.Event()
    order: list[str] = []

    async def run(invocation, model, max_tokens):  # noqa: ANN001, ANN202
        order.append(f"start:{invocation.group_id}")
        await release.wait()
        order.append(f"end:{invocation.group_id}")
        return invocation.group_id

    engine = MagicMock()
    engine.run = AsyncMock(side_effect=run)
    engine.compact = AsyncMock(return_value="summary")
    worker = AgentWorker(engine)
    worker.start()
    try:
        worker.post(_invoke("a"))
        worker.post(_invoke("b"))
        worker.post(CancelCommand())
        await asyncio.sleep(0.05)

        assert order == ["start:a"]
        engine.cancel.assert_called_once()

        release.set()
        first = await _drain_until(worker, (ResponseEvent,))
        second = await _drain_until(worker, (ResponseEvent,))
        assert first[-1].text == "a"
        assert second[-1].text == "b"
        assert order == ["start:a", "end:a", "start:b", "end:b"]

        worker.post(
            CompactCommand(group_id="a", messages=[], system_prompt="sys", model="m", max_tokens=1024)
        )
        done = await _drain_until(worker, (CompactDoneEvent,))
        assert done[-1].summary == "summary"
    finally:
        await worker.stop()


def test_publish_task_created_emits_event():
    worker = AgentWorker()
    task = ScheduledTask(id="t1", group_id="cli:main", schedule="0 9 * * *", prompt="news")

    worker.publish_task_created(task)

    assert worker.events.get_nowait() == TaskCreatedEvent(task=task)


def test_start_without_engine_fails():
    with pytest.raises(RuntimeError):
        AgentWorker().start()
