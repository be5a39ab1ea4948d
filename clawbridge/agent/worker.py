"""Agent worker: runs the tool-use loop behind command and event queues.

The orchestrator never calls the loop directly. It posts commands and reads
events, so the two sides share no state besides the queues.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from clawbridge.agent.events import (
    CancelCommand,
    CompactCommand,
    CompactDoneEvent,
    ErrorEvent,
    InvokeCommand,
    ResponseEvent,
    TaskCreatedEvent,
    TypingEvent,
    WorkerCommand,
    WorkerEvent,
)
from clawbridge.agent.loop import ToolUseLoop
from clawbridge.errors import ClawbridgeError
from clawbridge.models import AgentInvocation, ScheduledTask

LOGGER = logging.getLogger(__name__)


class AgentWorker:
    """Processes invoke/compact commands one at a time; cancel applies to the active run."""

    def __init__(self, engine: ToolUseLoop | None = None) -> None:
        self.commands: asyncio.Queue[WorkerCommand] = asyncio.Queue()
        self.events: asyncio.Queue[WorkerEvent] = asyncio.Queue()
        self._jobs: asyncio.Queue[InvokeCommand | CompactCommand] = asyncio.Queue()
        self._engine = engine
        self._tasks: list[asyncio.Task[None]] = []

    def bind(self, engine: ToolUseLoop) -> None:
        self._engine = engine

    def emit(self, event: WorkerEvent) -> None:
        self.events.put_nowait(event)

    def post(self, command: WorkerCommand) -> None:
        self.commands.put_nowait(command)

    def publish_task_created(self, task: ScheduledTask) -> None:
        self.emit(TaskCreatedEvent(task=task))

    def start(self) -> None:
        if self._engine is None:
            raise RuntimeError("AgentWorker has no engine bound")
        self._tasks = [
            asyncio.create_task(self._read_commands(), name="agent-worker-commands"),
            asyncio.create_task(self._run_jobs(), name="agent-worker-jobs"),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _read_commands(self) -> None:
        while True:
            command = await self.commands.get()
            if isinstance(command, CancelCommand):
                assert self._engine is not None
                self._engine.cancel()
            else:
                self._jobs.put_nowait(command)

    async def _run_jobs(self) -> None:
        while True:
            job = await self._jobs.get()
            if isinstance(job, InvokeCommand):
                await self.handle_invoke(job)
            else:
                await self.handle_compact(job)

    async def handle_invoke(self, command: InvokeCommand) -> None:
        assert self._engine is not None
        self.emit(TypingEvent(group_id=command.group_id))
        invocation = AgentInvocation(
            group_id=command.group_id,
            messages=list(command.messages),
            system_prompt=command.system_prompt,
        )
        try:
            text = await self._engine.run(invocation, command.model, command.max_tokens)
        except (ClawbridgeError, httpx.HTTPError) as exc:
            LOGGER.warning("Invocation for %s failed: %s", command.group_id, exc)
            self.emit(ErrorEvent(group_id=command.group_id, error=str(exc)))
            return
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unexpected failure in invocation for %s", command.group_id)
            self.emit(ErrorEvent(group_id=command.group_id, error=str(exc)))
            return
        self.emit(ResponseEvent(group_id=command.group_id, text=text))

    async def handle_compact(self, command: CompactCommand) -> None:
        assert self._engine is not None
        self.emit(TypingEvent(group_id=command.group_id))
        try:
            summary = await self._engine.compact(
                command.group_id,
                list(command.messages),
                command.system_prompt,
                command.model,
                command.max_tokens,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Compaction for %s failed: %s", command.group_id, exc)
            self.emit(ErrorEvent(group_id=command.group_id, error=f"Compaction failed: {exc}"))
            return
        self.emit(CompactDoneEvent(group_id=command.group_id, summary=summary))
