"""Conversation orchestrator.

Owns the global idle/thinking state, the inbound FIFO queue and trigger
detection, hands work to the agent worker one invocation at a time, and
delivers results back to the originating channel.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable

from clawbridge.agent.events import (
    TERMINAL_EVENTS,
    CompactCommand,
    CompactDoneEvent,
    ErrorEvent,
    InvokeCommand,
    ResponseEvent,
    TaskCreatedEvent,
    ThinkingLogEvent,
    TokenUsageEvent,
    ToolActivityEvent,
    TypingEvent,
    WorkerEvent,
)
from clawbridge.agent.worker import AgentWorker
from clawbridge.channels.base import MessageCallback, Router
from clawbridge.config import Settings, build_trigger_pattern
from clawbridge.db import Database
from clawbridge.models import (
    SCHEDULED_TASK_MARKER,
    InboundMessage,
    OrchestratorState,
    StoredMessage,
    new_id,
)
from clawbridge.notifications import CompletionCue
from clawbridge.tools.files_tool import GroupFileStore

LOGGER = logging.getLogger(__name__)

ASSISTANT_NAME_KEY = "assistant_name"
ERROR_PREFIX = "⚠️ Error: "
COMPACTED_PREFIX = "📝 **Context Compacted**\n\n"


class EventBus:
    """Minimal synchronous pub/sub used for UI-facing notifications."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}

    def on(self, event: str, callback: Callable[[Any], None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[[Any], None]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, event: str, data: Any = None) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback(data)


def build_system_prompt(assistant_name: str, tool_catalog: str, memory: str) -> str:
    parts = [
        f"You are {assistant_name}, a personal AI assistant.",
        "",
        "## TOOLS AVAILABLE",
        tool_catalog,
        "",
        "## RULES",
        "",
        "1. **Act, don't describe.** Respond to actionable requests with tool calls, not explanations of what you plan to do.",
        "2. **Be autonomous.** If a tool call fails or returns no data, try a different approach without asking for permission.",
        "3. **Minimize fetch_url calls.** Prefer one structured API call over several page scrapes.",
        "4. Be concise. Use tools proactively. Update memory for important context.",
        "5. Wrap private reasoning in <internal>...</internal>; it is removed before delivery.",
    ]
    if memory:
        parts.extend(["", "## Persistent Memory", "", memory])
    return "\n".join(parts)


class Orchestrator:
    """Single-flight coordinator between channels, storage and the agent worker."""

    def __init__(
        self,
        settings: Settings,
        db: Database,
        files: GroupFileStore,
        worker: AgentWorker,
        router: Router,
        tool_catalog: str = "",
        cue: CompletionCue | None = None,
    ) -> None:
        self._settings = settings
        self._db = db
        self._files = files
        self._worker = worker
        self._router = router
        self._tool_catalog = tool_catalog
        self._cue = cue or CompletionCue()
        self.events = EventBus()

        self._assistant_name = db.get_config(ASSISTANT_NAME_KEY) or settings.assistant_name
        self._trigger_pattern = build_trigger_pattern(self._assistant_name)
        self._state = OrchestratorState.IDLE
        self._queue: deque[InboundMessage] = deque()
        self._processing = False
        self._pending: asyncio.Future[WorkerEvent] | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: asyncio.Task[None] | None = None
        self._pump_task: asyncio.Task[None] | None = None

    # -- lifecycle ---------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def assistant_name(self) -> str:
        return self._assistant_name

    def start(self, on_message: MessageCallback | None = None) -> None:
        """Subscribe to every routed channel and start consuming worker events."""

        for channel in self._router.channels:
            channel.on_message(on_message or self.enqueue)
        self._pump_task = asyncio.create_task(self._pump_events(), name="orchestrator-events")

    async def shutdown(self) -> None:
        for task in (self._pump_task, self._drain_task):
            if task is not None:
                task.cancel()
        await asyncio.gather(
            *(task for task in (self._pump_task, self._drain_task) if task is not None),
            return_exceptions=True,
        )

    async def wait_idle(self) -> None:
        """Return once the queue is empty and no invocation is running."""

        await self._idle.wait()

    def set_assistant_name(self, name: str) -> None:
        self._assistant_name = name
        self._trigger_pattern = build_trigger_pattern(name)
        self._db.set_config(ASSISTANT_NAME_KEY, name)

    def _set_state(self, state: OrchestratorState) -> None:
        self._state = state
        self.events.emit("state-change", state)

    # -- inbound -----------------------------------------------------------

    def is_trigger(self, message: InboundMessage) -> bool:
        if message.group_id == self._settings.primary_group_id:
            return True
        return bool(self._trigger_pattern.search(message.content.strip()))

    async def enqueue(self, message: InboundMessage, force_trigger: bool = False) -> bool:
        """Persist an inbound message and queue it when it is a trigger."""

        trigger = force_trigger or self.is_trigger(message)
        stored = StoredMessage(
            id=message.id,
            group_id=message.group_id,
            sender=message.sender,
            content=message.content,
            timestamp=message.timestamp,
            channel=message.channel,
            is_from_me=False,
            is_trigger=trigger,
        )
        self._db.save_message(stored)
        self.events.emit("message", stored)

        if trigger:
            self._queue.append(message)
            self._idle.clear()
            self._schedule_drain()
        return trigger

    async def invoke_scheduled(self, group_id: str, prompt: str) -> None:
        """Entry point for the task scheduler."""

        content = prompt if prompt.startswith(SCHEDULED_TASK_MARKER) else f"{SCHEDULED_TASK_MARKER} {prompt}"
        await self.enqueue(
            InboundMessage(
                id=new_id(),
                group_id=group_id,
                sender="Scheduler",
                content=content,
                timestamp=time.time(),
                channel=self._router.channel_name(group_id),
            ),
            force_trigger=True,
        )

    def _schedule_drain(self) -> None:
        if self._processing or (self._drain_task is not None and not self._drain_task.done()):
            return
        self._drain_task = asyncio.create_task(self.drain(), name="orchestrator-drain")

    async def drain(self) -> None:
        """Process queued triggers one at a time until the queue is empty."""

        if self._processing or not self._queue:
            return
        self._processing = True
        try:
            while self._queue:
                message = self._queue.popleft()
                await self._process(message)
        finally:
            self._processing = False
            if not self._queue:
                self._idle.set()

    async def _process(self, message: InboundMessage) -> None:
        group_id = message.group_id
        self._set_state(OrchestratorState.THINKING)
        await self._typing(group_id, True)
        try:
            command = InvokeCommand(
                group_id=group_id,
                messages=self._db.build_conversation_messages(group_id, self._settings.context_window_size),
                system_prompt=self._system_prompt(group_id),
                model=self._settings.model,
                max_tokens=self._settings.max_tokens,
            )
            outcome = await self._submit(command)
            if isinstance(outcome, ResponseEvent):
                delivered = await self._deliver(group_id, outcome.text)
                if delivered and message.is_scheduled_task:
                    self._cue.play()
            elif isinstance(outcome, ErrorEvent):
                self.events.emit("error", {"groupId": group_id, "error": outcome.error})
                await self._deliver(group_id, ERROR_PREFIX + outcome.error)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Failed to process message for %s", group_id)
            await self._deliver(group_id, ERROR_PREFIX + str(exc))
        finally:
            await self._typing(group_id, False)
            self._set_state(OrchestratorState.IDLE)

    def _system_prompt(self, group_id: str) -> str:
        memory = self._files.read_memory(group_id)
        return build_system_prompt(self._assistant_name, self._tool_catalog, memory)

    async def _submit(self, command: InvokeCommand | CompactCommand) -> WorkerEvent:
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        self._worker.post(command)
        try:
            return await self._pending
        finally:
            self._pending = None

    # -- outbound ----------------------------------------------------------

    async def _typing(self, group_id: str, typing: bool) -> None:
        self.events.emit("typing", {"groupId": group_id, "typing": typing})
        try:
            await self._router.set_typing(group_id, typing)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Could not update typing state for %s", group_id)

    async def _deliver(self, group_id: str, text: str) -> bool:
        """Persist and route a reply; empty text only resets typing."""

        if not text:
            return False
        stored = StoredMessage(
            id=new_id(),
            group_id=group_id,
            sender=self._assistant_name,
            content=text,
            timestamp=time.time(),
            channel=self._router.channel_name(group_id),
            is_from_me=True,
            is_trigger=False,
        )
        self._db.save_message(stored)
        await self._router.send(group_id, text)
        self.events.emit("message", stored)
        return True

    # -- sessions ----------------------------------------------------------

    async def new_session(self, group_id: str) -> None:
        self._db.clear_group_messages(group_id)
        self.events.emit("session-reset", {"groupId": group_id})

    async def compact_context(self, group_id: str) -> bool:
        """Summarize the group history and replace it with the summary."""

        if self._processing or self._state is not OrchestratorState.IDLE:
            self.events.emit(
                "error",
                {
                    "groupId": group_id,
                    "error": "Cannot compact while processing. Wait for the current response to finish.",
                },
            )
            return False

        self._processing = True
        self._idle.clear()
        self._set_state(OrchestratorState.THINKING)
        await self._typing(group_id, True)
        try:
            outcome = await self._submit(
                CompactCommand(
                    group_id=group_id,
                    messages=self._db.build_conversation_messages(group_id, self._settings.context_window_size),
                    system_prompt=self._system_prompt(group_id),
                    model=self._settings.model,
                    max_tokens=self._settings.max_tokens,
                )
            )
            if isinstance(outcome, CompactDoneEvent):
                self._db.replace_group_messages(
                    group_id,
                    StoredMessage(
                        id=new_id(),
                        group_id=group_id,
                        sender=self._assistant_name,
                        content=COMPACTED_PREFIX + outcome.summary,
                        timestamp=time.time(),
                        channel=self._router.channel_name(group_id),
                        is_from_me=True,
                    ),
                )
                self.events.emit("context-compacted", {"groupId": group_id, "summary": outcome.summary})
                return True
            if isinstance(outcome, ErrorEvent):
                self.events.emit("error", {"groupId": group_id, "error": outcome.error})
                await self._deliver(group_id, ERROR_PREFIX + outcome.error)
            return False
        finally:
            await self._typing(group_id, False)
            self._set_state(OrchestratorState.IDLE)
            self._processing = False
            if self._queue:
                self._schedule_drain()
            else:
                self._idle.set()

    # -- worker events -----------------------------------------------------

    async def _pump_events(self) -> None:
        while True:
            event = await self._worker.events.get()
            try:
                await self.handle_worker_event(event)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to handle worker event %r", event)

    async def handle_worker_event(self, event: WorkerEvent) -> None:
        if isinstance(event, TERMINAL_EVENTS):
            if self._pending is not None and not self._pending.done():
                self._pending.set_result(event)
            elif isinstance(event, ErrorEvent):
                await self._deliver(event.group_id, ERROR_PREFIX + event.error)
            else:
                LOGGER.warning("Dropping %s with no pending invocation", type(event).__name__)
        elif isinstance(event, TypingEvent):
            await self._typing(event.group_id, True)
        elif isinstance(event, ToolActivityEvent):
            self.events.emit("tool-activity", event)
        elif isinstance(event, ThinkingLogEvent):
            self.events.emit("thinking-log", event)
        elif isinstance(event, TokenUsageEvent):
            self.events.emit("token-usage", event.usage)
        elif isinstance(event, TaskCreatedEvent):
            self._db.save_task(event.task)
            LOGGER.info("Saved scheduled task %s for %s", event.task.id, event.task.group_id)
