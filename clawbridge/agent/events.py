"""Typed commands and events exchanged with the agent worker."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Union

from clawbridge.models import ScheduledTask, TokenUsage


@dataclass(slots=True)
class InvokeCommand:
    group_id: str
    messages: list[dict[str, Any]]
    system_prompt: str
    model: str
    max_tokens: int


@dataclass(slots=True)
class CompactCommand:
    group_id: str
    messages: list[dict[str, Any]]
    system_prompt: str
    model: str
    max_tokens: int


@dataclass(slots=True)
class CancelCommand:
    group_id: str | None = None


WorkerCommand = Union[InvokeCommand, CompactCommand, CancelCommand]


@dataclass(slots=True)
class TypingEvent:
    group_id: str


@dataclass(slots=True)
class ToolActivityEvent:
    group_id: str
    tool: str
    status: str


@dataclass(slots=True)
class ThinkingLogEvent:
    group_id: str
    kind: str
    label: str
    detail: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class TokenUsageEvent:
    usage: TokenUsage


@dataclass(slots=True)
class ResponseEvent:
    group_id: str
    text: str


@dataclass(slots=True)
class CompactDoneEvent:
    group_id: str
    summary: str


@dataclass(slots=True)
class TaskCreatedEvent:
    task: ScheduledTask


@dataclass(slots=True)
class ErrorEvent:
    group_id: str
    error: str


WorkerEvent = Union[
    TypingEvent,
    ToolActivityEvent,
    ThinkingLogEvent,
    TokenUsageEvent,
    ResponseEvent,
    CompactDoneEvent,
    TaskCreatedEvent,
    ErrorEvent,
]

TERMINAL_EVENTS = (ResponseEvent, CompactDoneEvent, ErrorEvent)
