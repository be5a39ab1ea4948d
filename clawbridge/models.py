"""Core domain models used across layers."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

SCHEDULED_TASK_MARKER = "[SCHEDULED TASK]"


def new_id() -> str:
    return uuid.uuid4().hex


class OrchestratorState(str, Enum):
    """Global processing state of the orchestrator."""

    IDLE = "idle"
    THINKING = "thinking"


@dataclass(slots=True)
class InboundMessage:
    """Message normalized by channel adapters."""

    id: str
    group_id: str
    sender: str
    content: str
    timestamp: float
    channel: str

    @property
    def is_scheduled_task(self) -> bool:
        return self.content.startswith(SCHEDULED_TASK_MARKER)


@dataclass(slots=True)
class StoredMessage:
    """Message as persisted in the conversation history."""

    id: str
    group_id: str
    sender: str
    content: str
    timestamp: float
    channel: str
    is_from_me: bool = False
    is_trigger: bool = False


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Backend-independent description of a callable tool."""

    name: str
    description: str
    parameters: dict[str, Any]

    def to_native(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.parameters}


@dataclass(frozen=True, slots=True)
class BearerToken:
    """Short-lived token issued in exchange for the long-lived credential."""

    token: str
    expires_at: float
    refresh_in: float = 0
    chat_enabled: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BearerToken:
        return cls(
            token=str(payload.get("token", "")),
            expires_at=float(payload.get("expires_at") or 0),
            refresh_in=float(payload.get("refresh_in") or 0),
            chat_enabled=bool(payload.get("chat_enabled", False)),
        )

    def needs_refresh(self, now: float | None = None, buffer_seconds: float = 60) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at - buffer_seconds


@dataclass(slots=True)
class TokenUsage:
    """Token accounting reported after each backend call."""

    group_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    context_limit: int = 0


@dataclass(slots=True)
class AgentInvocation:
    """Working state of one tool-use loop run."""

    group_id: str
    messages: list[dict[str, Any]]
    system_prompt: str
    iteration_count: int = 0
    auto_continue_count: int = 0
    has_used_tools: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0


@dataclass(slots=True)
class ScheduledTask:
    """Represents a persisted recurring task."""

    id: str
    group_id: str
    schedule: str
    prompt: str
    enabled: bool = True
    last_run: float | None = None
    created_at: float = field(default_factory=time.time)
