"""Tool-use loop: drives one conversation turn to a final answer."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Protocol

from clawbridge.agent.events import (
    ThinkingLogEvent,
    TokenUsageEvent,
    ToolActivityEvent,
    TypingEvent,
    WorkerEvent,
)
from clawbridge.llm.base import LLMProvider
from clawbridge.llm.translations import context_limit
from clawbridge.models import AgentInvocation, TokenUsage, ToolDefinition

LOGGER = logging.getLogger(__name__)

MAX_ITERATIONS = 25
MAX_AUTO_CONTINUE = 5
MAX_TOOL_OUTPUT_CHARS = 100_000

ITERATION_CAP_TEXT = (
    f"⚠️ Reached maximum tool-use iterations ({MAX_ITERATIONS}). "
    "Stopping to avoid excessive API usage."
)
CANCELLED_TEXT = "(cancelled)"
EMPTY_TURN_TEXT = "(no response)"

NUDGE_MESSAGES = (
    "Continue. If the request needs an action, use your tools to carry it out "
    "instead of describing it.",
    "You have not used any tools yet. Call the appropriate tool now to make "
    "progress on the request, then report the result.",
    "Stop explaining. Your next response must be a tool call, or the final "
    "answer containing the actual result.",
)

COMPACTION_PROMPT = "\n".join(
    [
        "",
        "## COMPACTION TASK",
        "",
        "The conversation context is getting large. Produce a concise summary of the conversation so far.",
        "Include key facts, decisions, user preferences, and any important context.",
        "The summary will replace the full conversation history to stay within token limits.",
    ]
)
COMPACTION_REQUEST = (
    "Please provide a concise summary of our entire conversation so far. Include all key facts, "
    "decisions, code discussed, and important context. This summary will replace the full history."
)

_INTERNAL = re.compile(r"<internal>.*?</internal>", re.DOTALL)


class ToolExecutor(Protocol):
    async def execute(self, name: str, arguments: dict[str, Any], group_id: str) -> str: ...


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


def strip_internal(text: str) -> str:
    return _INTERNAL.sub("", text).strip()


def _text_of(content: list[dict[str, Any]]) -> str:
    return "".join(str(block.get("text") or "") for block in content if block.get("type") == "text")


class ToolUseLoop:
    """Runs request → tool execution → request cycles under iteration and nudge bounds."""

    def __init__(
        self,
        provider: LLMProvider,
        executor: ToolExecutor,
        tools: list[ToolDefinition],
        emit: Callable[[WorkerEvent], None],
        max_iterations: int = MAX_ITERATIONS,
        max_auto_continue: int = MAX_AUTO_CONTINUE,
    ) -> None:
        self._provider = provider
        self._executor = executor
        self._tools = tools
        self._emit = emit
        self._max_iterations = max_iterations
        self._max_auto_continue = max_auto_continue
        self._cancelled = False

    def cancel(self) -> None:
        """Stop the active run before its next backend call."""

        self._cancelled = True

    def _log(self, group_id: str, kind: str, label: str, detail: str | None = None) -> None:
        self._emit(ThinkingLogEvent(group_id=group_id, kind=kind, label=label, detail=detail))

    def _report_usage(self, invocation: AgentInvocation, response: dict[str, Any], model: str) -> None:
        usage = response.get("usage") or {}
        report = TokenUsage(
            group_id=invocation.group_id,
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            cache_read_tokens=int(usage.get("cache_read_input_tokens") or 0),
            cache_creation_tokens=int(usage.get("cache_creation_input_tokens") or 0),
            context_limit=context_limit(model),
        )
        invocation.input_tokens += report.input_tokens
        invocation.output_tokens += report.output_tokens
        invocation.cache_read_tokens += report.cache_read_tokens
        invocation.cache_creation_tokens += report.cache_creation_tokens
        self._emit(TokenUsageEvent(usage=report))

    async def run(self, invocation: AgentInvocation, model: str, max_tokens: int) -> str:
        """Drive the invocation to a final text. Backend errors propagate to the caller."""

        self._cancelled = False
        group_id = invocation.group_id
        tool_catalog = [tool.to_native() for tool in self._tools]
        self._log(group_id, "info", "Starting", f"Model: {model} · Max tokens: {max_tokens}")

        while invocation.iteration_count < self._max_iterations:
            if self._cancelled:
                LOGGER.info("Run for %s cancelled after %d iterations", group_id, invocation.iteration_count)
                return CANCELLED_TEXT

            invocation.iteration_count += 1
            request: dict[str, Any] = {
                "model": model,
                "max_tokens": max_tokens,
                "system": invocation.system_prompt,
                "messages": invocation.messages,
            }
            if tool_catalog:
                request["tools"] = tool_catalog

            self._log(
                group_id,
                "api-call",
                f"API call #{invocation.iteration_count}",
                f"{len(invocation.messages)} messages in context",
            )
            response = await self._provider.complete(request)
            self._report_usage(invocation, response, model)

            content = [block for block in response.get("content") or [] if isinstance(block, dict)]
            for block in content:
                if block.get("type") == "text" and block.get("text"):
                    self._log(group_id, "text", "Response text", _preview(block["text"], 200))

            tool_uses = [block for block in content if block.get("type") == "tool_use"]
            if response.get("stop_reason") == "tool_use" and tool_uses:
                results = []
                for block in tool_uses:
                    results.append(await self._run_tool(group_id, block))
                invocation.messages.append({"role": "assistant", "content": content})
                invocation.messages.append({"role": "user", "content": results})
                invocation.has_used_tools = True
                self._emit(TypingEvent(group_id=group_id))
                continue

            text = strip_internal(_text_of(content))
            if invocation.auto_continue_count < self._max_auto_continue and (
                not invocation.has_used_tools or not text
            ):
                nudge = NUDGE_MESSAGES[min(invocation.auto_continue_count, len(NUDGE_MESSAGES) - 1)]
                invocation.auto_continue_count += 1
                self._log(group_id, "info", f"Auto-continue #{invocation.auto_continue_count}", nudge)
                # Non-final assistant turns must carry text.
                assistant_turn = content if text else [{"type": "text", "text": EMPTY_TURN_TEXT}]
                invocation.messages.append({"role": "assistant", "content": assistant_turn})
                invocation.messages.append({"role": "user", "content": nudge})
                continue

            LOGGER.info(
                "Run for %s finished after %d iterations (%d in / %d out tokens)",
                group_id,
                invocation.iteration_count,
                invocation.input_tokens,
                invocation.output_tokens,
            )
            return text

        LOGGER.warning("Run for %s hit the iteration cap", group_id)
        return ITERATION_CAP_TEXT

    async def _run_tool(self, group_id: str, block: dict[str, Any]) -> dict[str, Any]:
        name = str(block.get("name") or "")
        arguments = block.get("input") if isinstance(block.get("input"), dict) else {}
        self._log(group_id, "tool-call", f"Tool: {name}", _preview(json.dumps(arguments), 300))
        self._emit(ToolActivityEvent(group_id=group_id, tool=name, status="running"))

        output = await self._executor.execute(name, arguments, group_id)
        output = output[:MAX_TOOL_OUTPUT_CHARS]

        self._log(group_id, "tool-result", f"Result: {name}", _preview(output, 500))
        self._emit(ToolActivityEvent(group_id=group_id, tool=name, status="done"))
        return {"type": "tool_result", "tool_use_id": block.get("id"), "content": output}

    async def compact(
        self,
        group_id: str,
        messages: list[dict[str, Any]],
        system_prompt: str,
        model: str,
        max_tokens: int,
    ) -> str:
        """Single-shot summary request without the tool catalog."""

        self._log(group_id, "info", "Compacting context", f"Summarizing {len(messages)} messages")
        request = {
            "model": model,
            "max_tokens": min(max_tokens, 4096),
            "system": system_prompt + "\n" + COMPACTION_PROMPT,
            "messages": [*messages, {"role": "user", "content": COMPACTION_REQUEST}],
        }
        response = await self._provider.complete(request)
        invocation = AgentInvocation(group_id=group_id, messages=messages, system_prompt=system_prompt)
        self._report_usage(invocation, response, model)
        summary = _text_of([block for block in response.get("content") or [] if isinstance(block, dict)])
        self._log(group_id, "info", "Compaction complete", f"Summary: {len(summary)} chars")
        return summary.strip()
