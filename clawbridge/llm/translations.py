"""Pure conversions between the native message schema and backend schemas.

The native schema is the Anthropic Messages shape used throughout the agent:
``{"model", "system", "messages", "tools", "max_tokens"}`` where message
content is either a string or a list of ``text``/``tool_use``/``tool_result``
blocks. Every function here is total: malformed upstream data degrades to a
best-effort result instead of raising.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Any

from clawbridge.errors import BackendError

EMPTY_RESPONSE_TEXT = "(empty response from model)"
DEFAULT_MAX_TOKENS = 4096

RESPONSES_API_MODELS = frozenset(
    {
        "gpt-5.3-codex",
        "gpt-5.2-codex",
        "gpt-5.1-codex",
        "gpt-5.1-codex-mini",
        "gpt-5.1-codex-max",
    }
)

_CLAUDE_DASHED_VERSION = re.compile(r"^claude-([a-z]+)-(\d{1,2})-(\d{1,2})(?:-.+)?$")


# ---------------------------------------------------------------------------
# Model ids
# ---------------------------------------------------------------------------


def canonicalize_model(model: str) -> str:
    """Rewrite ``claude-<family>-<major>-<minor>[-suffix]`` to dotted form."""

    match = _CLAUDE_DASHED_VERSION.match(model)
    if match is None:
        return model
    family, major, minor = match.groups()
    return f"claude-{family}-{major}.{minor}"


def is_responses_model(model: str) -> bool:
    return model in RESPONSES_API_MODELS


def context_limit(model: str) -> int:
    """Context-window size reported alongside token usage."""

    model = canonicalize_model(model)
    if model.startswith("gemini"):
        return 1_000_000 if "pro" in model else 1_048_576
    if model.startswith("claude"):
        return 200_000
    if "codex" in model or model.startswith("gpt-5"):
        return 400_000
    return 128_000


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:20]}"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def flatten_system(system: Any) -> str:
    """Collapse a native system value into one newline-joined string."""

    if isinstance(system, str):
        return system
    if isinstance(system, list):
        return "\n".join(
            str(block.get("text") or "") if isinstance(block, dict) else str(block) for block in system
        )
    return str(system)


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Best-effort decode of tool-call arguments, keeping the raw text on failure."""

    if isinstance(raw, dict):
        return raw
    if raw is None or raw == "":
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"raw": raw}


def _blocks(content: Any) -> list[dict[str, Any]]:
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            item["text"] if isinstance(item, dict) and item.get("text") else json.dumps(item)
            for item in content
        )
    return json.dumps(content)


def _native_response(
    content: list[dict[str, Any]],
    model: str,
    stop_reason: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_read_tokens: int = 0,
) -> dict[str, Any]:
    return {
        "id": new_message_id(),
        "type": "message",
        "role": "assistant",
        "content": content,
        "model": model,
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_read_input_tokens": cache_read_tokens,
            "cache_creation_input_tokens": 0,
        },
    }


# ---------------------------------------------------------------------------
# Tool catalog formatters
# ---------------------------------------------------------------------------


def _tool_fields(tool: dict[str, Any]) -> tuple[Any, Any, Any]:
    parameters = tool.get("input_schema", tool.get("parameters"))
    return tool.get("name"), tool.get("description"), parameters


def chat_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    result = []
    for tool in tools:
        name, description, parameters = _tool_fields(tool)
        result.append(
            {
                "type": "function",
                "function": {"name": name, "description": description, "parameters": parameters},
            }
        )
    return result


def responses_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    result = []
    for tool in tools:
        name, description, parameters = _tool_fields(tool)
        result.append({"type": "function", "name": name, "description": description, "parameters": parameters})
    return result


def generate_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    declarations = []
    for tool in tools:
        name, description, parameters = _tool_fields(tool)
        declarations.append({"name": name, "description": description, "parameters": parameters})
    return [{"functionDeclarations": declarations}] if declarations else []


# ---------------------------------------------------------------------------
# Native -> Chat Completions
# ---------------------------------------------------------------------------


def native_to_chat(body: dict[str, Any]) -> dict[str, Any]:
    messages: list[dict[str, Any]] = []

    if body.get("system"):
        messages.append({"role": "system", "content": flatten_system(body["system"])})

    for msg in body.get("messages") or []:
        content = msg.get("content")
        if isinstance(content, str):
            messages.append({"role": msg.get("role"), "content": content})
            continue
        if not isinstance(content, list):
            continue

        text_parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        tool_results: list[dict[str, Any]] = []
        for block in _blocks(content):
            kind = block.get("type")
            if kind == "text":
                text_parts.append(str(block.get("text") or ""))
            elif kind == "tool_use":
                tool_calls.append(
                    {
                        "id": block.get("id"),
                        "type": "function",
                        "function": {
                            "name": block.get("name"),
                            "arguments": json.dumps(block.get("input") or {}),
                        },
                    }
                )
            elif kind == "tool_result":
                result = block.get("content")
                tool_results.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.get("tool_use_id"),
                        "content": result if isinstance(result, str) else json.dumps(result),
                    }
                )

        if tool_results:
            messages.extend(tool_results)
            continue

        converted: dict[str, Any] = {"role": msg.get("role")}
        text = "\n".join(text_parts)
        if tool_calls:
            converted["content"] = text or None
            converted["tool_calls"] = tool_calls
        else:
            converted["content"] = text
        messages.append(converted)

    result: dict[str, Any] = {
        "model": canonicalize_model(str(body.get("model") or "")),
        "messages": messages,
        "max_tokens": body.get("max_tokens") or DEFAULT_MAX_TOKENS,
        "temperature": 0.5,
        "stream": False,
    }
    if body.get("tools"):
        result["tools"] = chat_tools(body["tools"])
    return result


def chat_to_native(response: dict[str, Any], original_model: str) -> dict[str, Any]:
    choices = response.get("choices") or []
    if not choices:
        return _native_response([{"type": "text", "text": EMPTY_RESPONSE_TEXT}], original_model, "end_turn")

    choice = choices[0] or {}
    message = choice.get("message") or {}
    tool_calls = message.get("tool_calls") or []
    content: list[dict[str, Any]] = []

    if message.get("content"):
        content.append({"type": "text", "text": message["content"]})

    for tool_call in tool_calls:
        function = tool_call.get("function") or {}
        content.append(
            {
                "type": "tool_use",
                "id": tool_call.get("id") or new_call_id(),
                "name": function.get("name", ""),
                "input": parse_arguments(function.get("arguments")),
            }
        )

    if not content:
        content.append({"type": "text", "text": ""})

    finish_reason = choice.get("finish_reason")
    stop_reason = "end_turn"
    if finish_reason in ("tool_calls", "stop"):
        stop_reason = "tool_use" if tool_calls else "end_turn"
    elif finish_reason == "length":
        stop_reason = "max_tokens"

    usage = response.get("usage") or {}
    return _native_response(
        content,
        original_model,
        stop_reason,
        input_tokens=usage.get("prompt_tokens") or 0,
        output_tokens=usage.get("completion_tokens") or 0,
    )


# ---------------------------------------------------------------------------
# Native -> Responses API (codex models)
# ---------------------------------------------------------------------------


def native_to_responses(body: dict[str, Any]) -> dict[str, Any]:
    items: list[dict[str, Any]] = []

    if body.get("system"):
        items.append({"role": "developer", "content": flatten_system(body["system"])})

    for msg in body.get("messages") or []:
        role = msg.get("role")
        content = msg.get("content")
        if role not in ("user", "assistant"):
            continue
        if isinstance(content, str):
            items.append({"role": role, "content": content})
            continue

        pending: list[str] = []

        def flush() -> None:
            if pending:
                items.append({"role": role, "content": "\n".join(pending)})
                pending.clear()

        for block in _blocks(content):
            kind = block.get("type")
            if kind == "text":
                if role == "user" or block.get("text"):
                    pending.append(str(block.get("text") or ""))
            elif kind == "tool_result" and role == "user":
                flush()
                items.append(
                    {
                        "type": "function_call_output",
                        "call_id": block.get("tool_use_id"),
                        "output": _tool_result_text(block.get("content")) or "",
                    }
                )
            elif kind == "tool_use" and role == "assistant":
                flush()
                items.append(
                    {
                        "type": "function_call",
                        "name": block.get("name"),
                        "arguments": json.dumps(block.get("input") or {}),
                        "call_id": block.get("id") or new_call_id(),
                    }
                )
        flush()

    result: dict[str, Any] = {
        "model": canonicalize_model(str(body.get("model") or "")),
        "input": items,
        "max_output_tokens": body.get("max_tokens") or DEFAULT_MAX_TOKENS,
        "stream": False,
    }
    if body.get("tools"):
        result["tools"] = responses_tools(body["tools"])
    return result


def responses_to_native(response: dict[str, Any], original_model: str) -> dict[str, Any]:
    content: list[dict[str, Any]] = []
    has_tool_calls = False

    output = response.get("output")
    for item in output if isinstance(output, list) else []:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "message":
            for block in _blocks(item.get("content")):
                if block.get("type") == "output_text" and block.get("text"):
                    content.append({"type": "text", "text": block["text"]})
        elif item.get("type") == "function_call":
            has_tool_calls = True
            content.append(
                {
                    "type": "tool_use",
                    "id": item.get("call_id") or item.get("id") or new_call_id(),
                    "name": item.get("name", ""),
                    "input": parse_arguments(item.get("arguments")),
                }
            )

    if not content:
        content.append({"type": "text", "text": ""})

    if has_tool_calls:
        stop_reason = "tool_use"
    elif response.get("status") == "completed":
        stop_reason = "end_turn"
    else:
        stop_reason = "max_tokens"

    usage = response.get("usage") or {}
    return _native_response(
        content,
        original_model,
        stop_reason,
        input_tokens=usage.get("input_tokens") or 0,
        output_tokens=usage.get("output_tokens") or 0,
    )


# ---------------------------------------------------------------------------
# Native -> generateContent (Gemini)
# ---------------------------------------------------------------------------


def native_to_generate(body: dict[str, Any]) -> dict[str, Any]:
    contents: list[dict[str, Any]] = []
    call_names: dict[str, str] = {}

    for msg in body.get("messages") or []:
        role = "model" if msg.get("role") == "assistant" else "user"
        content = msg.get("content")
        if isinstance(content, str):
            contents.append({"role": role, "parts": [{"text": content}]})
            continue

        parts: list[dict[str, Any]] = []
        for block in _blocks(content):
            kind = block.get("type")
            if kind == "text":
                parts.append({"text": str(block.get("text") or "")})
            elif kind == "tool_use":
                call_names[str(block.get("id"))] = str(block.get("name"))
                parts.append({"functionCall": {"name": block.get("name"), "args": block.get("input") or {}}})
            elif kind == "tool_result":
                name = call_names.get(str(block.get("tool_use_id")), str(block.get("tool_use_id")))
                parts.append(
                    {
                        "functionResponse": {
                            "name": name,
                            "response": {"content": _tool_result_text(block.get("content"))},
                        }
                    }
                )
        if parts:
            contents.append({"role": role, "parts": parts})

    # Roles must alternate, so consecutive same-role contents are merged.
    merged: list[dict[str, Any]] = []
    for entry in contents:
        if merged and merged[-1]["role"] == entry["role"]:
            merged[-1]["parts"].extend(entry["parts"])
        else:
            merged.append({"role": entry["role"], "parts": list(entry["parts"])})

    result: dict[str, Any] = {
        "contents": merged,
        "generationConfig": {
            "maxOutputTokens": body.get("max_tokens") or DEFAULT_MAX_TOKENS,
            "temperature": body.get("temperature", 1.0),
        },
    }
    if body.get("system"):
        result["systemInstruction"] = {"parts": [{"text": flatten_system(body["system"])}]}
    if body.get("tools"):
        result["tools"] = generate_tools(body["tools"])
    return result


def generate_to_native(response: dict[str, Any], original_model: str) -> dict[str, Any]:
    error = response.get("error")
    if isinstance(error, dict):
        raise BackendError(int(error.get("code") or 500), str(error.get("message", "")))

    candidates = response.get("candidates") or []
    candidate = candidates[0] if candidates else None
    parts = ((candidate or {}).get("content") or {}).get("parts")
    if not isinstance(parts, list):
        raise BackendError(502, "generateContent returned no candidates or empty response")

    content: list[dict[str, Any]] = []
    has_tool_calls = False
    for part in parts:
        if not isinstance(part, dict):
            continue
        if part.get("text"):
            content.append({"type": "text", "text": part["text"]})
        elif isinstance(part.get("functionCall"), dict):
            has_tool_calls = True
            call = part["functionCall"]
            content.append(
                {
                    "type": "tool_use",
                    "id": new_call_id(),
                    "name": call.get("name", ""),
                    "input": parse_arguments(call.get("args")),
                }
            )

    if not content:
        content.append({"type": "text", "text": ""})

    if has_tool_calls:
        stop_reason = "tool_use"
    elif candidate.get("finishReason") == "MAX_TOKENS":
        stop_reason = "max_tokens"
    else:
        stop_reason = "end_turn"

    usage = response.get("usageMetadata") or {}
    return _native_response(
        content,
        original_model,
        stop_reason,
        input_tokens=usage.get("promptTokenCount") or 0,
        output_tokens=usage.get("candidatesTokenCount") or 0,
        cache_read_tokens=usage.get("cachedContentTokenCount") or 0,
    )
