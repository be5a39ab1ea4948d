import json
import re

import pytest

from clawbridge.errors import BackendError
from clawbridge.llm.translations import (
    EMPTY_RESPONSE_TEXT,
    canonicalize_model,
    chat_to_native,
    context_limit,
    generate_to_native,
    is_responses_model,
    native_to_chat,
    native_to_generate,
    native_to_responses,
    parse_arguments,
    responses_to_native,
)

TOOLS = [
    {
        "name": "read_file",
        "description": "Read a file",
        "input_schema": {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
    }
]


def _tool_round_messages():
    return [
        {"role": "user", "content": "read notes.md"},
        {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Reading it."},
                {"type": "tool_use", "id": "call_1", "name": "read_file", "input": {"path": "notes.md"}},
            ],
        },
        {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "hello"}],
        },
    ]


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("claude-sonnet-4-6", "claude-sonnet-4.6"),
        ("claude-opus-4-5-20251101", "claude-opus-4.5"),
        ("claude-sonnet-4.6", "claude-sonnet-4.6"),
        ("claude-sonnet-4-20250514", "claude-sonnet-4-20250514"),
        ("gpt-4o", "gpt-4o"),
    ],
)
def test_canonicalize_model(model, expected):
    assert canonicalize_model(model) == expected
    assert canonicalize_model(canonicalize_model(model)) == canonicalize_model(model)


def test_responses_models_are_a_closed_set():
    assert is_responses_model("gpt-5.1-codex")
    assert not is_responses_model("gpt-5.1")
    assert not is_responses_model("claude-sonnet-4.6")


def test_context_limit_by_family():
    assert context_limit("claude-sonnet-4-6") == 200_000
    assert context_limit("gemini-2.5-pro") == 1_000_000
    assert context_limit("gemini-2.5-flash") == 1_048_576
    assert context_limit("gpt-5.1-codex") == 400_000
    assert context_limit("gpt-4o") == 128_000


def test_parse_arguments_keeps_raw_text_on_failure():
    assert parse_arguments('{"a": 1}') == {"a": 1}
    assert parse_arguments("") == {}
    assert parse_arguments(None) == {}
    assert parse_arguments("not json") == {"raw": "not json"}


def test_native_to_chat_maps_system_tool_calls_and_results():
    body = {
        "model": "claude-sonnet-4-6",
        "system": [{"type": "text", "text": "be nice"}, {"type": "text", "text": "be brief"}],
        "messages": _tool_round_messages(),
        "tools": TOOLS,
    }

    result = native_to_chat(body)

    assert result["model"] == "claude-sonnet-4.6"
    assert result["temperature"] == 0.5
    assert result["stream"] is False
    assert result["max_tokens"] == 4096
    messages = result["messages"]
    assert messages[0] == {"role": "system", "content": "be nice\nbe brief"}
    assert messages[1] == {"role": "user", "content": "read notes.md"}
    assert messages[2]["content"] == "Reading it."
    assert messages[2]["tool_calls"][0]["id"] == "call_1"
    assert json.loads(messages[2]["tool_calls"][0]["function"]["arguments"]) == {"path": "notes.md"}
    assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "hello"}
    assert result["tools"][0]["function"]["parameters"] == TOOLS[0]["input_schema"]


def test_native_to_chat_tool_only_assistant_has_null_content():
    body = {
        "model": "gpt-4o",
        "messages": [
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "c", "name": "read_file", "input": {}}],
            }
        ],
    }

    message = native_to_chat(body)["messages"][0]

    assert message["content"] is None
    assert len(message["tool_calls"]) == 1


def test_chat_to_native_tool_calls():
    response = {
        "choices": [
            {
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "call_9", "function": {"name": "read_file", "arguments": '{"path": "a"}'}}
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3},
    }

    native = chat_to_native(response, "claude-sonnet-4-6")

    assert native["model"] == "claude-sonnet-4-6"
    assert native["stop_reason"] == "tool_use"
    assert native["content"] == [{"type": "tool_use", "id": "call_9", "name": "read_file", "input": {"path": "a"}}]
    assert native["usage"]["input_tokens"] == 12
    assert native["usage"]["output_tokens"] == 3


def test_chat_to_native_stop_without_tool_calls_is_end_turn():
    response = {"choices": [{"message": {"content": "done"}, "finish_reason": "stop"}]}

    native = chat_to_native(response, "m")

    assert native["stop_reason"] == "end_turn"
    assert native["content"] == [{"type": "text", "text": "done"}]


def test_chat_to_native_length_is_max_tokens():
    response = {"choices": [{"message": {"content": "cut"}, "finish_reason": "length"}]}

    assert chat_to_native(response, "m")["stop_reason"] == "max_tokens"


def test_chat_to_native_without_choices_reports_empty_response():
    native = chat_to_native({"choices": []}, "m")

    assert native["stop_reason"] == "end_turn"
    assert native["content"] == [{"type": "text", "text": EMPTY_RESPONSE_TEXT}]


def test_native_to_responses_emits_function_items():
    body = {"model": "gpt-5.1-codex", "system": "sys", "messages": _tool_round_messages(), "tools": TOOLS}

    result = native_to_responses(body)

    items = result["input"]
    assert items[0] == {"role": "developer", "content": "sys"}
    assert items[1] == {"role": "user", "content": "read notes.md"}
    assert items[2] == {"role": "assistant", "content": "Reading it."}
    assert items[3]["type"] == "function_call"
    assert items[3]["call_id"] == "call_1"
    assert items[4] == {"type": "function_call_output", "call_id": "call_1", "output": "hello"}
    assert result["max_output_tokens"] == 4096
    assert result["tools"][0] == {
        "type": "function",
        "name": "read_file",
        "description": "Read a file",
        "parameters": TOOLS[0]["input_schema"],
    }



def test_native_to_responses_keeps_user_text_before_tool_output():
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "here is the file"},
                {"type": "tool_result", "tool_use_id": "call_9", "content": "body"},
            ],
        }
    ]

    items = native_to_responses({"model": "gpt-5.1-codex", "messages": messages})["input"]

    assert items == [
        {"role": "user", "content": "here is the file"},
        {"type": "function_call_output", "call_id": "call_9", "output": "body"},
    ]


def test_native_to_responses_synthesizes_missing_call_ids():
    messages = [
        {"role": "assistant", "content": [{"type": "tool_use", "name": "read_file", "input": {"path": "a"}}]},
    ]

    items = native_to_responses({"model": "gpt-5.1-codex", "messages": messages})["input"]

    assert items[0]["type"] == "function_call"
    assert re.fullmatch(r"call_[0-9a-f]{12}", items[0]["call_id"])

def test_responses_to_native_stop_reasons():
    completed = {"status": "completed", "output": [{"type": "message", "content": [{"type": "output_text", "text": "hi"}]}]}
    truncated = {"status": "incomplete", "output": []}
    tool = {
        "status": "completed",
        "output": [{"type": "function_call", "call_id": "c1", "name": "read_file", "arguments": "{}"}],
    }

    assert responses_to_native(completed, "m")["stop_reason"] == "end_turn"
    assert responses_to_native(completed, "m")["content"] == [{"type": "text", "text": "hi"}]
    assert responses_to_native(truncated, "m")["stop_reason"] == "max_tokens"
    assert responses_to_native(truncated, "m")["content"] == [{"type": "text", "text": ""}]
    native = responses_to_native(tool, "m")
    assert native["stop_reason"] == "tool_use"
    assert native["content"][0]["id"] == "c1"


def test_native_to_generate_merges_roles_and_names_function_responses():
    body = {"model": "gemini-2.5-flash", "system": "sys", "messages": _tool_round_messages(), "tools": TOOLS}

    result = native_to_generate(body)

    roles = [entry["role"] for entry in result["contents"]]
    assert roles == ["user", "model", "user"]
    response_part = result["contents"][2]["parts"][0]["functionResponse"]
    assert response_part == {"name": "read_file", "response": {"content": "hello"}}
    assert result["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert result["tools"][0]["functionDeclarations"][0]["name"] == "read_file"


def test_generate_to_native_raises_on_error_object():
    with pytest.raises(BackendError) as excinfo:
        generate_to_native({"error": {"code": 429, "message": "quota"}}, "gemini-2.5-flash")

    assert excinfo.value.status == 429


def test_generate_to_native_function_call():
    response = {
        "candidates": [
            {"content": {"parts": [{"functionCall": {"name": "read_file", "args": {"path": "x"}}}]}, "finishReason": "STOP"}
        ],
        "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 2},
    }

    native = generate_to_native(response, "gemini-2.5-flash")

    assert native["stop_reason"] == "tool_use"
    assert native["content"][0]["input"] == {"path": "x"}
    assert native["content"][0]["id"].startswith("call_")
    assert native["usage"]["input_tokens"] == 7
