"""Closed set of backend wire formats.

Each backend kind owns one request translator, one response translator and
one tool-catalog formatter. Call sites pick a format through
``select_backend_kind`` and never branch on the kind themselves.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from clawbridge.llm import translations


class BackendKind(str, Enum):
    NATIVE = "native"
    CHAT = "chat"
    RESPONSES = "responses"
    GENERATE = "generate"


def _native_request(body: dict[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(body)


def _native_response(response: dict[str, Any], original_model: str) -> dict[str, Any]:
    return response


def _native_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [dict(tool) for tool in tools]


@dataclass(frozen=True, slots=True)
class BackendFormat:
    """Translation triple for one backend kind."""

    kind: BackendKind
    to_backend: Callable[[dict[str, Any]], dict[str, Any]]
    from_backend: Callable[[dict[str, Any], str], dict[str, Any]]
    tool_formatter: Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


BACKEND_FORMATS: dict[BackendKind, BackendFormat] = {
    BackendKind.NATIVE: BackendFormat(BackendKind.NATIVE, _native_request, _native_response, _native_tools),
    BackendKind.CHAT: BackendFormat(
        BackendKind.CHAT,
        translations.native_to_chat,
        translations.chat_to_native,
        translations.chat_tools,
    ),
    BackendKind.RESPONSES: BackendFormat(
        BackendKind.RESPONSES,
        translations.native_to_responses,
        translations.responses_to_native,
        translations.responses_tools,
    ),
    BackendKind.GENERATE: BackendFormat(
        BackendKind.GENERATE,
        translations.native_to_generate,
        translations.generate_to_native,
        translations.generate_tools,
    ),
}


def select_backend_kind(model: str) -> BackendKind:
    """Pick the gateway pipeline for a model id (responses or chat)."""

    canonical = translations.canonicalize_model(model)
    return BackendKind.RESPONSES if translations.is_responses_model(canonical) else BackendKind.CHAT


def backend_format(kind: BackendKind) -> BackendFormat:
    return BACKEND_FORMATS[kind]
