"""Registry for safe tool registration and execution."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError, create_model

from clawbridge.db import Database
from clawbridge.models import ToolDefinition
from clawbridge.tools.base import Tool

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_TIMEOUT_SECONDS = 120.0


class ToolRegistry:
    """Explicit registry of safe tools.

    ``execute`` never raises: unknown tools, invalid input, failures and
    timeouts all come back as error strings fed to the model.
    """

    def __init__(self, db: Database | None = None, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._db = db
        self._timeout_seconds = min(timeout_seconds, MAX_TIMEOUT_SECONDS)
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def describe(self) -> str:
        """One bullet per tool, used in the system prompt."""

        return "\n".join(f"- **{tool.name}**: {tool.description}" for tool in self._tools.values())

    def _timeout_for(self, arguments: dict[str, Any]) -> float:
        requested = arguments.get("timeout")
        if isinstance(requested, (int, float)) and not isinstance(requested, bool) and requested > 0:
            return min(float(requested), MAX_TIMEOUT_SECONDS)
        return self._timeout_seconds

    async def execute(self, name: str, arguments: dict[str, Any], group_id: str) -> str:
        tool = self._tools.get(name)
        if tool is None:
            return f"Unknown tool: {name}"

        try:
            validated = _validate_json_schema(tool.parameters_schema, arguments)
        except ValueError as exc:
            return f"Tool error ({name}): {exc}"

        timeout = self._timeout_for(arguments)
        try:
            result = await asyncio.wait_for(tool.run(group_id, **validated), timeout=timeout)
        except asyncio.TimeoutError:
            output = f"Tool error ({name}): timed out after {timeout:g}s"
            self._log(group_id, name, validated, output, succeeded=False)
            return output
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Tool %s failed: %s", name, exc)
            output = f"Tool error ({name}): {exc}"
            self._log(group_id, name, validated, output, succeeded=False)
            return output

        output = result if isinstance(result, str) else json.dumps(result)
        self._log(group_id, name, validated, output, succeeded=True)
        return output

    def _log(self, group_id: str, name: str, tool_input: dict[str, Any], output: str, succeeded: bool) -> None:
        if self._db is not None:
            self._db.log_tool_execution(group_id, name, tool_input, output, succeeded=succeeded)


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[type[Any], Any]] = {}
    for name, config in props.items():
        typ = _python_type(str(config.get("type", "string")))
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    try:
        value = model(**{key: val for key, val in payload.items() if key in props})
    except ValidationError as exc:
        raise ValueError(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type.lower(), str)
