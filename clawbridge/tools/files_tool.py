"""Per-group workspace files and the tools that read and write them."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from clawbridge.tools.base import Tool

MEMORY_FILE = "MEMORY.md"


class GroupFileStore:
    """Text files kept in one directory per group under a workspace root."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def _group_root(self, group_id: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in group_id)
        return self._root / safe

    def _resolve(self, group_id: str, path: str) -> Path:
        base = self._group_root(group_id).resolve()
        target = (base / path.lstrip("/")).resolve()
        if target != base and base not in target.parents:
            raise ValueError(f"Path escapes the group workspace: {path}")
        return target

    def read(self, group_id: str, path: str) -> str:
        target = self._resolve(group_id, path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return target.read_text(encoding="utf-8")

    def write(self, group_id: str, path: str, content: str) -> None:
        target = self._resolve(group_id, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def list(self, group_id: str, path: str = ".") -> list[str]:
        target = self._resolve(group_id, path)
        if not target.is_dir():
            return []
        return sorted(f"{entry.name}/" if entry.is_dir() else entry.name for entry in target.iterdir())

    def read_memory(self, group_id: str) -> str:
        try:
            return self.read(group_id, MEMORY_FILE)
        except FileNotFoundError:
            return ""


_PATH_PROPERTY = {"type": "string", "description": "File path relative to the group workspace root"}


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read the contents of a file from the group workspace."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"path": _PATH_PROPERTY},
        "required": ["path"],
    }

    def __init__(self, store: GroupFileStore) -> None:
        self._store = store

    async def run(self, group_id: str, **kwargs: Any) -> str:
        return self._store.read(group_id, kwargs["path"])


class WriteFileTool(Tool):
    name = "write_file"
    description = (
        "Write content to a file in the group workspace. Creates intermediate "
        "directories and overwrites existing files."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": _PATH_PROPERTY,
            "content": {"type": "string", "description": "Content to write to the file"},
        },
        "required": ["path", "content"],
    }

    def __init__(self, store: GroupFileStore) -> None:
        self._store = store

    async def run(self, group_id: str, **kwargs: Any) -> str:
        content = kwargs["content"]
        self._store.write(group_id, kwargs["path"], content)
        return f"Written {len(content)} bytes to {kwargs['path']}"


class ListFilesTool(Tool):
    name = "list_files"
    description = "List files and directories in the group workspace. Directory names end with /."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory path relative to workspace root (default: root)"},
        },
    }

    def __init__(self, store: GroupFileStore) -> None:
        self._store = store

    async def run(self, group_id: str, **kwargs: Any) -> str:
        entries = self._store.list(group_id, kwargs.get("path") or ".")
        return "\n".join(entries) if entries else "(empty directory)"


class UpdateMemoryTool(Tool):
    name = "update_memory"
    description = (
        "Replace the MEMORY.md file for this group. It is loaded as system "
        "context on every invocation, so keep preferences and project state here."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "New content for the memory file"},
        },
        "required": ["content"],
    }

    def __init__(self, store: GroupFileStore) -> None:
        self._store = store

    async def run(self, group_id: str, **kwargs: Any) -> str:
        self._store.write(group_id, MEMORY_FILE, kwargs["content"])
        return "Memory updated successfully."
