"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from clawbridge.models import ToolDefinition


class Tool(ABC):
    """Base class for all assistant tools."""

    name: str
    description: str
    parameters_schema: dict[str, Any]

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters_schema)

    @abstractmethod
    async def run(self, group_id: str, **kwargs: Any) -> Any:
        """Execute tool for a group with validated arguments."""
