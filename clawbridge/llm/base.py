"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class LLMProvider(ABC):
    """Abstract model provider used by the tool-use loop.

    Providers accept and return the native message schema; any translation to
    a backend wire format happens behind this interface.
    """

    @abstractmethod
    async def complete(self, request: dict[str, Any]) -> dict[str, Any]:
        """Send one native request and return the native response."""
