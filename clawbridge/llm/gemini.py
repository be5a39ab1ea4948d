"""Gemini generateContent implementation of LLMProvider."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from clawbridge.errors import BackendError
from clawbridge.llm.backends import BackendKind, backend_format
from clawbridge.llm.base import LLMProvider

_LOGGER = logging.getLogger(__name__)


class GeminiProvider(LLMProvider):
    """LLM provider calling the generate-style backend directly with an API key."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._format = backend_format(BackendKind.GENERATE)

    async def complete(self, request: dict[str, Any]) -> dict[str, Any]:
        model = str(request.get("model") or "")
        payload = self._format.to_backend(request)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self._base_url}/models/{model}:generateContent",
                params={"key": self._api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
            )

        if not response.is_success:
            raise BackendError(response.status_code, response.text, f"Gemini API error {response.status_code}: {response.text}")

        native = self._format.from_backend(response.json(), model)
        _LOGGER.info("Gemini response: stop_reason=%r blocks=%d", native["stop_reason"], len(native["content"]))
        return native
