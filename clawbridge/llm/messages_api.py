"""Provider posting native requests to a Messages-compatible endpoint.

Used both against the clawbridge gateway (``/v1/messages``) and directly
against the Anthropic API when an API key is configured.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from clawbridge.errors import BackendError
from clawbridge.llm.backends import BackendKind, backend_format
from clawbridge.llm.base import LLMProvider

_LOGGER = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class MessagesApiProvider(LLMProvider):
    """LLM provider speaking the native schema over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._format = backend_format(BackendKind.NATIVE)

    async def complete(self, request: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "anthropic-version": ANTHROPIC_VERSION}
        if self._api_key:
            headers["x-api-key"] = self._api_key

        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post("/v1/messages", headers=headers, json=self._format.to_backend(request))

        if not response.is_success:
            _LOGGER.warning("Messages API returned %s", response.status_code)
            raise BackendError(response.status_code, response.text, _error_message(response))

        data = self._format.from_backend(response.json(), str(request.get("model") or ""))
        _LOGGER.info(
            "LLM response: stop_reason=%r blocks=%d",
            data.get("stop_reason"),
            len(data.get("content") or []),
        )
        return data


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"API error {response.status_code}: {response.text}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"API error {response.status_code}: {response.text}"
