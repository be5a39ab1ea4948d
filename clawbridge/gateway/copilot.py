"""Forwarding of native requests to the Copilot chat and responses backends."""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

import httpx

from clawbridge.errors import BackendError, CredentialMissingError
from clawbridge.gateway.tokens import EDITOR_HEADERS, TokenManager
from clawbridge.llm.backends import BackendKind, backend_format, select_backend_kind
from clawbridge.llm.base import LLMProvider

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-6"


def machine_id() -> str:
    """Stable fingerprint derived from the host's hardware address."""

    return hashlib.sha256(f"{uuid.getnode():012x}".encode("utf-8")).hexdigest()


class CopilotGateway(LLMProvider):
    """Translates native requests, forwards them with a bearer token and translates back.

    Backend failures are raised as ``BackendError`` carrying the upstream status
    and body unchanged. Nothing is retried.
    """

    def __init__(
        self,
        tokens: TokenManager,
        chat_url: str,
        responses_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float | None = None,
        machine: str | None = None,
    ) -> None:
        self._tokens = tokens
        self._urls = {BackendKind.CHAT: chat_url, BackendKind.RESPONSES: responses_url}
        self._transport = transport
        self._timeout = httpx.Timeout(timeout_seconds)
        self._machine_id = machine or machine_id()

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    def _headers(self, bearer: str, kind: BackendKind) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {bearer}",
            "X-Request-Id": str(uuid.uuid4()),
            "Machine-Id": self._machine_id,
            **EDITOR_HEADERS,
            "Openai-Organization": "github-copilot",
            "Copilot-Integration-Id": "vscode-chat",
        }
        if kind is BackendKind.CHAT:
            headers["Openai-Intent"] = "conversation-agent"
        return headers

    async def complete(self, request: dict[str, Any]) -> dict[str, Any]:
        return await self.forward(request)

    async def forward(self, body: dict[str, Any]) -> dict[str, Any]:
        """Send one native request to the backend selected by its model id."""

        if not self._tokens.has_credential:
            raise CredentialMissingError("No GitHub token configured. Go to Settings to add your token.")

        original_model = str(body.get("model") or DEFAULT_MODEL)
        kind = select_backend_kind(original_model)
        fmt = backend_format(kind)
        payload = fmt.to_backend({**body, "model": original_model})
        bearer = await self._tokens.authorize()

        LOGGER.info(
            "%s -> %s (%s) | items: %d | tools: %d",
            original_model,
            payload.get("model"),
            kind.value,
            len(payload.get("messages") or payload.get("input") or []),
            len(payload.get("tools") or []),
        )

        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            response = await client.post(self._urls[kind], headers=self._headers(bearer, kind), json=payload)

        if not response.is_success:
            LOGGER.error("Backend error %s: %s", response.status_code, response.text[:500])
            raise BackendError(response.status_code, response.text)

        native = fmt.from_backend(response.json(), original_model)
        LOGGER.info(
            "Response: stop_reason=%s | content_blocks=%d | tokens: %sin/%sout",
            native["stop_reason"],
            len(native["content"]),
            native["usage"]["input_tokens"],
            native["usage"]["output_tokens"],
        )
        return native
