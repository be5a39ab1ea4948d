"""Credential storage and bearer-token exchange."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx

from clawbridge.errors import ClawbridgeError, CredentialMissingError, TokenExchangeError
from clawbridge.models import BearerToken

LOGGER = logging.getLogger(__name__)

REFRESH_BUFFER_SECONDS = 60

EDITOR_HEADERS = {
    "Editor-Version": "vscode/1.90.0",
    "Editor-Plugin-Version": "copilot-chat/0.12.0",
    "User-Agent": "GitHubCopilotChat/0.12.0",
}


class TokenManager:
    """Holds the long-lived credential and the cached short-lived bearer token.

    The cached token is only ever replaced as a whole by ``refresh`` or dropped
    by ``set_credential``. Refreshes are serialized behind one lock so callers
    racing on expiry share a single issuance request.
    """

    def __init__(
        self,
        token_url: str,
        credential: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._token_url = token_url
        self._credential = credential.strip()
        self._transport = transport
        self._clock = clock
        self._timeout_seconds = timeout_seconds
        self._token: BearerToken | None = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> str:
        return self._credential

    @property
    def has_credential(self) -> bool:
        return bool(self._credential)

    @property
    def token(self) -> BearerToken | None:
        return self._token

    def _is_fresh(self) -> bool:
        return self._token is not None and not self._token.needs_refresh(self._clock(), REFRESH_BUFFER_SECONDS)

    async def refresh(self) -> BearerToken:
        """Exchange the credential for a new token unless the cached one is still fresh."""

        async with self._lock:
            if self._is_fresh():
                assert self._token is not None
                return self._token
            return await self._exchange()

    async def authorize(self) -> str:
        """Return a usable bearer token, refreshing first when needed."""

        if self._is_fresh():
            assert self._token is not None
            return self._token.token
        token = await self.refresh()
        return token.token

    async def set_credential(self, credential: str) -> BearerToken:
        """Store a new credential and verify it by refreshing immediately.

        A credential that fails verification is rolled back to empty and the
        failure is re-raised to the caller.
        """

        async with self._lock:
            self._credential = credential.strip()
            self._token = None
            try:
                return await self._exchange()
            except (ClawbridgeError, httpx.HTTPError):
                self._credential = ""
                self._token = None
                raise

    async def _exchange(self) -> BearerToken:
        if not self._credential:
            raise CredentialMissingError("No GitHub token configured")

        LOGGER.info("Exchanging credential for bearer token")
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds) as client:
            response = await client.get(
                self._token_url,
                headers={
                    "Authorization": f"token {self._credential}",
                    "Accept": "application/json",
                    **EDITOR_HEADERS,
                },
            )
        if not response.is_success:
            self._token = None
            LOGGER.warning("Token exchange failed with status %s", response.status_code)
            raise TokenExchangeError(response.status_code, response.text)

        self._token = BearerToken.from_payload(response.json())
        LOGGER.info(
            "Bearer token obtained (expires_at=%s, chat_enabled=%s)",
            self._token.expires_at,
            self._token.chat_enabled,
        )
        return self._token
