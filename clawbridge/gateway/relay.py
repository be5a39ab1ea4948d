"""Server-side relay for arbitrary HTTP requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

LOGGER = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n[truncated]"

DEFAULT_RELAY_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; clawbridge/1.0)",
    "Accept": "text/html,application/json,*/*",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass(slots=True)
class RelayResult:
    status: int
    content_type: str
    body: str


async def relay(
    url: str,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    body: str | None = None,
    max_chars: int = 500_000,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout_seconds: float = 60.0,
) -> RelayResult:
    """Forward one request and return its (possibly truncated) response.

    Transport failures propagate as ``httpx.HTTPError``.
    """

    method = (method or "GET").upper()
    request_headers = {**DEFAULT_RELAY_HEADERS, **(headers or {})}
    content: str | None = None
    if method in ("POST", "PUT", "PATCH") and body:
        content = body
        if not any(key.lower() == "content-type" for key in request_headers):
            request_headers["Content-Type"] = "application/x-www-form-urlencoded"

    async with httpx.AsyncClient(transport=transport, timeout=timeout_seconds, follow_redirects=True) as client:
        response = await client.request(method, url, headers=request_headers, content=content)

    text = response.text
    truncated = text[:max_chars] + TRUNCATION_MARKER if len(text) > max_chars else text
    LOGGER.info("relay %s %s -> %s (%d chars)", method, url, response.status_code, len(text))
    return RelayResult(
        status=response.status_code,
        content_type=response.headers.get("content-type", "text/plain"),
        body=truncated,
    )
