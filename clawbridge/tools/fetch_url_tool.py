"""HTTP fetch tool."""

from __future__ import annotations

import re
from typing import Any

import httpx
from bs4 import BeautifulSoup, Comment

from clawbridge.tools.base import Tool

FETCH_MAX_RESPONSE = 20_000

_NOISE_TAGS = "script, style, noscript, svg, head, iframe"


def strip_html(html: str) -> str:
    """Reduce an HTML page to its readable text."""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.select(_NOISE_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()

    text = soup.get_text(separator="\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


class FetchUrlTool(Tool):
    """Fetch a URL and return its status and body."""

    name = "fetch_url"
    description = (
        "Fetch a URL via HTTP and return the response body. HTML is reduced to "
        "plain text and the body is truncated to 20,000 characters."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to fetch"},
            "method": {"type": "string", "description": "HTTP method (default: GET)"},
            "headers": {"type": "object", "description": "Request headers as key-value pairs"},
            "body": {"type": "string", "description": "Request body (for POST/PUT/PATCH)"},
        },
        "required": ["url"],
    }

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, timeout_seconds: float = 20.0) -> None:
        self._transport = transport
        self._timeout_seconds = timeout_seconds

    async def run(self, group_id: str, **kwargs: Any) -> str:
        url = str(kwargs["url"]).strip()
        method = str(kwargs.get("method") or "GET").upper()

        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._timeout_seconds, follow_redirects=True
        ) as client:
            resp = await client.request(
                method,
                url,
                headers=kwargs.get("headers"),
                content=kwargs.get("body"),
            )

        raw = resp.text
        content_type = resp.headers.get("content-type", "")
        body = strip_html(raw) if "html" in content_type or raw.lstrip().startswith("<") else raw
        return f"[HTTP {resp.status_code}]\n{body[:FETCH_MAX_RESPONSE]}"
