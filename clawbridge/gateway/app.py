"""FastAPI application exposing the credential gateway.

Usage:
    clawbridge-gateway

Or directly:
    uvicorn clawbridge.gateway.app:create_app --factory --port 3456
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from clawbridge.config import Settings, load_settings
from clawbridge.errors import BackendError, ClawbridgeError, CredentialMissingError
from clawbridge.gateway.copilot import CopilotGateway
from clawbridge.gateway.relay import relay
from clawbridge.gateway.tokens import TokenManager

LOGGER = logging.getLogger(__name__)


class TokenBody(BaseModel):
    token: str | None = None


class RelayBody(BaseModel):
    url: str | None = None
    method: str = "GET"
    headers: dict[str, str] | None = None
    body: str | None = None


def _error(status_code: int, error_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"type": "error", "error": {"type": error_type, "message": message}},
    )


def _expiry_iso(gateway: CopilotGateway) -> str | None:
    token = gateway.tokens.token
    if token is None or not token.expires_at:
        return None
    return datetime.fromtimestamp(token.expires_at, tz=timezone.utc).isoformat()


def build_gateway(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CopilotGateway:
    tokens = TokenManager(settings.token_url, credential=settings.github_token, transport=transport)
    return CopilotGateway(
        tokens,
        chat_url=settings.chat_url,
        responses_url=settings.responses_url,
        transport=transport,
        timeout_seconds=settings.backend_timeout_seconds,
    )


def create_app(
    settings: Settings | None = None,
    gateway: CopilotGateway | None = None,
    relay_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    gateway = gateway or build_gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Pre-warm the bearer token when a credential came from the environment."""
        if gateway.tokens.has_credential:
            try:
                await gateway.tokens.refresh()
                LOGGER.info("Bearer token ready")
            except (ClawbridgeError, httpx.HTTPError) as exc:
                LOGGER.error("Bearer token pre-warm failed: %s", exc)
        else:
            LOGGER.info("No credential set; use POST /auth/github-token or set GITHUB_TOKEN")
        yield

    app = FastAPI(
        title="clawbridge gateway",
        version="0.1.0",
        description="Messages-compatible gateway in front of the Copilot backends.",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Original-Status"],
    )
    app.state.gateway = gateway

    @app.get("/health", tags=["status"])
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "hasCredential": gateway.tokens.has_credential,
            "hasToken": gateway.tokens.token is not None,
            "tokenExpiry": _expiry_iso(gateway),
        }

    @app.get("/auth/status", tags=["auth"])
    async def auth_status() -> dict[str, Any]:
        if not gateway.tokens.has_credential:
            return {"authenticated": False, "reason": "No GitHub token"}
        try:
            token = await gateway.tokens.refresh()
        except (ClawbridgeError, httpx.HTTPError) as exc:
            return {"authenticated": False, "reason": str(exc)}
        return {"authenticated": True, "expiry": _expiry_iso(gateway), "chatEnabled": token.chat_enabled}

    @app.post("/auth/github-token", tags=["auth"])
    async def set_github_token(body: TokenBody) -> JSONResponse:
        if not body.token or not body.token.strip():
            return JSONResponse(status_code=400, content={"error": 'Missing "token" in request body'})
        try:
            token = await gateway.tokens.set_credential(body.token)
        except (ClawbridgeError, httpx.HTTPError) as exc:
            return JSONResponse(status_code=401, content={"error": str(exc)})
        return JSONResponse(content={"success": True, "chatEnabled": token.chat_enabled})

    @app.post("/v1/messages", tags=["messages"])
    async def messages(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "invalid_request_error", "Request body must be JSON")
        if not isinstance(body, dict):
            return _error(400, "invalid_request_error", "Request body must be a JSON object")
        try:
            native = await gateway.forward(body)
        except CredentialMissingError as exc:
            return _error(401, "authentication_error", str(exc))
        except BackendError as exc:
            return _error(exc.status, "api_error", str(exc))
        except (ClawbridgeError, httpx.HTTPError) as exc:
            LOGGER.error("Gateway error: %s", exc)
            return _error(500, "api_error", str(exc))
        return JSONResponse(content=native)

    @app.api_route("/relay", methods=["GET", "POST"], tags=["relay"])
    async def relay_route(request: Request, url: str | None = None) -> Response:
        target = RelayBody(url=url)
        if request.method == "POST":
            try:
                payload = await request.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict) and payload.get("url"):
                target = RelayBody.model_validate(payload)
        if not target.url:
            return JSONResponse(status_code=400, content={"error": "Missing target URL"})

        try:
            result = await relay(
                target.url,
                method=target.method,
                headers=target.headers,
                body=target.body,
                max_chars=settings.relay_max_chars,
                transport=relay_transport,
            )
        except httpx.HTTPError as exc:
            LOGGER.error("relay error fetching %s: %s", target.url, exc)
            return JSONResponse(status_code=502, content={"error": f"Failed to fetch: {exc}"})

        return Response(
            content=result.body,
            status_code=result.status,
            headers={"X-Original-Status": str(result.status), "Content-Type": result.content_type},
        )

    return app


def main() -> None:
    """Run the gateway with uvicorn."""

    logging.basicConfig(level=logging.INFO)
    settings = load_settings()
    uvicorn.run(create_app(settings), host=settings.proxy_host, port=settings.proxy_port)


if __name__ == "__main__":
    main()
