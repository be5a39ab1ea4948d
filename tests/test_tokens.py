import asyncio

import httpx
import pytest

from clawbridge.errors import CredentialMissingError, TokenExchangeError
from clawbridge.gateway.tokens import TokenManager

TOKEN_URL = "https://tokens.test/v2/token"


class Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _issuer(calls: list[httpx.Request], expires_at: float = 2_000.0, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if status != 200:
            return httpx.Response(status, text="bad credentials")
        return httpx.Response(
            200,
            json={"token": f"bearer-{len(calls)}", "expires_at": expires_at, "refresh_in": 1500, "chat_enabled": True},
        )

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_refresh_exchanges_credential_with_editor_headers():
    calls: list[httpx.Request] = []
    tokens = TokenManager(TOKEN_URL, "gh-secret", transport=_issuer(calls), clock=Clock())

    token = await tokens.refresh()

    assert token.token == "bearer-1"
    assert token.chat_enabled is True
    assert calls[0].headers["Authorization"] == "token gh-secret"
    assert "Editor-Version" in calls[0].headers


@pytest.mark.asyncio
async def test_authorize_reuses_token_until_refresh_buffer():
    calls: list[httpx.Request] = []
    clock = Clock(1_000.0)
    tokens = TokenManager(TOKEN_URL, "gh-secret", transport=_issuer(calls, expires_at=2_000.0), clock=clock)

    assert await tokens.authorize() == "bearer-1"
    clock.now = 1_900.0
    assert await tokens.authorize() == "bearer-1"
    clock.now = 1_941.0
    assert await tokens.authorize() == "bearer-2"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_concurrent_authorize_issues_a_single_exchange():
    calls: list[httpx.Request] = []
    tokens = TokenManager(TOKEN_URL, "gh-secret", transport=_issuer(calls), clock=Clock())

    results = await asyncio.gather(*(tokens.authorize() for _ in range(5)))

    assert results == ["bearer-1"] * 5
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_refresh_without_credential_raises():
    tokens = TokenManager(TOKEN_URL, "", transport=_issuer([]), clock=Clock())

    with pytest.raises(CredentialMissingError):
        await tokens.refresh()


@pytest.mark.asyncio
async def test_failed_exchange_clears_token():
    calls: list[httpx.Request] = []
    tokens = TokenManager(TOKEN_URL, "gh-secret", transport=_issuer(calls, status=401), clock=Clock())

    with pytest.raises(TokenExchangeError) as excinfo:
        await tokens.refresh()

    assert excinfo.value.status == 401
    assert "bad credentials" in str(excinfo.value)
    assert tokens.token is None


@pytest.mark.asyncio
async def test_set_credential_rolls_back_on_failure():
    tokens = TokenManager(TOKEN_URL, "", transport=_issuer([], status=401), clock=Clock())

    with pytest.raises(TokenExchangeError):
        await tokens.set_credential("  wrong  ")

    assert tokens.credential == ""
    assert tokens.has_credential is False
    assert tokens.token is None


@pytest.mark.asyncio
async def test_set_credential_strips_and_refreshes():
    calls: list[httpx.Request] = []
    tokens = TokenManager(TOKEN_URL, "", transport=_issuer(calls), clock=Clock())

    token = await tokens.set_credential("  gh-new \n")

    assert tokens.credential == "gh-new"
    assert token.token == "bearer-1"
    assert calls[0].headers["Authorization"] == "token gh-new"


@pytest.mark.asyncio
async def test_set_credential_waits_for_in_flight_refresh_and_verifies_new_credential():
    started = asyncio.Event()
    gate = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.headers["Authorization"] == "token good":
            started.set()
            await gate.wait()
            return httpx.Response(200, json={"token": "t-good", "expires_at": 2_000.0, "chat_enabled": True})
        return httpx.Response(401, text="bad credentials")

    tokens = TokenManager(TOKEN_URL, "good", transport=httpx.MockTransport(handler), clock=Clock())

    in_flight = asyncio.create_task(tokens.authorize())
    await started.wait()
    replacing = asyncio.create_task(tokens.set_credential("bad"))
    await asyncio.sleep(0)
    gate.set()

    assert await in_flight == "t-good"
    with pytest.raises(TokenExchangeError):
        await replacing
    assert tokens.credential == ""
    assert tokens.token is None
