"""Unit tests for the KiotViet token cache."""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from app.integrations.kiotviet.token_cache import CredentialError, KiotVietTokenCache

TOKEN_URL = "https://id.example.com/connect/token"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def token_transport(requests: list[httpx.Request], status_code: int = 200, expires_in: int = 86400):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "invalid_client"})
        return httpx.Response(
            200,
            json={
                "access_token": f"token-{len(requests)}",
                "expires_in": expires_in,
                "token_type": "Bearer",
            },
        )

    return httpx.MockTransport(handler)


def build_cache(http_client: httpx.AsyncClient, clock: FakeClock, margin: int = 300) -> KiotVietTokenCache:
    return KiotVietTokenCache(
        client_id="client-id",
        client_secret="client-secret",
        token_url=TOKEN_URL,
        expiry_margin_seconds=margin,
        http_client=http_client,
        clock=clock,
    )


class TestKiotVietTokenCache:
    def test_missing_credentials_raise(self) -> None:
        with pytest.raises(CredentialError):
            KiotVietTokenCache(client_id="", client_secret="")

    @pytest.mark.asyncio
    async def test_token_request_uses_client_credentials_form(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=token_transport(requests)) as http_client:
            cache = build_cache(http_client, FakeClock())
            token = await cache.get_token()

        assert token == "token-1"
        form = parse_qs(requests[0].content.decode())
        assert form == {
            "scopes": ["PublicApi.Access"],
            "grant_type": ["client_credentials"],
            "client_id": ["client-id"],
            "client_secret": ["client-secret"],
        }
        assert str(requests[0].url) == TOKEN_URL

    @pytest.mark.asyncio
    async def test_token_is_reused_until_margin(self) -> None:
        requests: list[httpx.Request] = []
        clock = FakeClock()
        async with httpx.AsyncClient(transport=token_transport(requests, expires_in=3600)) as http_client:
            cache = build_cache(http_client, clock, margin=300)

            assert await cache.get_token() == "token-1"
            clock.now += 3299
            assert await cache.get_token() == "token-1"
            clock.now += 1
            assert await cache.get_token() == "token-2"

        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=token_transport(requests)) as http_client:
            cache = build_cache(http_client, FakeClock())
            tokens = await asyncio.gather(*(cache.get_token() for _ in range(5)))

        assert set(tokens) == {"token-1"}
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_token(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=token_transport(requests)) as http_client:
            cache = build_cache(http_client, FakeClock())
            await cache.get_token()
            cache.invalidate()
            assert await cache.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_rejected_grant_raises_credential_error(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=token_transport(requests, status_code=400)) as http_client:
            cache = build_cache(http_client, FakeClock())
            with pytest.raises(CredentialError):
                await cache.get_token()

    @pytest.mark.asyncio
    async def test_unreachable_identity_endpoint_raises_credential_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            cache = build_cache(http_client, FakeClock())
            with pytest.raises(CredentialError):
                await cache.get_token()
