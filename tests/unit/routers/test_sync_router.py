"""Unit tests for the /sync endpoints."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.config import settings
from app.dependencies import (
    get_kiotviet_client,
    get_order_sync_service,
    get_product_sync_service,
    get_rate_limiter,
)
from app.integrations.kiotviet.token_cache import CredentialError
from app.main import app
from app.services.order_sync import OrderSyncService
from app.services.product_sync import ProductSyncService
from app.services.rate_limit import SyncRateLimiter
from tests.helpers import FakeKiotVietClient, add_product, make_product


@pytest_asyncio.fixture
async def api(session_factory) -> AsyncGenerator[tuple[AsyncClient, FakeKiotVietClient], None]:
    fake = FakeKiotVietClient([make_product(1), make_product(2)])
    limiter = SyncRateLimiter(cooldown_seconds=60)

    app.dependency_overrides[get_product_sync_service] = lambda: ProductSyncService(
        fake,
        session_factory,
        allowed_category_ids=set(),
        page_delay_seconds=0,
        page_error_delay_seconds=0,
    )
    app.dependency_overrides[get_order_sync_service] = lambda: OrderSyncService(fake, session_factory)
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_kiotviet_client] = lambda: fake

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, fake

    app.dependency_overrides.clear()


class TestProductSyncEndpoints:
    @pytest.mark.asyncio
    async def test_full_sync_returns_summary(self, api) -> None:
        client, _ = api

        response = await client.post("/sync/products/full")

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "full"
        assert data["synced"] == 2

    @pytest.mark.asyncio
    async def test_second_trigger_is_rate_limited(self, api) -> None:
        client, _ = api

        await client.post("/sync/products/full")
        response = await client.post("/sync/products/incremental")

        assert response.status_code == 429
        assert 0 < int(response.headers["Retry-After"]) <= 60

    @pytest.mark.asyncio
    async def test_incremental_passes_since(self, api) -> None:
        client, fake = api

        response = await client.post(
            "/sync/products/incremental", params={"since": "2024-12-22T00:00:00"}
        )

        assert response.status_code == 200
        assert response.json()["mode"] == "incremental"
        assert fake.page_calls[0][2] == "2024-12-22T00:00:00"


class TestOrderEndpoint:
    @pytest.mark.asyncio
    async def test_creates_and_mirrors_order(self, api, session_factory) -> None:
        client, fake = api
        product_id = await add_product(session_factory, kiotviet_id="101")

        response = await client.post(
            "/sync/orders",
            json={
                "receiver_full_name": "Nguyen Van A",
                "phone_number": "0901234567",
                "items": [{"product_id": product_id, "quantity": 2}],
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["remote_synced"] is True
        assert data["remote_order_code"] == "DH000123"
        assert len(fake.orders) == 1

    @pytest.mark.asyncio
    async def test_unknown_product_is_404(self, api) -> None:
        client, fake = api

        response = await client.post(
            "/sync/orders",
            json={"receiver_full_name": "A", "items": [{"product_id": 404, "quantity": 1}]},
        )

        assert response.status_code == 404
        assert fake.orders == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"receiver_full_name": "A", "items": []},
            {"receiver_full_name": "   ", "items": [{"product_id": 1, "quantity": 1}]},
            {"receiver_full_name": "A", "items": [{"product_id": 1, "quantity": 0}]},
        ],
    )
    async def test_invalid_order_is_422(self, api, body) -> None:
        client, _ = api

        response = await client.post("/sync/orders", json=body)

        assert response.status_code == 422


class TestConnectionEndpoint:
    @pytest.mark.asyncio
    async def test_connection(self, api) -> None:
        client, _ = api

        response = await client.get("/sync/connection")

        assert response.status_code == 200
        assert response.json()["success"] is True

    @pytest.mark.asyncio
    async def test_missing_credentials_is_503(self, api) -> None:
        client, _ = api

        def unconfigured():
            raise CredentialError("KiotViet credentials not configured")

        app.dependency_overrides[get_kiotviet_client] = unconfigured

        response = await client.get("/sync/connection")

        assert response.status_code == 503


class TestApiKey:
    @pytest.mark.asyncio
    async def test_api_key_required_when_configured(self, api, monkeypatch) -> None:
        client, _ = api
        monkeypatch.setattr(settings, "sync_api_key", "s3cret")

        rejected = await client.get("/sync/connection")
        accepted = await client.get("/sync/connection", headers={"X-API-Key": "s3cret"})

        assert rejected.status_code == 401
        assert accepted.status_code == 200
