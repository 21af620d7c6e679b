"""Unit tests for the KiotViet catalog sync."""

import json
from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select

from app.integrations.kiotviet.api_client import RemoteApiError
from app.models.database import Category, Product, ProductCategory
from app.services.database_service import DatabaseService
from app.services.product_sync import ProductSyncService
from tests.helpers import FakeKiotVietClient, make_product


def build_service(client, session_factory, **overrides) -> ProductSyncService:
    options = {
        "allowed_category_ids": set(),
        "page_size": 100,
        "page_delay_seconds": 0,
        "page_error_delay_seconds": 0,
        "page_retry_attempts": 1,
    }
    options.update(overrides)
    return ProductSyncService(client, session_factory, **options)


async def count_products(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(Product))


class TestProductSyncFiltering:
    @pytest.mark.asyncio
    async def test_products_outside_allow_list_are_not_written(self, session_factory) -> None:
        client = FakeKiotVietClient(
            [make_product(1, categoryId=10), make_product(2, categoryId=99)]
        )
        service = build_service(client, session_factory, allowed_category_ids={10})

        result = await service.sync_all()

        assert result.processed == 2
        assert result.filtered == 1
        assert result.synced == 1
        async with session_factory() as session:
            ids = (await session.scalars(select(Product.kiotviet_id))).all()
        assert ids == ["1"]

    @pytest.mark.asyncio
    async def test_empty_allow_list_keeps_everything(self, session_factory) -> None:
        client = FakeKiotVietClient([make_product(1, categoryId=10), make_product(2, categoryId=99)])
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.filtered == 0
        assert await count_products(session_factory) == 2

    @pytest.mark.asyncio
    async def test_products_without_name_or_price_are_skipped(self, session_factory) -> None:
        client = FakeKiotVietClient(
            [make_product(1, name=None), make_product(2, basePrice=None), make_product(3)]
        )
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.skipped == 2
        assert result.synced == 1
        assert await count_products(session_factory) == 1


class TestProductSyncUpsert:
    @pytest.mark.asyncio
    async def test_created_product_fields(self, session_factory) -> None:
        client = FakeKiotVietClient([make_product(42, basePrice=125000.4)], inventory={42: 17})
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.created == 1
        async with session_factory() as session:
            product = await session.scalar(select(Product).where(Product.kiotviet_id == "42"))
            assert product.title == "Product 42"
            assert product.price == 125000
            assert product.quantity == 17
            assert product.general_description == "Product 42 full - SP000042"
            assert json.loads(product.images_url) == ["https://cdn.example.com/42.jpg"]
            assert product.is_featured is True

            category = await session.scalar(select(Category).where(Category.kiotviet_id == "10"))
            assert category.name == "Tea"
            links = (await session.scalars(select(ProductCategory.category_id))).all()
            assert links == [category.id]

    @pytest.mark.asyncio
    async def test_syncing_same_product_twice_updates_single_row(self, session_factory) -> None:
        client = FakeKiotVietClient([make_product(5, name="First name", basePrice=1000)])
        service = build_service(client, session_factory)
        await service.sync_all()

        client.products = [make_product(5, name="Second name", basePrice=2000)]
        result = await service.sync_all()

        assert result.updated == 1
        assert result.created == 0
        async with session_factory() as session:
            rows = (await session.scalars(select(Product))).all()
        assert len(rows) == 1
        assert rows[0].title == "Second name"
        assert rows[0].price == 2000

    @pytest.mark.asyncio
    async def test_inventory_failure_defaults_quantity_to_zero(
        self, session_factory, server_error
    ) -> None:
        client = FakeKiotVietClient([make_product(1)], inventory={1: 30})
        client.inventory_error = server_error
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.synced == 1
        async with session_factory() as session:
            product = await session.scalar(select(Product))
        assert product.quantity == 0


class TestProductSyncFailures:
    @pytest.mark.asyncio
    async def test_store_failure_rolls_back_only_that_product(
        self, session_factory, monkeypatch
    ) -> None:
        original_create = DatabaseService.create_product

        async def create_then_fail(self, attributes):
            product = await original_create(self, attributes)
            if attributes["kiotviet_id"] == "2":
                raise RuntimeError("insert failed")
            return product

        monkeypatch.setattr(DatabaseService, "create_product", create_then_fail)
        client = FakeKiotVietClient([make_product(1), make_product(2), make_product(3)])
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.processed == 3
        assert result.errors == 1
        assert result.synced == 2
        assert result.failed_pages == 0
        async with session_factory() as session:
            ids = (await session.scalars(select(Product.kiotviet_id).order_by(Product.id))).all()
        assert ids == ["1", "3"]

    @pytest.mark.asyncio
    async def test_malformed_items_are_counted_as_errors(self, session_factory) -> None:
        client = FakeKiotVietClient([make_product(1), make_product(2)], total=3)
        client.invalid_items[0] = 1
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.processed == 3
        assert result.errors == 1
        assert result.synced == 2
        assert result.failed_pages == 0
        assert await count_products(session_factory) == 2

    @pytest.mark.asyncio
    async def test_transient_page_error_is_retried_through_the_client(
        self, session_factory, server_error
    ) -> None:
        client = FakeKiotVietClient([make_product(1)])
        original_list = client.list_products
        attempts = 0

        async def flaky_list_products(page, page_size=100, modified_since=None):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise server_error
            return await original_list(page, page_size, modified_since)

        client.list_products = flaky_list_products
        service = build_service(client, session_factory, page_retry_attempts=3)

        result = await service.sync_all()

        assert attempts == 2
        assert result.pages == 1
        assert result.failed_pages == 0
        assert result.synced == 1


class TestProductSyncPaging:
    @pytest.mark.asyncio
    async def test_fetches_exactly_the_pages_covering_total(self, session_factory) -> None:
        products = [make_product(i) for i in range(1, 251)]
        client = FakeKiotVietClient(products, total=250)
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert [call[0] for call in client.page_calls] == [0, 1, 2]
        assert result.pages == 3
        assert result.synced == 250

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self, session_factory) -> None:
        client = FakeKiotVietClient([], total=500)
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert [call[0] for call in client.page_calls] == [0]
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_failed_page_does_not_stop_the_run(self, session_factory, server_error) -> None:
        products = [make_product(i) for i in range(1, 251)]
        client = FakeKiotVietClient(products, total=250)
        client.failing_pages[1] = server_error
        service = build_service(client, session_factory, page_retry_attempts=2)

        result = await service.sync_all()

        assert [call[0] for call in client.page_calls] == [0, 1, 1, 2]
        assert result.failed_pages == 1
        assert result.synced == 150
        assert await count_products(session_factory) == 150

    @pytest.mark.asyncio
    async def test_permanent_page_error_is_not_retried(self, session_factory) -> None:
        products = [make_product(i) for i in range(1, 151)]
        client = FakeKiotVietClient(products, total=150)
        client.failing_pages[1] = RemoteApiError(400, "Bad request")
        service = build_service(client, session_factory, page_retry_attempts=3)

        result = await service.sync_all()

        assert [call[0] for call in client.page_calls] == [0, 1]
        assert result.failed_pages == 1

    @pytest.mark.asyncio
    async def test_first_page_failure_ends_run(self, session_factory, server_error) -> None:
        client = FakeKiotVietClient([make_product(1)])
        client.failing_pages[0] = server_error
        service = build_service(client, session_factory)

        result = await service.sync_all()

        assert result.pages == 0
        assert result.failed_pages == 1
        assert len(client.page_calls) == 1

    @pytest.mark.asyncio
    async def test_pauses_between_pages(self, session_factory) -> None:
        pauses: list[float] = []

        async def record_sleep(seconds: float) -> None:
            pauses.append(seconds)

        products = [make_product(i) for i in range(1, 251)]
        client = FakeKiotVietClient(products, total=250)
        service = build_service(
            client, session_factory, page_delay_seconds=0.5, sleep=record_sleep
        )

        await service.sync_all()

        assert pauses == [0.5, 0.5]


class TestIncrementalSync:
    @pytest.mark.asyncio
    async def test_passes_formatted_since(self, session_factory) -> None:
        client = FakeKiotVietClient([make_product(1)])
        service = build_service(client, session_factory)

        result = await service.sync_incremental(datetime(2024, 12, 22, 0, 0, tzinfo=UTC))

        assert result.mode == "incremental"
        assert client.page_calls[0][2] == "2024-12-22T00:00:00"

    @pytest.mark.asyncio
    async def test_defaults_to_yesterday_midnight(self, session_factory) -> None:
        client = FakeKiotVietClient([])
        service = build_service(client, session_factory)

        await service.sync_incremental()

        since = client.page_calls[0][2]
        assert since.endswith("T00:00:00")
        assert datetime.fromisoformat(since).date() < datetime.now(UTC).date()
