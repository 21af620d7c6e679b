"""Shared test doubles and builders."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.integrations.kiotviet.models import KiotVietProduct, ProductPage, RemoteOrderRef
from app.integrations.kiotviet.transformer import KiotVietTransformer
from app.models.database import Product

WEBSITE_BRANCH_ID = 635934
WEBSITE_SALE_CHANNEL_ID = 496738


def make_product(product_id: int, **overrides: Any) -> KiotVietProduct:
    """Build a remote product with sensible defaults."""
    data: dict[str, Any] = {
        "id": product_id,
        "code": f"SP{product_id:06d}",
        "name": f"Product {product_id}",
        "fullName": f"Product {product_id} full",
        "categoryId": 10,
        "categoryName": "Tea",
        "basePrice": 50000,
        "images": [f"https://cdn.example.com/{product_id}.jpg"],
        "isActive": True,
    }
    data.update(overrides)
    return KiotVietProduct.model_validate(data)


class FakeKiotVietClient:
    """In-memory stand-in for KiotVietAPIClient."""

    def __init__(
        self,
        products: list[KiotVietProduct] | None = None,
        total: int | None = None,
        inventory: dict[int, int] | None = None,
    ):
        self.products = products or []
        self.total = total if total is not None else len(self.products)
        self.inventory = inventory or {}
        self.failing_pages: dict[int, Exception] = {}
        self.invalid_items: dict[int, int] = {}
        self.inventory_error: Exception | None = None
        self.order_error: Exception | None = None
        self.page_calls: list[tuple[int, int, str | None]] = []
        self.customers: list[dict[str, Any]] = []
        self.existing_customers: list[dict[str, Any]] = []
        self.customer_lookups: list[str] = []
        self.customer_lookup_error: Exception | None = None
        self.orders: list[dict[str, Any]] = []

    async def list_products(
        self, page: int, page_size: int = 100, modified_since: str | None = None
    ) -> ProductPage:
        self.page_calls.append((page, page_size, modified_since))
        if page in self.failing_pages:
            raise self.failing_pages[page]
        start = page * page_size
        return ProductPage(
            items=self.products[start:start + page_size],
            total=self.total,
            invalid_items=self.invalid_items.get(page, 0),
        )

    async def get_product_inventory(self, remote_id: int) -> int:
        if self.inventory_error is not None:
            raise self.inventory_error
        return self.inventory.get(int(remote_id), 0)

    async def find_customer_by_phone(self, phone: str) -> dict[str, Any] | None:
        self.customer_lookups.append(phone)
        if self.customer_lookup_error is not None:
            raise self.customer_lookup_error
        for customer in self.existing_customers:
            if KiotVietTransformer.to_international_phone(
                customer.get("contactNumber")
            ) == KiotVietTransformer.to_international_phone(phone):
                return customer
        return None

    async def create_customer(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.customers.append(payload)
        return {"id": 7001, "name": payload["name"], "code": "KH000001"}

    async def create_order(self, payload: dict[str, Any]) -> RemoteOrderRef:
        if self.order_error is not None:
            raise self.order_error
        self.orders.append(payload)
        return RemoteOrderRef(remote_order_id="9001", code="DH000123")

    async def test_connection(self) -> dict[str, Any]:
        return {"success": True, "message": "Connected to KiotViet"}

    async def close(self) -> None:
        pass


async def add_product(
    session_factory: async_sessionmaker[AsyncSession], **attributes: Any
) -> int:
    """Insert a local product and return its id."""
    values: dict[str, Any] = {"title": "Local product", "price": 10000, "quantity": 5}
    values.update(attributes)
    async with session_factory() as session:
        async with session.begin():
            product = Product(**values)
            session.add(product)
            await session.flush()
            return product.id
