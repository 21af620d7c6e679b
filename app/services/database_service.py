"""
Database service layer for sync operations.
Handles reads and writes of products, categories, orders and order status events
on an AsyncSession. Transaction boundaries belong to the caller.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import (
    Category,
    OrderItem,
    OrderStatus,
    OrderStatusEvent,
    Product,
    ProductCategory,
    ProductOrder,
)

logger = structlog.get_logger()


class DatabaseService:
    """Repository over the storefront tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Products

    async def get_product(self, product_id: int) -> Product | None:
        return await self.session.get(Product, product_id)

    async def get_product_by_kiotviet_id(self, kiotviet_id: str) -> Product | None:
        result = await self.session.execute(
            select(Product).where(Product.kiotviet_id == kiotviet_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def create_product(self, attributes: dict[str, Any]) -> Product:
        """Insert a product and flush so its id is available."""
        product = Product(**attributes)
        self.session.add(product)
        await self.session.flush()
        return product

    async def update_product(self, product: Product, attributes: dict[str, Any]) -> Product:
        for key, value in attributes.items():
            setattr(product, key, value)
        product.updated_at = datetime.now(UTC)
        await self.session.flush()
        return product

    # Categories

    async def get_or_create_category(self, kiotviet_id: str, name: str | None) -> Category:
        """
        Find the category linked to a KiotViet category id, creating it if needed.

        Args:
            kiotviet_id: KiotViet category id
            name: KiotViet category name (used only on creation)

        Returns:
            Existing or newly created Category
        """
        result = await self.session.execute(
            select(Category).where(Category.kiotviet_id == kiotviet_id).limit(1)
        )
        category = result.scalar_one_or_none()
        if category is not None:
            return category

        category = Category(name=name or f"KiotViet {kiotviet_id}", kiotviet_id=kiotviet_id)
        self.session.add(category)
        await self.session.flush()
        logger.info("Created category from KiotViet", kiotviet_id=kiotviet_id, name=category.name)
        return category

    async def attach_category(self, product_id: int, category_id: int) -> None:
        result = await self.session.execute(
            select(ProductCategory.id).where(
                ProductCategory.product_id == product_id,
                ProductCategory.category_id == category_id,
            )
        )
        if result.first() is None:
            self.session.add(ProductCategory(product_id=product_id, category_id=category_id))
            await self.session.flush()

    async def get_product_category_ids(self, product_id: int) -> list[int]:
        result = await self.session.execute(
            select(ProductCategory.category_id).where(ProductCategory.product_id == product_id)
        )
        return list(result.scalars().all())

    # Orders

    async def create_order(self, attributes: dict[str, Any]) -> ProductOrder:
        order = ProductOrder(status=OrderStatus.NEW, **attributes)
        self.session.add(order)
        await self.session.flush()
        return order

    async def add_order_item(
        self, order_id: int, product: Product, quantity: int, note: str | None = None
    ) -> OrderItem:
        item = OrderItem(
            order_id=order_id,
            product_id=product.id,
            quantity=quantity,
            price=product.price,
            note=note,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def get_order(self, order_id: int) -> ProductOrder | None:
        return await self.session.get(ProductOrder, order_id)

    async def set_order_kiotviet_ref(
        self, order_id: int, kiotviet_order_id: str, kiotviet_order_code: str | None
    ) -> None:
        await self.session.execute(
            update(ProductOrder)
            .where(ProductOrder.id == order_id)
            .values(
                kiotviet_order_id=kiotviet_order_id,
                kiotviet_order_code=kiotviet_order_code,
                updated_at=datetime.now(UTC),
            )
        )

    async def apply_order_status(
        self,
        kiotviet_order_id: str,
        new_status: OrderStatus,
        kiotviet_status: int | None = None,
        webhook_id: str | None = None,
        action: str | None = None,
    ) -> int:
        """
        Set the status of every order linked to a KiotViet order id.

        Idempotent: re-applying the same status changes nothing except updated_at,
        and only real transitions produce an OrderStatusEvent.

        Returns:
            Number of matching local orders (0 when the order is unknown locally)
        """
        result = await self.session.execute(
            select(ProductOrder.id, ProductOrder.status).where(
                ProductOrder.kiotviet_order_id == kiotviet_order_id
            )
        )
        matches = result.all()
        if not matches:
            return 0

        await self.session.execute(
            update(ProductOrder)
            .where(ProductOrder.kiotviet_order_id == kiotviet_order_id)
            .values(status=new_status, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

        for order_id, old_status in matches:
            if old_status == new_status:
                continue
            self.session.add(
                OrderStatusEvent(
                    order_id=order_id,
                    old_status=OrderStatus(old_status).value,
                    new_status=new_status.value,
                    kiotviet_status=kiotviet_status,
                    webhook_id=webhook_id,
                    action=action,
                )
            )
        await self.session.flush()
        return len(matches)

    async def get_status_events(self, order_id: int) -> list[OrderStatusEvent]:
        result = await self.session.execute(
            select(OrderStatusEvent)
            .where(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.id)
        )
        return list(result.scalars().all())
