"""
Order synchronization service.
Creates website orders locally in one transaction, then mirrors them to KiotViet.
The mirror step runs after commit and can only fail softly: POS downtime never
blocks a local sale.
"""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.integrations.kiotviet.api_client import KiotVietAPIClient, RemoteApiError
from app.integrations.kiotviet.transformer import KiotVietTransformer
from app.models.sync import OrderRequest, OrderSyncResult
from app.services.database_service import DatabaseService

logger = structlog.get_logger()


class ProductNotFoundError(Exception):
    """Raised when an order references a product that does not exist locally."""

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class OrderSyncService:
    """Creates orders locally and pushes them to KiotViet."""

    def __init__(
        self,
        client: KiotVietAPIClient,
        session_factory: async_sessionmaker[AsyncSession],
        branch_id: int | None = None,
        sale_channel_id: int | None = None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.branch_id = branch_id or settings.kiotviet_website_branch_id
        self.sale_channel_id = sale_channel_id or settings.kiotviet_website_sale_channel_id

    async def create_order_and_sync(self, request: OrderRequest) -> OrderSyncResult:
        """
        Create an order with its items locally, then mirror it to KiotViet.

        Args:
            request: Validated order request

        Returns:
            OrderSyncResult; remote_synced is False when mirroring was skipped or failed

        Raises:
            ProductNotFoundError: If any item references an unknown product (nothing is written)
        """
        order_id, mirror_lines = await self._create_local_order(request)
        logger.info("Created local order", order_id=order_id, items=len(request.items))

        result = OrderSyncResult(order_id=order_id)
        if not mirror_lines:
            logger.info("Order has no KiotViet-linked items, skipping mirror", order_id=order_id)
            return result

        try:
            remote = await self._mirror_order(request, order_id, mirror_lines)
        except Exception as e:
            logger.error("Failed to mirror order to KiotViet", order_id=order_id, error=str(e))
            result.remote_error = str(e)
            return result

        result.remote_order_id = remote.remote_order_id
        result.remote_order_code = remote.code
        result.remote_synced = True

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await DatabaseService(session).set_order_kiotviet_ref(
                        order_id, remote.remote_order_id, remote.code
                    )
        except Exception as e:
            # The remote order exists; a missing local link only affects webhook matching
            logger.error(
                "Failed to store KiotViet order reference",
                order_id=order_id,
                remote_order_id=remote.remote_order_id,
                error=str(e),
            )
            result.remote_error = f"Remote order created but not linked locally: {e}"

        return result

    async def _create_local_order(
        self, request: OrderRequest
    ) -> tuple[int, list[dict[str, Any]]]:
        mirror_lines: list[dict[str, Any]] = []
        async with self.session_factory() as session:
            async with session.begin():
                db = DatabaseService(session)
                order = await db.create_order(
                    {
                        "receiver_full_name": request.receiver_full_name,
                        "email": request.email,
                        "phone_number": request.phone_number,
                        "address_detail": request.address_detail,
                        "note": request.note,
                        "branch_id": self.branch_id,
                        "sale_channel_id": self.sale_channel_id,
                    }
                )

                total = 0
                for item in request.items:
                    product = await db.get_product(item.product_id)
                    if product is None:
                        raise ProductNotFoundError(item.product_id)
                    await db.add_order_item(order.id, product, item.quantity, item.note)
                    total += product.price * item.quantity
                    if product.kiotviet_id:
                        mirror_lines.append(
                            {
                                "kiotviet_id": product.kiotviet_id,
                                "code": product.kiotviet_code,
                                "title": product.title,
                                "quantity": item.quantity,
                                "price": product.price,
                                "note": item.note,
                            }
                        )
                order.price = total
                order_id = order.id
        return order_id, mirror_lines

    async def _mirror_order(
        self, request: OrderRequest, order_id: int, lines: list[dict[str, Any]]
    ):
        customer = await self._find_customer(request.phone_number)
        if customer is None:
            customer = await self.client.create_customer(
                KiotVietTransformer.customer_payload(
                    name=request.receiver_full_name,
                    phone=request.phone_number,
                    branch_id=self.branch_id,
                    email=request.email,
                    address=request.address_detail,
                    province=request.province,
                    district=request.district,
                    ward=request.ward,
                )
            )
        else:
            logger.info(
                "Reusing existing KiotViet customer",
                customer_id=customer.get("id"),
                code=customer.get("code"),
            )

        payload = KiotVietTransformer.order_payload(
            lines,
            customer_name=customer.get("name") or request.receiver_full_name,
            branch_id=self.branch_id,
            sale_channel_id=self.sale_channel_id,
            customer_id=customer.get("id"),
            description=f"Web order #{order_id} - {request.note or ''}",
            phone=request.phone_number,
            address=request.address_detail,
        )
        return await self.client.create_order(payload.to_wire())

    async def _find_customer(self, phone: str | None) -> dict[str, Any] | None:
        if not phone:
            return None
        try:
            return await self.client.find_customer_by_phone(phone)
        except RemoteApiError as e:
            # A failed lookup falls back to creating the customer
            logger.warning("KiotViet customer lookup failed", error=str(e))
            return None
