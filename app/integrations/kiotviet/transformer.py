"""
KiotViet data transformation.
KiotViet product -> local product attributes, and local order -> KiotViet order/customer payloads.
Prices are stored as integer minor units (VND has no subunit, so this is a plain round).
"""

import json
import re
from datetime import UTC, datetime
from typing import Any

from app.integrations.kiotviet.models import (
    KiotVietOrderCustomer,
    KiotVietOrderDelivery,
    KiotVietOrderDetail,
    KiotVietOrderPayload,
    KiotVietProduct,
)

PROVINCE_PREFIX = re.compile(r"^(Thành phố|Tỉnh)\s+", re.IGNORECASE)
PHONE_NOISE = re.compile(r"[\s\-()]")


class KiotVietTransformer:
    """Converts between KiotViet payloads and local records."""

    @staticmethod
    def is_syncable(product: KiotVietProduct) -> bool:
        """A product needs a name and a base price to be stored."""
        return bool(product.name and product.name.strip()) and product.base_price is not None

    @staticmethod
    def to_price(value: float | None) -> int:
        if value is None:
            return 0
        return int(round(value))

    @staticmethod
    def product_attributes(product: KiotVietProduct, quantity: int) -> dict[str, Any]:
        """
        Build local Product column values from a KiotViet product.

        Args:
            product: Remote product
            quantity: On-hand quantity fetched separately

        Returns:
            Dict of Product attributes (without id/created_at)
        """
        return {
            "kiotviet_id": str(product.id),
            "kiotviet_code": product.code,
            "title": product.name.strip() if product.name else "",
            "price": KiotVietTransformer.to_price(product.base_price),
            "quantity": quantity,
            "description": product.description or "",
            "general_description": f"{product.full_name or ''} - {product.code or ''}",
            "images_url": json.dumps(product.images),
            "is_featured": product.is_active is True,
        }

    @staticmethod
    def to_international_phone(phone: str | None) -> str:
        """Normalize a Vietnamese phone number to +84 form."""
        if not phone:
            return ""
        clean = PHONE_NOISE.sub("", phone)
        if clean.startswith("+84"):
            return clean
        if clean.startswith("84"):
            return f"+{clean}"
        if clean.startswith("0"):
            return f"+84{clean[1:]}"
        return f"+84{clean}"

    @staticmethod
    def customer_payload(
        name: str,
        phone: str | None,
        branch_id: int,
        email: str | None = None,
        address: str | None = None,
        province: str | None = None,
        district: str | None = None,
        ward: str | None = None,
    ) -> dict[str, Any]:
        """Build the POST /customers body."""
        payload: dict[str, Any] = {
            "name": name,
            "contactNumber": KiotVietTransformer.to_international_phone(phone),
            "address": address or "",
            "branchId": branch_id,
        }
        if email and email.strip():
            payload["email"] = email.strip()
        if ward and ward.strip():
            payload["wardName"] = ward.strip()
        if province and province.strip():
            cleaned_province = PROVINCE_PREFIX.sub("", province).strip()
            payload["locationName"] = " - ".join(
                part for part in (cleaned_province, (district or "").strip()) if part
            )
        return payload

    @staticmethod
    def order_payload(
        lines: list[dict[str, Any]],
        customer_name: str,
        branch_id: int,
        sale_channel_id: int,
        customer_id: int | None = None,
        description: str = "",
        phone: str | None = None,
        address: str | None = None,
        purchase_date: datetime | None = None,
    ) -> KiotVietOrderPayload:
        """
        Build the POST /orders body.

        Args:
            lines: Dicts with kiotviet_id, code, title, quantity, price, note
            customer_name: Receiver / customer display name
            branch_id: Website branch id
            sale_channel_id: Website sale channel id
            customer_id: KiotViet customer id (found or created)
            description: Free-text order description
            phone: Receiver phone (delivery block is added when present)
            address: Receiver address
            purchase_date: Defaults to now (UTC)
        """
        details = [
            KiotVietOrderDetail(
                product_id=int(line["kiotviet_id"]),
                product_code=line.get("code"),
                product_name=line.get("title"),
                quantity=line["quantity"],
                price=line["price"],
                note=line.get("note"),
            )
            for line in lines
        ]
        delivery = None
        if phone:
            delivery = KiotVietOrderDelivery(
                receiver=customer_name,
                contact_number=KiotVietTransformer.to_international_phone(phone),
                address=address or "",
            )
        return KiotVietOrderPayload(
            purchase_date=(purchase_date or datetime.now(UTC)).isoformat(),
            branch_id=branch_id,
            sale_channel_id=sale_channel_id,
            description=description,
            total_payment=sum(d.price * d.quantity for d in details),
            customer=KiotVietOrderCustomer(id=customer_id, name=customer_name.strip()),
            order_details=details,
            order_delivery=delivery,
        )
