"""
KiotViet order-status webhook handling.
Verifies the signature, keeps only website-originated orders, maps KiotViet status
codes to local statuses and applies them by KiotViet order id.

KiotViet's order.update feed covers every branch and sales channel of the
retailer, so most records are skipped by design. Business-level skips never
raise: KiotViet retries non-2xx responses and a local miss must not cause a
retry storm.
"""

import asyncio
import base64
import binascii
import hashlib
import hmac
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.integrations.kiotviet.models import (
    WebhookEnvelope,
    WebhookNotification,
    WebhookOrderData,
)
from app.models.database import OrderStatus
from app.models.sync import WebhookResult
from app.services.database_service import DatabaseService

logger = structlog.get_logger()

# KiotViet order status -> local status
STATUS_MAPPING: dict[int, OrderStatus] = {
    5: OrderStatus.CONFIRMED,
    3: OrderStatus.SHIPPING,
    4: OrderStatus.CANCELLED,
}


class InvalidSignatureError(Exception):
    """Raised when a webhook request fails signature verification."""

    pass


def _record_field(record: Any, name: str) -> Any:
    return record.get(name) if isinstance(record, dict) else None


def _signing_key(secret: str) -> bytes:
    # KiotViet secrets are issued base64-encoded; fall back to raw bytes otherwise
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def verify_signature(secret: str, raw_body: bytes, signature: str) -> bool:
    """
    Verify an HMAC-SHA256 webhook signature.

    Accepts hex, base64 and URL-safe base64 encodings, with or without a
    "sha256=" prefix.

    Args:
        secret: Shared webhook secret
        raw_body: Exact request body bytes
        signature: Value of the x-hub-signature header

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature:
        return False

    candidate = signature.strip()
    if candidate.lower().startswith("sha256="):
        candidate = candidate[len("sha256="):]

    digest = hmac.new(_signing_key(secret), raw_body, hashlib.sha256).digest()
    expected = [
        digest.hex(),
        base64.b64encode(digest).decode("ascii"),
        base64.urlsafe_b64encode(digest).decode("ascii").rstrip("="),
    ]
    # Compare against every accepted encoding without short-circuiting
    matched = False
    for value in expected:
        if hmac.compare_digest(value, candidate) or hmac.compare_digest(value, candidate.lower()):
            matched = True
    return matched


class KiotVietWebhookService:
    """Applies KiotViet order status notifications to local orders."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        secret: str | None = None,
        allow_unsigned: bool | None = None,
        branch_id: int | None = None,
        sale_channel_id: int | None = None,
        forward_urls: list[str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.session_factory = session_factory
        self.secret = secret if secret is not None else settings.kiotviet_webhook_secret
        self.allow_unsigned = (
            allow_unsigned
            if allow_unsigned is not None
            else settings.kiotviet_webhook_allow_unsigned
        )
        self.branch_id = branch_id or settings.kiotviet_website_branch_id
        self.sale_channel_id = sale_channel_id or settings.kiotviet_website_sale_channel_id
        self.forward_urls = (
            forward_urls if forward_urls is not None else settings.webhook_forward_urls
        )
        self._http_client = http_client

    def check_signature(self, signature: str | None, raw_body: bytes | None) -> None:
        """
        Enforce the signature policy.

        Raises:
            InvalidSignatureError: If the request must be rejected
        """
        if not self.secret:
            if self.allow_unsigned:
                logger.warning("KiotViet webhook accepted without signature check (insecure mode)")
                return
            raise InvalidSignatureError("Webhook secret not configured")

        if not signature or raw_body is None:
            raise InvalidSignatureError("Missing webhook signature")
        if not verify_signature(self.secret, raw_body, signature):
            raise InvalidSignatureError("Invalid webhook signature")

    async def handle(
        self,
        payload: WebhookEnvelope | dict[str, Any],
        signature: str | None = None,
        raw_body: bytes | None = None,
        verified: bool = False,
    ) -> WebhookResult:
        """
        Process an order.update webhook.

        Args:
            payload: Parsed envelope (or its raw dict form)
            signature: x-hub-signature header value
            raw_body: Exact request body used for signature verification
            verified: Caller already ran check_signature on this request

        Returns:
            WebhookResult with processed/skipped/errors counts

        Raises:
            InvalidSignatureError: On signature failure (before any record is examined)
        """
        if not verified:
            self.check_signature(signature, raw_body)

        envelope = (
            payload if isinstance(payload, WebhookEnvelope) else WebhookEnvelope.model_validate(payload)
        )
        result = WebhookResult()

        if not envelope.notifications:
            result.message = "No notifications to process"
            return result

        for raw_notification in envelope.notifications:
            try:
                notification = WebhookNotification.model_validate(raw_notification)
            except ValidationError as e:
                result.errors += 1
                logger.error("Malformed KiotViet notification", webhook_id=envelope.id, error=str(e))
                continue

            for record in notification.data:
                try:
                    order = WebhookOrderData.model_validate(record)
                    applied = await self._apply(order, envelope.id, notification.action)
                except Exception as e:
                    result.errors += 1
                    logger.error(
                        "Error applying KiotViet order status",
                        kiotviet_order_id=_record_field(record, "Id"),
                        code=_record_field(record, "Code"),
                        error=str(e),
                    )
                    continue
                if applied:
                    result.processed += 1
                else:
                    result.skipped += 1

        logger.info(
            "KiotViet webhook processed",
            webhook_id=envelope.id,
            processed=result.processed,
            skipped=result.skipped,
            errors=result.errors,
        )
        return result

    async def _apply(self, order: WebhookOrderData, webhook_id: str | None, action: str | None) -> bool:
        if order.branch_id != self.branch_id:
            logger.info("Skipping order from other branch", code=order.code, branch_id=order.branch_id)
            return False

        if order.sale_channel_id != self.sale_channel_id:
            logger.info(
                "Skipping order from other sale channel",
                code=order.code,
                sale_channel_id=order.sale_channel_id,
            )
            return False

        new_status = STATUS_MAPPING.get(order.status) if order.status is not None else None
        if new_status is None:
            logger.warning("Unmapped KiotViet order status", code=order.code, status=order.status)
            return False

        async with self.session_factory() as session:
            async with session.begin():
                matched = await DatabaseService(session).apply_order_status(
                    str(order.id),
                    new_status,
                    kiotviet_status=order.status,
                    webhook_id=webhook_id,
                    action=action,
                )

        if matched == 0:
            logger.warning("Order not found locally", code=order.code, kiotviet_order_id=order.id)
            return False

        logger.info(
            "Order status updated",
            code=order.code,
            status=new_status.value,
            kiotviet_status=order.status,
        )
        return True

    async def forward(self, raw_body: bytes) -> None:
        """
        Forward the raw webhook body to downstream consumers. Failures are only logged.
        Scheduled by the webhook router as a background task.
        """

        async def _post(client: httpx.AsyncClient, url: str) -> None:
            try:
                response = await client.post(
                    url,
                    content=raw_body,
                    headers={"Content-Type": "application/json"},
                    timeout=settings.kiotviet_webhook_forward_timeout_seconds,
                )
                logger.info("Forwarded KiotViet webhook", url=url, status_code=response.status_code)
            except httpx.HTTPError as e:
                logger.error("Failed to forward KiotViet webhook", url=url, error=str(e))

        if self._http_client is not None:
            await asyncio.gather(*(_post(self._http_client, url) for url in self.forward_urls))
            return
        async with httpx.AsyncClient() as client:
            await asyncio.gather(*(_post(client, url) for url in self.forward_urls))
