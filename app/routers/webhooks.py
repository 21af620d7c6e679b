"""
FastAPI router for KiotViet webhook endpoints.
Receives order.update notifications and reconciles local order statuses.
"""
import json
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from app.dependencies import get_webhook_service
from app.integrations.kiotviet.models import WebhookEnvelope
from app.models.sync import WebhookResult
from app.services.webhook_service import InvalidSignatureError, KiotVietWebhookService

logger = structlog.get_logger()

router = APIRouter(tags=["webhooks"])


@router.post("/webhook/order-status", response_model=WebhookResult)
@router.post("/kiotviet/webhook/order-status", response_model=WebhookResult)
async def kiotviet_order_status(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature: Optional[str] = Header(None, alias="x-hub-signature"),
    service: KiotVietWebhookService = Depends(get_webhook_service),
):
    """
    Handle KiotViet order.update webhook.
    Validates signature against the raw body, then applies mapped statuses to local orders.
    Malformed records are counted as errors; only a body that is not a JSON object
    is rejected. Forwarding runs after the response is sent.
    """
    # Read raw body for signature verification
    body_bytes = await request.body()

    # Signature is checked before the payload is even parsed
    try:
        service.check_signature(x_hub_signature, body_bytes)
    except InvalidSignatureError as e:
        logger.warning("Rejected KiotViet webhook", reason=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        ) from e

    try:
        payload = json.loads(body_bytes.decode("utf-8"))
        # Only the top-level shape is checked here; records are validated one by one
        envelope = WebhookEnvelope.model_validate(payload)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Unparseable KiotViet webhook payload", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        ) from e

    logger.info(
        "Received KiotViet webhook",
        webhook_id=envelope.id,
        attempt=envelope.attempt,
        notifications=len(envelope.notifications),
    )

    result = await service.handle(
        envelope, signature=x_hub_signature, raw_body=body_bytes, verified=True
    )

    if service.forward_urls:
        background_tasks.add_task(service.forward, body_bytes)

    return result
