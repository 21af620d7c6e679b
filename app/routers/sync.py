"""
FastAPI router for manually triggered sync operations.
Product catalog syncs (full and incremental), website order creation and the
KiotViet connection check.
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.dependencies import (
    get_kiotviet_client,
    get_order_sync_service,
    get_product_sync_service,
    get_rate_limiter,
    verify_api_key,
)
from app.integrations.kiotviet.api_client import KiotVietAPIClient
from app.models.sync import OrderRequest, OrderSyncResult, SyncResult
from app.services.order_sync import OrderSyncService, ProductNotFoundError
from app.services.product_sync import ProductSyncService
from app.services.rate_limit import RateLimitedError, SyncRateLimiter

logger = structlog.get_logger()

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(verify_api_key)])

PRODUCT_SYNC_KEY = "product_sync"


def _check_rate_limit(limiter: SyncRateLimiter, key: str) -> None:
    try:
        limiter.allow(key)
    except RateLimitedError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e),
            headers={"Retry-After": str(e.remaining_seconds)},
        ) from e


@router.post("/products/full", response_model=SyncResult)
async def sync_products_full(
    service: ProductSyncService = Depends(get_product_sync_service),
    limiter: SyncRateLimiter = Depends(get_rate_limiter),
):
    """Sync the whole KiotViet catalog into local products."""
    _check_rate_limit(limiter, PRODUCT_SYNC_KEY)
    logger.info("Manual full product sync requested")
    return await service.sync_all()


@router.post("/products/incremental", response_model=SyncResult)
async def sync_products_incremental(
    since: datetime | None = Query(
        None, description="Lower bound on modification date (defaults to yesterday 00:00 UTC)"
    ),
    service: ProductSyncService = Depends(get_product_sync_service),
    limiter: SyncRateLimiter = Depends(get_rate_limiter),
):
    """Sync products modified since a timestamp."""
    _check_rate_limit(limiter, PRODUCT_SYNC_KEY)
    logger.info("Manual incremental product sync requested", since=since.isoformat() if since else None)
    return await service.sync_incremental(since)


@router.post("/orders", response_model=OrderSyncResult, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: OrderRequest,
    service: OrderSyncService = Depends(get_order_sync_service),
):
    """
    Create a website order and mirror it to KiotViet.

    The order is always kept locally; a failed mirror is reported through
    remote_synced and remote_error.
    """
    try:
        return await service.create_order_and_sync(request)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get("/connection")
async def test_connection(client: KiotVietAPIClient = Depends(get_kiotviet_client)):
    """Check KiotViet credentials and the configured website branch."""
    return await client.test_connection()
