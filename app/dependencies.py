"""
FastAPI dependencies.
Process-wide KiotViet client, token cache and rate limiter, plus per-request service builders.
"""

from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import get_session_factory
from app.integrations.kiotviet.api_client import KiotVietAPIClient
from app.integrations.kiotviet.token_cache import KiotVietTokenCache
from app.services.order_sync import OrderSyncService
from app.services.product_sync import ProductSyncService
from app.services.rate_limit import SyncRateLimiter
from app.services.webhook_service import KiotVietWebhookService


@lru_cache
def get_token_cache() -> KiotVietTokenCache:
    return KiotVietTokenCache()


@lru_cache
def get_kiotviet_client() -> KiotVietAPIClient:
    return KiotVietAPIClient(get_token_cache())


@lru_cache
def get_rate_limiter() -> SyncRateLimiter:
    return SyncRateLimiter()


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def get_product_sync_service(
    client: KiotVietAPIClient = Depends(get_kiotviet_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> ProductSyncService:
    return ProductSyncService(client, session_factory)


def get_order_sync_service(
    client: KiotVietAPIClient = Depends(get_kiotviet_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> OrderSyncService:
    return OrderSyncService(client, session_factory)


def get_webhook_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
) -> KiotVietWebhookService:
    return KiotVietWebhookService(session_factory)


async def verify_api_key(x_api_key: str | None = Header(None, alias="X-API-Key")) -> None:
    """
    Require the X-API-Key header when SYNC_API_KEY is configured.

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    if not settings.sync_api_key:
        return
    if x_api_key != settings.sync_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
