"""
Product synchronization service.
Pages through the KiotViet catalog and upserts products into the storefront tables.

Each product is committed on its own, so a failure later in the run never undoes
earlier work. Page fetches are retried for transient errors; a page that still
fails is counted and the run moves on to the next page.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.integrations.kiotviet.api_client import KiotVietAPIClient
from app.integrations.kiotviet.models import KiotVietProduct
from app.integrations.kiotviet.transformer import KiotVietTransformer
from app.models.sync import SyncResult
from app.services.database_service import DatabaseService
from app.utils.retry import call_with_page_retry

logger = structlog.get_logger()

KIOTVIET_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class ProductSyncService:
    """Syncs the KiotViet catalog into local products and categories."""

    def __init__(
        self,
        client: KiotVietAPIClient,
        session_factory: async_sessionmaker[AsyncSession],
        allowed_category_ids: set[int] | None = None,
        page_size: int | None = None,
        page_delay_seconds: float | None = None,
        page_error_delay_seconds: float | None = None,
        page_retry_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.session_factory = session_factory
        self.allowed_category_ids = (
            allowed_category_ids
            if allowed_category_ids is not None
            else settings.allowed_category_ids
        )
        self.page_size = page_size or settings.sync_page_size
        self.page_delay_seconds = (
            page_delay_seconds if page_delay_seconds is not None else settings.sync_page_delay_seconds
        )
        self.page_error_delay_seconds = (
            page_error_delay_seconds
            if page_error_delay_seconds is not None
            else settings.sync_page_error_delay_seconds
        )
        self.page_retry_attempts = page_retry_attempts or settings.sync_page_retry_attempts
        self._sleep = sleep

    async def sync_all(self) -> SyncResult:
        """Sync the whole catalog (optionally bounded by KIOTVIET_INITIAL_SYNC_FROM)."""
        modified_since = settings.kiotviet_initial_sync_from or None
        return await self._run("full", modified_since)

    async def sync_incremental(self, since: datetime | None = None) -> SyncResult:
        """
        Sync products modified since a timestamp.

        Args:
            since: Lower bound on modification date; defaults to yesterday 00:00 UTC
        """
        if since is None:
            since = (datetime.now(UTC) - timedelta(days=1)).replace(
                hour=0, minute=0, second=0, microsecond=0
            )
        return await self._run("incremental", since.strftime(KIOTVIET_DATE_FORMAT))

    async def _run(self, mode: str, modified_since: str | None) -> SyncResult:
        result = SyncResult(mode=mode)
        logger.info(
            "Starting product sync",
            mode=mode,
            modified_since=modified_since,
            page_size=self.page_size,
            allowed_categories=sorted(self.allowed_category_ids),
        )

        page_index = 0
        total: int | None = None

        while True:
            current_page = page_index
            try:
                page = await call_with_page_retry(
                    self.client.list_products,
                    current_page,
                    self.page_size,
                    modified_since,
                    max_attempts=self.page_retry_attempts,
                    delay_seconds=self.page_error_delay_seconds,
                    log_context={"page": current_page},
                )
            except Exception as e:
                result.failed_pages += 1
                logger.error("Error fetching product page", page=current_page, error=str(e))
                page_index += 1
                # Without a known total there is no way to tell whether more pages exist
                if total is None or self.page_size * page_index >= total:
                    break
                await self._sleep(self.page_error_delay_seconds)
                continue

            total = page.total
            result.pages += 1
            if page.invalid_items:
                result.processed += page.invalid_items
                result.errors += page.invalid_items
            if not page.items and not page.invalid_items:
                break

            delay = self.page_delay_seconds
            try:
                await self._process_page(page.items, result)
            except Exception as e:
                result.failed_pages += 1
                delay = self.page_error_delay_seconds
                logger.error("Error processing product page", page=current_page, error=str(e))

            logger.info(
                "Product page synced",
                page=current_page,
                processed=result.processed,
                synced=result.synced,
                total=total,
            )

            page_index += 1
            if self.page_size * page_index >= total:
                break
            await self._sleep(delay)

        logger.info("Product sync completed", **result.model_dump())
        return result

    async def _process_page(self, products: list[KiotVietProduct], result: SyncResult) -> None:
        async with self.session_factory() as session:
            db = DatabaseService(session)
            for product in products:
                result.processed += 1

                if self.allowed_category_ids and product.category_id not in self.allowed_category_ids:
                    result.filtered += 1
                    logger.debug(
                        "Product filtered by category",
                        kiotviet_id=product.id,
                        category_id=product.category_id,
                    )
                    continue

                if not KiotVietTransformer.is_syncable(product):
                    result.skipped += 1
                    logger.warning(
                        "Skipping product without name or base price", kiotviet_id=product.id
                    )
                    continue

                quantity = await self._fetch_inventory(product)

                try:
                    created = await self._upsert_product(db, product, quantity)
                    await session.commit()
                except Exception as e:
                    await session.rollback()
                    result.errors += 1
                    logger.error("Error processing product", kiotviet_id=product.id, error=str(e))
                    continue

                result.synced += 1
                if created:
                    result.created += 1
                else:
                    result.updated += 1

    async def _fetch_inventory(self, product: KiotVietProduct) -> int:
        try:
            return await self.client.get_product_inventory(product.id)
        except Exception as e:
            logger.warning(
                "Could not fetch inventory, defaulting to 0", kiotviet_id=product.id, error=str(e)
            )
            return 0

    async def _upsert_product(
        self, db: DatabaseService, product: KiotVietProduct, quantity: int
    ) -> bool:
        """Create or update the local row for product. Returns True when created."""
        attributes = KiotVietTransformer.product_attributes(product, quantity)
        existing = await db.get_product_by_kiotviet_id(str(product.id))

        if existing is not None:
            await db.update_product(existing, attributes)
            return False

        new_product = await db.create_product(attributes)
        if product.category_id is not None:
            category = await db.get_or_create_category(
                str(product.category_id), product.category_name
            )
            await db.attach_category(new_product.id, category.id)
        return True
