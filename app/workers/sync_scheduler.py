"""
Scheduled job for the daily incremental product sync.
Wakes once a day at the configured UTC hour and syncs products modified since
yesterday 00:00 UTC.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import structlog

from app.config import settings
from app.database import get_session_factory
from app.integrations.kiotviet.api_client import KiotVietAPIClient
from app.integrations.kiotviet.token_cache import KiotVietTokenCache
from app.services.product_sync import ProductSyncService

logger = structlog.get_logger()


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    """Seconds from now until the next occurrence of hour_utc:00 UTC."""
    next_run = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class IncrementalSyncScheduler:
    """
    Scheduler that runs the incremental product sync once per day.
    """

    def __init__(
        self,
        sync_service: ProductSyncService | None = None,
        hour_utc: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        """Initialize incremental sync scheduler."""
        self._client: KiotVietAPIClient | None = None
        if sync_service is None:
            self._client = KiotVietAPIClient(KiotVietTokenCache())
            sync_service = ProductSyncService(self._client, get_session_factory())
        self.sync_service = sync_service
        self.hour_utc = hour_utc if hour_utc is not None else settings.incremental_sync_hour_utc
        self._sleep = sleep
        self._now = now
        self.running = False

    async def start(self):
        """Start the scheduler loop."""
        self.running = True
        logger.info("Incremental sync scheduler started", hour_utc=self.hour_utc)

        while self.running:
            delay = seconds_until_next_run(self._now(), self.hour_utc)
            logger.info("Next incremental sync scheduled", in_seconds=int(delay))
            await self._sleep(delay)
            if not self.running:
                break
            await self.run_once()

    async def run_once(self):
        """Run one incremental sync. Errors are logged and never stop the loop."""
        try:
            result = await self.sync_service.sync_incremental()
            logger.info("Scheduled incremental sync finished", **result.model_dump())
            return result
        except Exception as e:
            logger.error("Error in scheduled incremental sync", error=str(e))
            return None

    async def stop(self):
        """Stop the scheduler."""
        self.running = False
        if self._client is not None:
            await self._client.close()
        logger.info("Incremental sync scheduler stopped")


async def run_scheduler():
    """Run the incremental sync scheduler."""
    scheduler = IncrementalSyncScheduler()
    try:
        await scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        await scheduler.stop()
