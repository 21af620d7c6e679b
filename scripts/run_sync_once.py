"""
Single-pass product sync for cron jobs.
Runs one full or incremental KiotViet catalog sync, then exits.
Designed to run daily (e.g. "0 1 * * *") when the long-running scheduler is not deployed.

Usage:
    python -m scripts.run_sync_once incremental [--since 2024-12-22T00:00:00]
    python -m scripts.run_sync_once full
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime

import structlog

from app.config import settings
from app.database import dispose_engine, get_session_factory, init_models
from app.integrations.kiotviet.api_client import KiotVietAPIClient
from app.integrations.kiotviet.token_cache import KiotVietTokenCache
from app.services.product_sync import ProductSyncService
from app.utils.logger import configure_logging

configure_logging()
logger = structlog.get_logger()


def parse_since(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one KiotViet product sync")
    parser.add_argument("mode", choices=["full", "incremental"], help="Sync mode")
    parser.add_argument(
        "--since",
        type=parse_since,
        default=None,
        help="Incremental lower bound (ISO timestamp, UTC if no offset); defaults to yesterday 00:00 UTC",
    )
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    client: KiotVietAPIClient | None = None

    try:
        if settings.database_auto_create:
            await init_models()

        client = KiotVietAPIClient(KiotVietTokenCache())
        service = ProductSyncService(client, get_session_factory())

        logger.info("Cron product sync: starting", mode=args.mode)
        if args.mode == "full":
            result = await service.sync_all()
        else:
            result = await service.sync_incremental(args.since)

        logger.info("Cron product sync: done", **result.model_dump())
        # Exit non-zero when nothing could be fetched so the cron run shows as failed
        return 1 if result.pages == 0 and result.failed_pages > 0 else 0

    except Exception as e:
        logger.error("Product sync failed", error=str(e))
        return 1

    finally:
        if client is not None:
            await client.close()
        await dispose_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
