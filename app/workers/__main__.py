"""
Entry point for running the incremental sync scheduler as a module.
Usage: python -m app.workers
"""
import asyncio
from app.utils.logger import configure_logging
from app.workers.sync_scheduler import run_scheduler

if __name__ == "__main__":
    configure_logging()
    asyncio.run(run_scheduler())
