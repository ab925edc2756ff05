"""
Entry point for running the background workers as a module.
Usage: python -m possync.workers
"""
import asyncio

from possync.dependencies import build_container
from possync.utils.logger import configure_logging
from possync.workers.catalog_sync_worker import run_catalog_sync_worker
from possync.workers.token_refresh_scheduler import run_token_refresh_scheduler


async def run_workers():
    container = build_container()
    await asyncio.gather(
        run_catalog_sync_worker(container),
        run_token_refresh_scheduler(container),
    )


if __name__ == "__main__":
    configure_logging()
    asyncio.run(run_workers())
