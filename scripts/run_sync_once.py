"""
Single-pass catalog sync for cron jobs (e.g. GitHub Actions).
Syncs every tenant with an enabled integration once, then exits.
Optionally limited to one tenant: python scripts/run_sync_once.py <tenant_id> [trigger]
where trigger is MANUAL (default), WEBHOOK or SCHEDULE.

Reuses CatalogSyncWorker.sync_all_tenants() - no duplication of sync logic.
"""

import asyncio
import sys

import structlog

from possync.dependencies import build_container
from possync.exceptions import IntegrationError
from possync.utils.logger import configure_logging
from possync.workers.catalog_sync_worker import CatalogSyncWorker

configure_logging()
logger = structlog.get_logger()


async def main(argv: list[str]) -> int:
    container = build_container()

    if len(argv) > 1:
        tenant_id = argv[1]
        trigger = argv[2] if len(argv) > 2 else "MANUAL"
        try:
            result = await container.orchestrator.dispatch_trigger(tenant_id, trigger)
        except IntegrationError as e:
            logger.error("Sync failed", tenant_id=tenant_id, error=e.message, error_type=type(e).__name__)
            return 1
        if result is None:
            logger.error("Unknown sync trigger", tenant_id=tenant_id, trigger=trigger)
            return 2
        logger.info("Sync done", tenant_id=tenant_id, **result.model_dump(exclude={"errors"}))
        return 0

    logger.info("Cron sync: starting pass over enabled integrations")
    try:
        counts = await CatalogSyncWorker(container).sync_all_tenants()
    except Exception as e:
        logger.error("Cron sync failed", error=str(e))
        return 1

    logger.info("Cron sync: done", **counts)
    return 1 if counts["failed"] else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv)))
