"""
Scheduled catalog sync worker.
Every N seconds (configurable) runs a SCHEDULE sync for each tenant with an enabled
Square or Toast integration. Thin wrapper around SyncOrchestrator.run_sync().
"""

import asyncio
from typing import Optional

import structlog

from possync.config import settings
from possync.dependencies import ServiceContainer, build_container
from possync.exceptions import IntegrationError
from possync.models.database import TriggerSource

logger = structlog.get_logger()


class CatalogSyncWorker:
    """Polls every connected tenant's POS catalog on a fixed interval."""

    def __init__(self, container: Optional[ServiceContainer] = None) -> None:
        self.container = container or build_container()
        self.running = False

    async def start(self) -> None:
        self.running = True
        logger.info("Catalog sync worker started", interval_seconds=settings.catalog_sync_interval_seconds)

        while self.running:
            try:
                if settings.catalog_sync_enabled:
                    await self.sync_all_tenants()
            except Exception as e:
                logger.error("Error in catalog sync worker", error=str(e))

            await asyncio.sleep(settings.catalog_sync_interval_seconds)

    async def stop(self) -> None:
        self.running = False
        logger.info("Catalog sync worker stopped")

    async def sync_all_tenants(self) -> dict[str, int]:
        """
        One pass over all enabled integrations.

        Returns:
            Counts of synced, skipped (already running) and failed tenants
        """
        integrations = await self.container.integration_store.list_enabled_integrations()
        counts = {"synced": 0, "skipped": 0, "failed": 0}

        for integration in integrations:
            tenant_id = integration.tenant_id
            try:
                result = await self.container.orchestrator.run_sync(tenant_id, TriggerSource.SCHEDULE)
            except IntegrationError as e:
                counts["failed"] += 1
                logger.error(
                    "Scheduled sync failed",
                    tenant_id=tenant_id,
                    error=e.message,
                    error_type=type(e).__name__,
                )
                continue
            except Exception as e:
                counts["failed"] += 1
                logger.error("Scheduled sync failed", tenant_id=tenant_id, error=str(e), exc_info=True)
                continue

            if result.skipped:
                counts["skipped"] += 1
            else:
                counts["synced"] += 1

        logger.info("Scheduled sync pass completed", total=len(integrations), **counts)
        return counts


async def run_catalog_sync_worker(container: Optional[ServiceContainer] = None) -> None:
    """Entry point: run the catalog sync worker loop."""
    worker = CatalogSyncWorker(container)
    try:
        await worker.start()
    except asyncio.CancelledError:
        await worker.stop()
