"""
Scheduled job for refreshing POS access tokens.
Runs daily: Square OAuth tokens close to expiry are refreshed, Toast tokens are re-issued
when their short-lived bearer has lapsed.
"""

import asyncio
from typing import Optional

import structlog

from possync.config import settings
from possync.dependencies import ServiceContainer, build_container

logger = structlog.get_logger()


class TokenRefreshScheduler:
    """
    Scheduler that checks every enabled integration and refreshes expiring tokens.
    """

    def __init__(self, container: Optional[ServiceContainer] = None):
        self.container = container or build_container()
        self.running = False
        self.check_interval_hours = settings.token_refresh_interval_hours

    async def start(self):
        """Start the token refresh scheduler loop."""
        self.running = True
        logger.info("Token refresh scheduler started", interval_hours=self.check_interval_hours)

        while self.running:
            try:
                await self.check_and_refresh_tokens()
            except Exception as e:
                logger.error("Error in token refresh scheduler loop", error=str(e))

            await asyncio.sleep(self.check_interval_hours * 3600)

    async def stop(self):
        """Stop the token refresh scheduler."""
        self.running = False
        logger.info("Token refresh scheduler stopped")

    async def check_and_refresh_tokens(self) -> dict[str, int]:
        integrations = await self.container.integration_store.list_enabled_integrations()
        if not integrations:
            logger.debug("No enabled integrations found")
            return {"ok": 0, "failed": 0}

        logger.info("Checking tokens for refresh", integration_count=len(integrations))
        ok_count = 0
        failed_count = 0

        for integration in integrations:
            try:
                if await self.container.orchestrator.refresh_credentials(integration.tenant_id):
                    ok_count += 1
                else:
                    failed_count += 1
            except Exception as e:
                failed_count += 1
                logger.error(
                    "Error refreshing tenant token",
                    tenant_id=integration.tenant_id,
                    error=str(e),
                )

        logger.info(
            "Token refresh completed",
            total=len(integrations),
            ok=ok_count,
            failed=failed_count,
        )
        return {"ok": ok_count, "failed": failed_count}


async def run_token_refresh_scheduler(container: Optional[ServiceContainer] = None):
    """
    Main entry point for running the token refresh scheduler.
    """
    scheduler = TokenRefreshScheduler(container)
    try:
        await scheduler.start()
    except asyncio.CancelledError:
        logger.info("Received cancellation, shutting down token refresh scheduler")
    finally:
        await scheduler.stop()
