"""
Background sync dispatcher.
Webhooks acknowledge immediately and hand the sync to an asyncio task submitted here.
Failures are logged from the task's done callback; the tenant's status is kept by the orchestrator.
"""

import asyncio
from typing import Optional

import structlog

from possync.exceptions import IntegrationError
from possync.models.database import TriggerSource
from possync.sync.orchestrator import SyncOrchestrator, SyncResult

logger = structlog.get_logger()


class SyncDispatcher:
    """Runs orchestrator syncs as background tasks and keeps references until they finish."""

    def __init__(self, orchestrator: SyncOrchestrator):
        self.orchestrator = orchestrator
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, tenant_id: str, trigger: TriggerSource = TriggerSource.WEBHOOK) -> asyncio.Task:
        """Schedule a sync for the tenant on the running loop."""
        task = asyncio.create_task(
            self.orchestrator.run_sync(tenant_id, trigger),
            name=f"sync:{tenant_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_done(done, tenant_id, trigger))
        logger.debug("Submitted background sync", tenant_id=tenant_id, trigger=trigger.value)
        return task

    def _on_done(self, task: asyncio.Task, tenant_id: str, trigger: TriggerSource) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background sync cancelled", tenant_id=tenant_id, trigger=trigger.value)
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "Background sync failed",
                tenant_id=tenant_id,
                trigger=trigger.value,
                error=error.message if isinstance(error, IntegrationError) else str(error),
                error_type=type(error).__name__,
            )
            return

        result: SyncResult = task.result()
        logger.info(
            "Background sync finished",
            tenant_id=tenant_id,
            trigger=trigger.value,
            skipped=result.skipped,
            items_synced=result.items_synced,
            errors=len(result.errors),
        )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight syncs, e.g. on shutdown."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        logger.info("Draining background syncs", count=len(tasks))
        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled background syncs after drain timeout", count=len(still_running))
