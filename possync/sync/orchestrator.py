"""
Sync orchestrator.
Single entry point for every trigger (manual, webhook, schedule). Enforces one active POS
integration per tenant, serializes a tenant's sync behind its lock and keeps the tenant's
sync status and Sync Run history up to date.

Tenant sync states: IDLE -> SYNCING -> IDLE | ERROR
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from possync.config import settings
from possync.exceptions import (
    AlreadyConnectedError,
    AuthExpiredError,
    ConflictingIntegrationError,
    IntegrationError,
    NotConnectedError,
    SyncLockLostError,
)
from possync.integrations.base import CatalogProvider, FetchResult
from possync.integrations.registry import IntegrationRegistry
from possync.models.database import (
    IntegrationProvider,
    PlanSummary,
    SyncRun,
    SyncStatus,
    TenantIntegration,
    TriggerSource,
)
from possync.services.credential_store import CredentialStore
from possync.services.stores import CatalogStore, IntegrationStore
from possync.sync.locks import TenantLockManager
from possync.sync.reconciliation import reconcile

logger = structlog.get_logger()


class SyncResult(BaseModel):
    """Outcome of one run_sync call."""

    success: bool
    categories_synced: int = 0
    items_synced: int = 0
    modifiers_synced: int = 0
    errors: list[str] = Field(default_factory=list)
    # True when another sync for the tenant was already running
    skipped: bool = False
    run_id: Optional[str] = None


class IntegrationStatus(BaseModel):
    provider: IntegrationProvider
    enabled: bool
    provider_account_ids: dict[str, Optional[str]] = Field(default_factory=dict)
    provider_account_name: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    sync_status: Optional[SyncStatus] = None
    sync_error: Optional[str] = None
    token_expiring: bool = False


class ConnectResult(BaseModel):
    provider: IntegrationProvider
    provider_account_name: str
    provider_account_ids: dict[str, Optional[str]] = Field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


class SyncOrchestrator:
    """Coordinates adapters, reconciliation and persistence for every tenant."""

    def __init__(
        self,
        integration_store: IntegrationStore,
        catalog_store: CatalogStore,
        credential_store: CredentialStore,
        registry: IntegrationRegistry,
        lock_manager: TenantLockManager,
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.integration_store = integration_store
        self.catalog_store = catalog_store
        self.credential_store = credential_store
        self.registry = registry
        self.lock_manager = lock_manager
        self.id_factory = id_factory
        self.clock = clock

    def _adapter(self, provider: IntegrationProvider) -> CatalogProvider:
        adapter = self.registry.get_adapter(provider)
        if adapter is None:
            raise NotConnectedError(f"No adapter registered for {provider.value}", provider=provider.value)
        return adapter

    # Connection lifecycle

    async def check_can_connect(self, tenant_id: str, provider: IntegrationProvider) -> None:
        """
        Raises:
            ConflictingIntegrationError: If a different provider is active
            AlreadyConnectedError: If this provider is already connected
        """
        integration = await self.integration_store.get_integration(tenant_id)
        if integration is None:
            return
        for other in (IntegrationProvider.SQUARE, IntegrationProvider.TOAST):
            if other != provider and integration.is_enabled(other):
                raise ConflictingIntegrationError(
                    f"Disconnect {other.value} before connecting {provider.value}. "
                    "Only one POS integration can be active at a time.",
                    provider=provider.value,
                )
        if integration.is_enabled(provider):
            raise AlreadyConnectedError(f"{provider.value} is already connected", provider=provider.value)

    async def connect(
        self, tenant_id: str, provider: IntegrationProvider, raw_credentials: dict[str, Any]
    ) -> ConnectResult:
        """
        Validate credentials with the provider and persist them.
        Nothing is written unless the exclusivity check and validation both pass.
        """
        await self.check_can_connect(tenant_id, provider)
        validated = await self._adapter(provider).validate_credentials(raw_credentials)

        async with self.lock_manager.hold(tenant_id) as acquired:
            if not acquired:
                raise ConflictingIntegrationError(
                    "Another operation is in progress for this tenant, retry shortly",
                    provider=provider.value,
                )
            # Re-check: another connect may have finished while we were validating
            await self.check_can_connect(tenant_id, provider)
            integration = await self.credential_store.save(tenant_id, validated.credentials)

        logger.info(
            "POS integration connected",
            tenant_id=tenant_id,
            provider=provider.value,
            provider_account_name=validated.provider_account_name,
        )
        return ConnectResult(
            provider=provider,
            provider_account_name=validated.provider_account_name,
            provider_account_ids=integration.account_ids(provider),
        )

    async def disconnect(self, tenant_id: str, provider: IntegrationProvider) -> None:
        """Clear the provider's credentials, linkage and sync metadata. Menu data is retained."""
        integration = await self.integration_store.get_integration(tenant_id)
        if integration is None or not integration.is_enabled(provider):
            raise NotConnectedError(f"{provider.value} is not connected", provider=provider.value)
        await self.credential_store.clear(tenant_id, provider)
        logger.info("POS integration disconnected", tenant_id=tenant_id, provider=provider.value)

    async def status(self, tenant_id: str, provider: IntegrationProvider) -> IntegrationStatus:
        integration = await self.integration_store.get_integration(tenant_id)
        if integration is None or not integration.is_enabled(provider):
            return IntegrationStatus(provider=provider, enabled=False)

        token_expiring = False
        if integration.token_expires_at is not None:
            expires_at = integration.token_expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
            threshold = timedelta(days=settings.token_refresh_threshold_days)
            token_expiring = expires_at < self.clock() + threshold

        return IntegrationStatus(
            provider=provider,
            enabled=True,
            provider_account_ids=integration.account_ids(provider),
            provider_account_name=(
                integration.square_location_name
                if provider == IntegrationProvider.SQUARE
                else integration.toast_restaurant_name
            ),
            last_sync_at=integration.last_sync_at,
            sync_status=integration.sync_status,
            sync_error=integration.last_sync_error,
            token_expiring=token_expiring,
        )

    # Sync

    @staticmethod
    def _active_provider(integration: Optional[TenantIntegration]) -> IntegrationProvider:
        if integration is None:
            raise NotConnectedError("No POS integration connected")
        if integration.square_enabled and integration.toast_enabled:
            raise ConflictingIntegrationError("Both Square and Toast are enabled for this tenant")
        if integration.active_provider == IntegrationProvider.NONE:
            raise NotConnectedError("No POS integration connected")
        return integration.active_provider

    async def dispatch_trigger(
        self, tenant_id: str, source: TriggerSource | str | None
    ) -> Optional[SyncResult]:
        """Run a sync for a raw trigger value. Unknown trigger sources are a no-op."""
        trigger = TriggerSource.parse(source)
        if trigger is None:
            logger.warning("Ignoring unknown sync trigger", tenant_id=tenant_id, trigger=source)
            return None
        return await self.run_sync(tenant_id, trigger)

    async def run_sync(
        self,
        tenant_id: str,
        trigger: TriggerSource,
        provider: Optional[IntegrationProvider] = None,
    ) -> SyncResult:
        """
        Pull the active provider's catalog and merge it into the local menu.

        Args:
            tenant_id: Tenant to sync
            trigger: What started the sync
            provider: When given, the active provider must be this one

        Returns:
            SyncResult; skipped=True when a sync for the tenant was already running

        Raises:
            NotConnectedError, ConflictingIntegrationError: Integration precondition failed
            AuthExpiredError, CatalogFetchError, TransactionApplyError: Sync failed, tenant is in ERROR
        """
        acquired = await self.lock_manager.try_acquire(tenant_id)
        if not acquired:
            logger.info(
                "Sync already running for tenant, coalescing trigger",
                tenant_id=tenant_id,
                trigger=trigger.value,
            )
            return SyncResult(success=True, skipped=True)

        try:
            return await self._run_locked(tenant_id, trigger, provider)
        finally:
            await self.lock_manager.release(tenant_id)

    async def _run_locked(
        self,
        tenant_id: str,
        trigger: TriggerSource,
        requested: Optional[IntegrationProvider],
    ) -> SyncResult:
        integration = await self.integration_store.get_integration(tenant_id)
        provider = self._active_provider(integration)
        if requested is not None and requested != provider:
            raise NotConnectedError(f"{requested.value} is not connected", provider=requested.value)
        adapter = self._adapter(provider)

        run_id = self.id_factory()
        started_at = self.clock()
        started = time.monotonic()
        logger.info(
            "Starting catalog sync",
            tenant_id=tenant_id,
            provider=provider.value,
            trigger=trigger.value,
            run_id=run_id,
        )

        fetch_result: Optional[FetchResult] = None
        try:
            await self.integration_store.update_integration(
                tenant_id, sync_status=SyncStatus.SYNCING, last_sync_error=None
            )
            async with self.lock_manager.keep_alive(tenant_id):
                access_token = await adapter.authenticate(tenant_id)
                fetch_result = await adapter.fetch_catalog(tenant_id, access_token)
                local_categories = await self.catalog_store.load_snapshot(tenant_id)
                plan = reconcile(
                    local_categories,
                    fetch_result.catalog,
                    soft_remove_missing=fetch_result.complete,
                    id_factory=self.id_factory,
                )
                # A run that outlived its lock must not write over a newer one
                if not await self.lock_manager.extend(tenant_id):
                    raise SyncLockLostError("Tenant lock lost before applying the merge plan")
                synced_at = self.clock()
                await self.catalog_store.apply_plan(tenant_id, plan, synced_at)
        except Exception as e:
            message = e.message if isinstance(e, IntegrationError) else f"Unexpected sync error: {e}"
            errors = [message]
            if fetch_result is not None:
                errors.extend(str(page_error) for page_error in fetch_result.page_errors)
            logger.error(
                "Catalog sync failed",
                tenant_id=tenant_id,
                provider=provider.value,
                run_id=run_id,
                error=message,
                error_type=type(e).__name__,
                duration_ms=round((time.monotonic() - started) * 1000),
            )
            await self._finish_run(
                tenant_id,
                SyncRun(
                    id=run_id,
                    tenant_id=tenant_id,
                    provider=provider,
                    trigger=trigger,
                    started_at=started_at,
                    finished_at=self.clock(),
                    errors=errors,
                    success=False,
                ),
                sync_status=SyncStatus.ERROR,
                last_sync_error=message,
            )
            raise

        errors = [str(page_error) for page_error in fetch_result.page_errors]
        run = SyncRun(
            id=run_id,
            tenant_id=tenant_id,
            provider=provider,
            trigger=trigger,
            started_at=started_at,
            finished_at=self.clock(),
            summary=plan.summary,
            errors=errors,
            success=True,
        )
        await self._finish_run(
            tenant_id, run, sync_status=SyncStatus.IDLE, last_sync_error=None, last_sync_at=synced_at
        )

        summary: PlanSummary = plan.summary
        logger.info(
            "Catalog sync completed",
            tenant_id=tenant_id,
            provider=provider.value,
            run_id=run_id,
            operations=len(plan.operations),
            categories_created=summary.categories.created,
            items_created=summary.items.created,
            items_updated=summary.items.updated,
            items_soft_removed=summary.items.soft_removed,
            page_errors=len(errors),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return SyncResult(
            success=True,
            categories_synced=summary.categories.synced,
            items_synced=summary.items.synced,
            modifiers_synced=summary.modifiers.synced,
            errors=errors,
            run_id=run_id,
        )

    async def _finish_run(self, tenant_id: str, run: SyncRun, **status_fields: Any) -> None:
        """Record the run and the tenant's resulting status. Bookkeeping failures never mask the sync outcome."""
        try:
            await self.integration_store.record_sync_run(run)
        except Exception as e:
            logger.error("Failed to record sync run", tenant_id=tenant_id, run_id=run.id, error=str(e))
        try:
            await self.integration_store.update_integration(tenant_id, **status_fields)
        except Exception as e:
            logger.error("Failed to update sync status", tenant_id=tenant_id, run_id=run.id, error=str(e))

    # Credentials

    async def refresh_credentials(self, tenant_id: str) -> bool:
        """
        Refresh the tenant's provider token if needed, under the tenant lock.

        Returns:
            True if the tenant holds a usable token afterwards, False if skipped or failed
        """
        async with self.lock_manager.hold(tenant_id) as acquired:
            if not acquired:
                logger.info("Tenant busy, skipping token refresh", tenant_id=tenant_id)
                return False

            integration = await self.integration_store.get_integration(tenant_id)
            provider = self._active_provider(integration)
            try:
                access_token = await self._adapter(provider).authenticate(tenant_id)
            except AuthExpiredError as e:
                logger.error("Token refresh failed", tenant_id=tenant_id, provider=provider.value, error=e.message)
                await self.integration_store.update_integration(
                    tenant_id, sync_status=SyncStatus.ERROR, last_sync_error=e.message
                )
                return False

        if access_token.refreshed:
            logger.info("Token refreshed", tenant_id=tenant_id, provider=provider.value)
        return True
