"""
Persistence contracts consumed by the sync engine.
Implementations: memory_store (single process, tests) and supabase_service (deployments).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from possync.models.database import (
    IntegrationProvider,
    LocalCategory,
    LocalMenuItem,
    SyncRun,
    TenantIntegration,
)
from possync.sync.plan import MergePlan


class IntegrationStore(ABC):
    """Tenant integration rows and sync run history."""

    @abstractmethod
    async def get_integration(self, tenant_id: str) -> TenantIntegration | None:
        pass

    @abstractmethod
    async def save_integration(self, integration: TenantIntegration) -> TenantIntegration:
        """Insert or replace the whole tenant integration row."""
        pass

    @abstractmethod
    async def update_integration(self, tenant_id: str, **fields: Any) -> TenantIntegration | None:
        """Update selected columns of an existing row. Returns None if the tenant has no row."""
        pass

    @abstractmethod
    async def find_by_square_merchant(self, merchant_id: str) -> TenantIntegration | None:
        """Tenant with Square enabled for this merchant id."""
        pass

    @abstractmethod
    async def find_by_toast_restaurant(self, restaurant_guid: str) -> TenantIntegration | None:
        """Tenant with Toast enabled for this restaurant guid."""
        pass

    @abstractmethod
    async def list_enabled_integrations(
        self, provider: IntegrationProvider | None = None
    ) -> list[TenantIntegration]:
        pass

    @abstractmethod
    async def record_sync_run(self, run: SyncRun) -> None:
        pass

    @abstractmethod
    async def list_sync_runs(self, tenant_id: str, limit: int = 20) -> list[SyncRun]:
        """Most recent runs first."""
        pass


class CatalogStore(ABC):
    """Local menu categories, items, modifiers and modifier options."""

    @abstractmethod
    async def load_snapshot(self, tenant_id: str) -> list[LocalCategory]:
        """All categories of the tenant with nested items, modifiers and options."""
        pass

    @abstractmethod
    async def apply_plan(self, tenant_id: str, plan: MergePlan, synced_at: datetime) -> None:
        """
        Apply every operation of the plan atomically.

        Raises:
            TransactionApplyError: If anything failed; nothing is committed in that case
        """
        pass

    @abstractmethod
    async def set_item_availability(
        self, tenant_id: str, item_id: str, available: bool
    ) -> LocalMenuItem | None:
        """
        Staff availability toggle. Marking unavailable sets the manual override,
        marking available clears it.
        """
        pass
