"""
Supabase service layer for database operations.
Handles tenant_integrations, sync_runs and the menu tables (menu_categories, menu_items,
menu_modifiers, modifier_options). The supabase client is synchronous, so every call
runs in a worker thread.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from supabase import Client, create_client

from possync.config import settings
from possync.exceptions import TransactionApplyError
from possync.models.database import (
    IntegrationProvider,
    LocalCategory,
    LocalMenuItem,
    LocalModifier,
    LocalModifierOption,
    SyncRun,
    TenantIntegration,
)
from possync.services.stores import CatalogStore, IntegrationStore
from possync.sync.plan import MergePlan

logger = structlog.get_logger()


def create_supabase_client() -> Client:
    """Create the Supabase client from settings."""
    return create_client(settings.supabase_url, settings.supabase_service_key)


def fetch_all_rows(
    build_query: Callable[[], Any], order_by: str = "id", page_size: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Read every row of a select, one range request per page.
    PostgREST silently caps a single response at its max-rows setting, so an unpaged
    select of a large tenant would come back truncated.

    Args:
        build_query: Returns a fresh filtered select builder for each page
        order_by: Unique column giving the pages a stable order
    """
    page_size = page_size or settings.supabase_page_size
    rows: List[Dict[str, Any]] = []
    start = 0
    while True:
        result = build_query().order(order_by).range(start, start + page_size - 1).execute()
        page = result.data or []
        rows.extend(page)
        if len(page) < page_size:
            return rows
        start += page_size


class SupabaseService(IntegrationStore):
    """Tenant integration rows and sync run history stored in Supabase."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize Supabase client."""
        self.client: Client = client or create_supabase_client()

    # Tenant integrations

    def _get_integration(self, tenant_id: str) -> Optional[TenantIntegration]:
        # Don't use .single() - it throws exception on 0 rows
        result = (
            self.client.table("tenant_integrations")
            .select("*")
            .eq("tenant_id", tenant_id)
            .limit(1)
            .execute()
        )
        if result.data:
            return TenantIntegration(**result.data[0])
        return None

    async def get_integration(self, tenant_id: str) -> Optional[TenantIntegration]:
        try:
            return await asyncio.to_thread(self._get_integration, tenant_id)
        except Exception as e:
            logger.error("Failed to get tenant integration", tenant_id=tenant_id, error=str(e))
            raise

    async def save_integration(self, integration: TenantIntegration) -> TenantIntegration:
        """Upsert the whole tenant integration row."""
        data = integration.model_dump(mode="json", exclude={"updated_at"})
        data["updated_at"] = datetime.now().astimezone().isoformat()

        def _upsert():
            return (
                self.client.table("tenant_integrations")
                .upsert(data, on_conflict="tenant_id")
                .execute()
            )

        try:
            result = await asyncio.to_thread(_upsert)
        except Exception as e:
            logger.error("Failed to save tenant integration", tenant_id=integration.tenant_id, error=str(e))
            raise
        if result.data:
            return TenantIntegration(**result.data[0])
        raise RuntimeError("No data returned from tenant_integrations upsert")

    async def update_integration(self, tenant_id: str, **fields: Any) -> Optional[TenantIntegration]:
        update_data = TenantIntegration.model_construct(tenant_id=tenant_id, **fields).model_dump(
            mode="json", include=set(fields)
        )
        update_data["updated_at"] = datetime.now().astimezone().isoformat()

        def _update():
            return (
                self.client.table("tenant_integrations")
                .update(update_data)
                .eq("tenant_id", tenant_id)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_update)
        except Exception as e:
            logger.error(
                "Failed to update tenant integration",
                tenant_id=tenant_id,
                fields=sorted(fields),
                error=str(e),
            )
            raise
        if result.data:
            return TenantIntegration(**result.data[0])
        return None

    async def _find_one(self, column: str, value: str, enabled_flag: str) -> Optional[TenantIntegration]:
        def _select():
            return (
                self.client.table("tenant_integrations")
                .select("*")
                .eq(column, value)
                .eq(enabled_flag, True)
                .limit(1)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_select)
        except Exception as e:
            logger.error("Failed to look up tenant integration", column=column, error=str(e))
            raise
        if result.data:
            return TenantIntegration(**result.data[0])
        return None

    async def find_by_square_merchant(self, merchant_id: str) -> Optional[TenantIntegration]:
        return await self._find_one("square_merchant_id", merchant_id, "square_enabled")

    async def find_by_toast_restaurant(self, restaurant_guid: str) -> Optional[TenantIntegration]:
        return await self._find_one("toast_restaurant_guid", restaurant_guid, "toast_enabled")

    async def list_enabled_integrations(
        self, provider: Optional[IntegrationProvider] = None
    ) -> List[TenantIntegration]:
        def _query():
            query = self.client.table("tenant_integrations").select("*")
            if provider == IntegrationProvider.SQUARE:
                return query.eq("square_enabled", True)
            if provider == IntegrationProvider.TOAST:
                return query.eq("toast_enabled", True)
            return query.or_("square_enabled.eq.true,toast_enabled.eq.true")

        try:
            rows = await asyncio.to_thread(fetch_all_rows, _query, "tenant_id")
        except Exception as e:
            logger.error("Failed to list enabled integrations", error=str(e))
            raise
        return [TenantIntegration(**row) for row in rows]

    # Sync runs

    async def record_sync_run(self, run: SyncRun) -> None:
        insert_data = run.model_dump(mode="json")

        def _insert():
            return self.client.table("sync_runs").insert(insert_data).execute()

        try:
            await asyncio.to_thread(_insert)
        except Exception as e:
            logger.error("Failed to record sync run", tenant_id=run.tenant_id, run_id=run.id, error=str(e))
            raise

    async def list_sync_runs(self, tenant_id: str, limit: int = 20) -> List[SyncRun]:
        def _select():
            return (
                self.client.table("sync_runs")
                .select("*")
                .eq("tenant_id", tenant_id)
                .order("started_at", desc=True)
                .limit(limit)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_select)
        except Exception as e:
            logger.error("Failed to list sync runs", tenant_id=tenant_id, error=str(e))
            raise
        return [SyncRun(**row) for row in result.data or []]


class SupabaseCatalogStore(CatalogStore):
    """
    Local menu stored in Supabase.
    Merge plans are applied by the apply_menu_merge_plan Postgres function, which runs
    every operation inside one transaction.
    """

    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client or create_supabase_client()

    def _select_rows(self, table: str, tenant_id: str) -> List[Dict[str, Any]]:
        return fetch_all_rows(lambda: self.client.table(table).select("*").eq("tenant_id", tenant_id))

    def _load_snapshot(self, tenant_id: str) -> List[LocalCategory]:
        category_rows = self._select_rows("menu_categories", tenant_id)
        item_rows = self._select_rows("menu_items", tenant_id)
        modifier_rows = self._select_rows("menu_modifiers", tenant_id)
        option_rows = self._select_rows("modifier_options", tenant_id)

        options_by_modifier: Dict[str, List[LocalModifierOption]] = {}
        for row in option_rows:
            option = LocalModifierOption(**row)
            options_by_modifier.setdefault(option.modifier_id, []).append(option)

        modifiers_by_item: Dict[str, List[LocalModifier]] = {}
        for row in modifier_rows:
            modifier = LocalModifier(**row, options=options_by_modifier.get(row["id"], []))
            modifiers_by_item.setdefault(modifier.item_id, []).append(modifier)

        items_by_category: Dict[str, List[LocalMenuItem]] = {}
        for row in item_rows:
            item = LocalMenuItem(**row, modifiers=modifiers_by_item.get(row["id"], []))
            items_by_category.setdefault(item.category_id, []).append(item)

        categories = [
            LocalCategory(**row, items=items_by_category.get(row["id"], []))
            for row in sorted(category_rows, key=lambda row: row.get("sort_order") or 0)
        ]
        return categories

    async def load_snapshot(self, tenant_id: str) -> List[LocalCategory]:
        try:
            return await asyncio.to_thread(self._load_snapshot, tenant_id)
        except Exception as e:
            logger.error("Failed to load menu snapshot", tenant_id=tenant_id, error=str(e))
            raise

    async def apply_plan(self, tenant_id: str, plan: MergePlan, synced_at: datetime) -> None:
        if plan.is_empty:
            return
        params = {
            "p_tenant_id": tenant_id,
            "p_operations": plan.to_payload(),
            "p_synced_at": synced_at.isoformat(),
        }

        def _rpc():
            return self.client.rpc("apply_menu_merge_plan", params).execute()

        try:
            await asyncio.to_thread(_rpc)
        except Exception as e:
            logger.error(
                "Merge plan apply failed, transaction rolled back",
                tenant_id=tenant_id,
                operations=len(plan.operations),
                error=str(e),
            )
            raise TransactionApplyError(f"Failed to apply merge plan: {e}") from e

    async def set_item_availability(
        self, tenant_id: str, item_id: str, available: bool
    ) -> Optional[LocalMenuItem]:
        update_data = {"available": available, "unavailable_override": not available}

        def _update():
            return (
                self.client.table("menu_items")
                .update(update_data)
                .eq("tenant_id", tenant_id)
                .eq("id", item_id)
                .execute()
            )

        try:
            result = await asyncio.to_thread(_update)
        except Exception as e:
            logger.error("Failed to set item availability", tenant_id=tenant_id, item_id=item_id, error=str(e))
            raise
        if result.data:
            return LocalMenuItem(**result.data[0])
        return None
