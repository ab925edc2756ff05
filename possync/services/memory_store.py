"""
In-memory persistence backend.
Used for single-process deployments (storage_backend="memory") and tests.
apply_plan works on a copy of the tenant's menu and swaps it in only when every operation succeeded.
"""

import asyncio
from collections import defaultdict, deque
from datetime import datetime

import structlog

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
from possync.sync.plan import (
    CreateCategory,
    CreateItem,
    CreateModifier,
    CreateModifierOption,
    MergePlan,
    SoftRemoveCategory,
    SoftRemoveItem,
    SoftRemoveModifier,
    SoftRemoveModifierOption,
    UpdateCategory,
    UpdateItem,
    UpdateModifier,
    UpdateModifierOption,
)

logger = structlog.get_logger()


class InMemoryIntegrationStore(IntegrationStore):
    """Tenant integration rows and sync runs kept in process memory."""

    def __init__(self, max_runs_per_tenant: int = 100):
        self._integrations: dict[str, TenantIntegration] = {}
        # Oldest runs fall off once a tenant has max_runs_per_tenant of them
        self._runs: dict[str, deque[SyncRun]] = defaultdict(lambda: deque(maxlen=max_runs_per_tenant))

    async def get_integration(self, tenant_id: str) -> TenantIntegration | None:
        integration = self._integrations.get(tenant_id)
        return integration.model_copy(deep=True) if integration else None

    async def save_integration(self, integration: TenantIntegration) -> TenantIntegration:
        stored = integration.model_copy(update={"updated_at": datetime.now().astimezone()}, deep=True)
        self._integrations[integration.tenant_id] = stored
        return stored.model_copy(deep=True)

    async def update_integration(self, tenant_id: str, **fields) -> TenantIntegration | None:
        current = self._integrations.get(tenant_id)
        if current is None:
            return None
        fields["updated_at"] = datetime.now().astimezone()
        updated = current.model_copy(update=fields, deep=True)
        self._integrations[tenant_id] = updated
        return updated.model_copy(deep=True)

    async def find_by_square_merchant(self, merchant_id: str) -> TenantIntegration | None:
        for integration in self._integrations.values():
            if integration.square_enabled and integration.square_merchant_id == merchant_id:
                return integration.model_copy(deep=True)
        return None

    async def find_by_toast_restaurant(self, restaurant_guid: str) -> TenantIntegration | None:
        for integration in self._integrations.values():
            if integration.toast_enabled and integration.toast_restaurant_guid == restaurant_guid:
                return integration.model_copy(deep=True)
        return None

    async def list_enabled_integrations(
        self, provider: IntegrationProvider | None = None
    ) -> list[TenantIntegration]:
        result = []
        for integration in self._integrations.values():
            if provider is None and integration.active_provider == IntegrationProvider.NONE:
                continue
            if provider is not None and not integration.is_enabled(provider):
                continue
            result.append(integration.model_copy(deep=True))
        return result

    async def record_sync_run(self, run: SyncRun) -> None:
        self._runs[run.tenant_id].append(run)

    async def list_sync_runs(self, tenant_id: str, limit: int = 20) -> list[SyncRun]:
        runs = list(self._runs.get(tenant_id, ()))
        runs.sort(key=lambda run: run.started_at, reverse=True)
        return runs[:limit]


class InMemoryCatalogStore(CatalogStore):
    """Local menu kept in process memory, one category list per tenant."""

    def __init__(self):
        self._menus: dict[str, list[LocalCategory]] = {}
        self._lock = asyncio.Lock()

    def add_category(self, tenant_id: str, category: LocalCategory) -> None:
        """Seed a category (with nested items), e.g. staff-authored data."""
        self._menus.setdefault(tenant_id, []).append(category.model_copy(deep=True))

    async def load_snapshot(self, tenant_id: str) -> list[LocalCategory]:
        return [category.model_copy(deep=True) for category in self._menus.get(tenant_id, [])]

    async def apply_plan(self, tenant_id: str, plan: MergePlan, synced_at: datetime) -> None:
        async with self._lock:
            working = [category.model_copy(deep=True) for category in self._menus.get(tenant_id, [])]
            try:
                _MenuTransaction(tenant_id, working, synced_at).apply(plan)
            except Exception as e:
                logger.error(
                    "Merge plan apply failed, nothing committed",
                    tenant_id=tenant_id,
                    operations=len(plan.operations),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise TransactionApplyError(f"Failed to apply merge plan: {e}") from e
            self._menus[tenant_id] = working

    async def set_item_availability(
        self, tenant_id: str, item_id: str, available: bool
    ) -> LocalMenuItem | None:
        async with self._lock:
            for category in self._menus.get(tenant_id, []):
                for item in category.items:
                    if item.id == item_id:
                        item.available = available
                        item.unavailable_override = not available
                        return item.model_copy(deep=True)
        return None


class _MenuTransaction:
    """Applies plan operations to a working copy of one tenant's menu."""

    def __init__(self, tenant_id: str, categories: list[LocalCategory], synced_at: datetime):
        self.tenant_id = tenant_id
        self.synced_at = synced_at
        self.categories = categories
        self.category_index: dict[str, LocalCategory] = {}
        self.item_index: dict[str, LocalMenuItem] = {}
        self.modifier_index: dict[str, LocalModifier] = {}
        self.option_index: dict[str, LocalModifierOption] = {}
        for category in categories:
            self.category_index[category.id] = category
            for item in category.items:
                self.item_index[item.id] = item
                for modifier in item.modifiers:
                    self.modifier_index[modifier.id] = modifier
                    for option in modifier.options:
                        self.option_index[option.id] = option

    def apply(self, plan: MergePlan) -> None:
        for operation in plan.operations:
            handler = getattr(self, f"_{operation.op}")
            handler(operation)

    @staticmethod
    def _set_fields(record, changes: dict) -> None:
        for field, value in changes.items():
            if field not in type(record).model_fields:
                raise ValueError(f"Unknown field {field!r} for {type(record).__name__}")
            setattr(record, field, value)

    def _create_category(self, op: CreateCategory) -> None:
        if op.category_id in self.category_index:
            raise ValueError(f"Category {op.category_id} already exists")
        category = LocalCategory(
            id=op.category_id,
            tenant_id=self.tenant_id,
            name=op.name,
            description=op.description,
            sort_order=op.sort_order,
            provider_category_id=op.provider_category_id,
            last_synced_at=self.synced_at,
        )
        self.categories.append(category)
        self.category_index[category.id] = category

    def _update_category(self, op: UpdateCategory) -> None:
        category = self.category_index[op.category_id]
        self._set_fields(category, op.changes)
        category.last_synced_at = self.synced_at

    def _soft_remove_category(self, op: SoftRemoveCategory) -> None:
        category = self.category_index[op.category_id]
        category.available = False
        category.last_synced_at = self.synced_at

    def _create_item(self, op: CreateItem) -> None:
        if op.item_id in self.item_index:
            raise ValueError(f"Item {op.item_id} already exists")
        item = LocalMenuItem(
            id=op.item_id,
            category_id=op.category_id,
            name=op.name,
            description=op.description,
            price=op.price,
            image_url=op.image_url,
            available=op.available,
            provider_item_id=op.provider_item_id,
            last_synced_at=self.synced_at,
        )
        self.category_index[op.category_id].items.append(item)
        self.item_index[item.id] = item

    def _update_item(self, op: UpdateItem) -> None:
        item = self.item_index[op.item_id]
        changes = dict(op.changes)
        new_category_id = changes.pop("category_id", None)
        if new_category_id and new_category_id != item.category_id:
            target = self.category_index[new_category_id]
            source = self.category_index[item.category_id]
            source.items = [existing for existing in source.items if existing.id != item.id]
            target.items.append(item)
            item.category_id = new_category_id
        self._set_fields(item, changes)
        item.last_synced_at = self.synced_at

    def _soft_remove_item(self, op: SoftRemoveItem) -> None:
        item = self.item_index[op.item_id]
        item.available = False
        item.last_synced_at = self.synced_at

    def _create_modifier(self, op: CreateModifier) -> None:
        if op.modifier_id in self.modifier_index:
            raise ValueError(f"Modifier {op.modifier_id} already exists")
        modifier = LocalModifier(
            id=op.modifier_id,
            item_id=op.item_id,
            name=op.name,
            required=op.required,
            provider_modifier_id=op.provider_modifier_id,
            last_synced_at=self.synced_at,
        )
        self.item_index[op.item_id].modifiers.append(modifier)
        self.modifier_index[modifier.id] = modifier

    def _update_modifier(self, op: UpdateModifier) -> None:
        modifier = self.modifier_index[op.modifier_id]
        self._set_fields(modifier, op.changes)
        modifier.last_synced_at = self.synced_at

    def _soft_remove_modifier(self, op: SoftRemoveModifier) -> None:
        modifier = self.modifier_index[op.modifier_id]
        modifier.available = False
        modifier.last_synced_at = self.synced_at

    def _create_modifier_option(self, op: CreateModifierOption) -> None:
        if op.option_id in self.option_index:
            raise ValueError(f"Modifier option {op.option_id} already exists")
        option = LocalModifierOption(
            id=op.option_id,
            modifier_id=op.modifier_id,
            name=op.name,
            price=op.price,
            available=op.available,
            provider_option_id=op.provider_option_id,
            last_synced_at=self.synced_at,
        )
        self.modifier_index[op.modifier_id].options.append(option)
        self.option_index[option.id] = option

    def _update_modifier_option(self, op: UpdateModifierOption) -> None:
        option = self.option_index[op.option_id]
        self._set_fields(option, op.changes)
        option.last_synced_at = self.synced_at

    def _soft_remove_modifier_option(self, op: SoftRemoveModifierOption) -> None:
        option = self.option_index[op.option_id]
        option.available = False
        option.last_synced_at = self.synced_at
