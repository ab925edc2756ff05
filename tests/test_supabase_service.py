# tests/test_supabase_service.py

import asyncio
from datetime import UTC, datetime
from unittest.mock import MagicMock, call

import pytest
from postgrest.exceptions import APIError

from possync.config import settings
from possync.exceptions import TransactionApplyError
from possync.models.catalog import CanonicalCatalog, CanonicalCategory, CanonicalItem
from possync.models.database import IntegrationProvider
from possync.services.supabase_service import (
    SupabaseCatalogStore,
    SupabaseService,
    fetch_all_rows,
)
from possync.sync.locks import SupabaseTenantLockManager
from possync.sync.plan import CreateCategory, MergePlan
from possync.sync.reconciliation import reconcile

TENANT = "tenant-1"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

BUILDER_METHODS = ("select", "eq", "or_", "order", "range", "limit", "insert", "update", "upsert", "delete", "lt")


def query_returning(*pages):
    """Chainable query builder whose execute() hands out the given row lists in order."""
    query = MagicMock()
    for method in BUILDER_METHODS:
        getattr(query, method).return_value = query
    query.execute.side_effect = [MagicMock(data=page) for page in pages]
    return query


def client_with(**tables):
    client = MagicMock()
    client.table.side_effect = lambda name: tables[name]
    return client


def item_row(item_id, category_id, provider_item_id=None, **fields):
    return {
        "id": item_id,
        "tenant_id": TENANT,
        "category_id": category_id,
        "name": fields.pop("name", item_id),
        "provider_item_id": provider_item_id,
        **fields,
    }


@pytest.fixture
def small_pages(monkeypatch):
    monkeypatch.setattr(settings, "supabase_page_size", 2)


class TestFetchAllRows:

    def test_reads_until_a_short_page(self):
        query = query_returning([{"id": "a"}, {"id": "b"}], [{"id": "c"}, {"id": "d"}], [{"id": "e"}])

        rows = fetch_all_rows(lambda: query, page_size=2)

        assert [row["id"] for row in rows] == ["a", "b", "c", "d", "e"]
        assert query.range.call_args_list == [call(0, 1), call(2, 3), call(4, 5)]
        query.order.assert_called_with("id")

    def test_full_last_page_needs_one_empty_read(self):
        query = query_returning([{"id": "a"}, {"id": "b"}], [])

        rows = fetch_all_rows(lambda: query, order_by="tenant_id", page_size=2)

        assert len(rows) == 2
        assert query.execute.call_count == 2
        query.order.assert_called_with("tenant_id")

    def test_uses_configured_page_size(self, small_pages):
        query = query_returning([{"id": "a"}])

        fetch_all_rows(lambda: query)

        query.range.assert_called_once_with(0, 1)


class TestSupabaseService:

    async def test_enabled_integrations_are_paged(self, small_pages):
        query = query_returning(
            [{"tenant_id": "t1", "square_enabled": True}, {"tenant_id": "t2", "toast_enabled": True}],
            [{"tenant_id": "t3", "square_enabled": True}],
        )
        service = SupabaseService(client=client_with(tenant_integrations=query))

        integrations = await service.list_enabled_integrations()

        assert [integration.tenant_id for integration in integrations] == ["t1", "t2", "t3"]
        query.or_.assert_called_with("square_enabled.eq.true,toast_enabled.eq.true")

    async def test_enabled_integrations_by_provider(self):
        query = query_returning([{"tenant_id": "t1", "toast_enabled": True}])
        service = SupabaseService(client=client_with(tenant_integrations=query))

        await service.list_enabled_integrations(IntegrationProvider.TOAST)

        query.eq.assert_called_with("toast_enabled", True)
        query.or_.assert_not_called()


class TestSupabaseCatalogStore:

    def _store(self, categories=(), items=(), modifiers=(), options=(), item_pages=None):
        client = client_with(
            menu_categories=query_returning(list(categories)),
            menu_items=query_returning(*(item_pages or [list(items)])),
            menu_modifiers=query_returning(list(modifiers)),
            modifier_options=query_returning(list(options)),
        )
        return SupabaseCatalogStore(client=client)

    async def test_snapshot_nests_rows_and_orders_categories(self):
        store = self._store(
            categories=[
                {"id": "cat-food", "tenant_id": TENANT, "name": "Food", "sort_order": 2},
                {"id": "cat-drinks", "tenant_id": TENANT, "name": "Drinks", "sort_order": 1},
            ],
            items=[
                item_row("item-latte", "cat-drinks", price=450),
                item_row("item-bagel", "cat-food", price=300),
            ],
            modifiers=[{"id": "mod-milk", "tenant_id": TENANT, "item_id": "item-latte", "name": "Milk"}],
            options=[
                {"id": "opt-oat", "tenant_id": TENANT, "modifier_id": "mod-milk", "name": "Oat", "price": 75},
                {"id": "opt-soy", "tenant_id": TENANT, "modifier_id": "mod-milk", "name": "Soy"},
            ],
        )

        snapshot = await store.load_snapshot(TENANT)

        assert [category.id for category in snapshot] == ["cat-drinks", "cat-food"]
        drinks, food = snapshot
        assert [item.id for item in drinks.items] == ["item-latte"]
        assert [item.id for item in food.items] == ["item-bagel"]
        milk = drinks.items[0].modifiers[0]
        assert milk.id == "mod-milk"
        assert [option.name for option in milk.options] == ["Oat", "Soy"]
        assert food.items[0].modifiers == []

    async def test_snapshot_filters_every_table_by_tenant(self):
        store = self._store()

        await store.load_snapshot(TENANT)

        tables = [c.args[0] for c in store.client.table.call_args_list]
        assert sorted(tables) == ["menu_categories", "menu_items", "menu_modifiers", "modifier_options"]
        for name in tables:
            store.client.table(name).eq.assert_called_with("tenant_id", TENANT)

    async def test_large_menu_resyncs_without_duplicates(self, small_pages):
        store = self._store(
            categories=[
                {"id": "cat-1", "tenant_id": TENANT, "name": "Drinks", "provider_category_id": "C1"},
            ],
            item_pages=[
                [
                    item_row("item-1", "cat-1", "I1", name="Latte", price=450),
                    item_row("item-2", "cat-1", "I2", name="Mocha", price=500),
                ],
                [item_row("item-3", "cat-1", "I3", name="Chai", price=400)],
            ],
        )
        remote = CanonicalCatalog(
            categories=[
                CanonicalCategory(
                    provider_category_id="C1",
                    name="Drinks",
                    items=[
                        CanonicalItem(provider_item_id="I1", name="Latte", price=450),
                        CanonicalItem(provider_item_id="I2", name="Mocha", price=500),
                        CanonicalItem(provider_item_id="I3", name="Chai", price=400),
                    ],
                )
            ]
        )

        snapshot = await store.load_snapshot(TENANT)
        plan = reconcile(snapshot, remote)

        assert len(snapshot[0].items) == 3
        assert plan.summary.items.created == 0
        assert plan.summary.categories.created == 0

    async def test_empty_plan_skips_rpc(self):
        store = self._store()

        await store.apply_plan(TENANT, MergePlan(), NOW)

        store.client.rpc.assert_not_called()

    async def test_apply_sends_operations_in_one_call(self):
        store = self._store()
        plan = MergePlan(
            operations=[
                CreateCategory(category_id="cat-1", provider_category_id="C1", name="Drinks", sort_order=1)
            ]
        )

        await store.apply_plan(TENANT, plan, NOW)

        store.client.rpc.assert_called_once_with(
            "apply_menu_merge_plan",
            {
                "p_tenant_id": TENANT,
                "p_operations": [
                    {
                        "op": "create_category",
                        "category_id": "cat-1",
                        "provider_category_id": "C1",
                        "name": "Drinks",
                        "description": None,
                        "sort_order": 1,
                    }
                ],
                "p_synced_at": NOW.isoformat(),
            },
        )

    async def test_apply_failure_raises_transaction_error(self):
        store = self._store()
        store.client.rpc.return_value.execute.side_effect = APIError(
            {"code": "23503", "message": "foreign key violation"}
        )
        plan = MergePlan(operations=[CreateCategory(category_id="cat-1", provider_category_id="C1", name="Drinks")])

        with pytest.raises(TransactionApplyError):
            await store.apply_plan(TENANT, plan, NOW)

    async def test_marking_item_unavailable_sets_override(self):
        query = query_returning([item_row("item-1", "cat-1", available=False, unavailable_override=True)])
        store = SupabaseCatalogStore(client=client_with(menu_items=query))

        item = await store.set_item_availability(TENANT, "item-1", False)

        query.update.assert_called_once_with({"available": False, "unavailable_override": True})
        query.eq.assert_any_call("tenant_id", TENANT)
        query.eq.assert_any_call("id", "item-1")
        assert item.unavailable_override is True

    async def test_unknown_item_returns_none(self):
        store = SupabaseCatalogStore(client=client_with(menu_items=query_returning([])))
        assert await store.set_item_availability(TENANT, "missing", True) is None


class TestSupabaseTenantLockManager:

    def _manager(self, *results, ttl_seconds=300):
        query = MagicMock()
        for method in BUILDER_METHODS:
            getattr(query, method).return_value = query
        query.execute.side_effect = list(results)
        return SupabaseTenantLockManager(client_with(sync_locks=query), ttl_seconds=ttl_seconds), query

    async def test_acquire_clears_expired_rows_then_inserts(self):
        locks, query = self._manager(MagicMock(data=[]), MagicMock(data=[{"tenant_id": TENANT}]))

        assert await locks.try_acquire(TENANT) is True

        query.lt.assert_called_once()
        inserted = query.insert.call_args.args[0]
        assert inserted["tenant_id"] == TENANT
        assert inserted["holder"] == locks.holder_id

    async def test_unique_violation_means_busy(self):
        locks, _ = self._manager(MagicMock(data=[]), APIError({"code": "23505", "message": "duplicate key"}))

        assert await locks.try_acquire(TENANT) is False

    async def test_other_insert_errors_propagate(self):
        locks, _ = self._manager(MagicMock(data=[]), APIError({"code": "42501", "message": "permission denied"}))

        with pytest.raises(APIError):
            await locks.try_acquire(TENANT)

    async def test_release_deletes_only_own_row(self):
        locks, query = self._manager(MagicMock(data=[]))

        await locks.release(TENANT)

        query.delete.assert_called_once()
        query.eq.assert_any_call("tenant_id", TENANT)
        query.eq.assert_any_call("holder", locks.holder_id)

    async def test_release_swallows_errors(self):
        locks, _ = self._manager(RuntimeError("supabase unavailable"))

        await locks.release(TENANT)

    async def test_extend_own_row(self):
        locks, query = self._manager(MagicMock(data=[{"tenant_id": TENANT}]))

        assert await locks.extend(TENANT) is True
        assert "expires_at" in query.update.call_args.args[0]
        query.eq.assert_any_call("holder", locks.holder_id)

    async def test_extend_after_takeover(self):
        locks, _ = self._manager(MagicMock(data=[]))
        assert await locks.extend(TENANT) is False

    async def test_keep_alive_renews_until_exit(self):
        locks, query = self._manager()
        query.execute.side_effect = None
        query.execute.return_value = MagicMock(data=[{"tenant_id": TENANT}])
        locks.renew_interval = 0.01

        async with locks.keep_alive(TENANT):
            await asyncio.sleep(0.05)

        renewals = query.update.call_count
        assert renewals >= 1
        await asyncio.sleep(0.03)
        assert query.update.call_count == renewals

    async def test_keep_alive_stops_once_lock_is_lost(self):
        locks, query = self._manager()
        query.execute.side_effect = None
        query.execute.return_value = MagicMock(data=[])
        locks.renew_interval = 0.01

        async with locks.keep_alive(TENANT):
            await asyncio.sleep(0.05)

        assert query.update.call_count == 1
