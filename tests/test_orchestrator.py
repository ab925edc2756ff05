# tests/test_orchestrator.py

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from possync.exceptions import (
    AlreadyConnectedError,
    AuthExpiredError,
    CatalogFetchError,
    ConflictingIntegrationError,
    InvalidCredentialsError,
    NotConnectedError,
    SyncLockLostError,
)
from possync.models.database import (
    IntegrationProvider,
    LocalCategory,
    LocalMenuItem,
    SyncStatus,
    TriggerSource,
)

TENANT = "tenant-1"
CATALOG_PATH = "/v2/catalog/list"


@pytest.fixture
def orchestrator(container):
    return container.orchestrator


@pytest.fixture
def square_oauth(fake_api):
    """Square answers the OAuth code exchange and location lookup."""
    fake_api.add(
        "POST",
        "/oauth2/token",
        (
            200,
            {
                "access_token": "sq-access",
                "refresh_token": "sq-refresh",
                "expires_at": (datetime.now(UTC) + timedelta(days=30)).strftime("%Y-%m-%dT%H:%M:%SZ"),
                "merchant_id": "MERCHANT1",
            },
        ),
    )
    fake_api.add("GET", "/v2/locations", (200, {"locations": [{"id": "LOC1", "name": "Main Street", "status": "ACTIVE"}]}))
    return fake_api


@pytest.fixture
def drinks_catalog(fake_api, square_objects):
    """Square catalog: Drinks (C1) with Latte (I1) at 450."""
    fake_api.add(
        "GET",
        CATALOG_PATH,
        (
            200,
            {
                "objects": [
                    square_objects.category("C1", "Drinks"),
                    square_objects.item("I1", "Latte", 450, category_id="C1"),
                ]
            },
        ),
    )
    return fake_api


class TestConnect:

    async def test_connect_square_stores_credentials(self, orchestrator, square_oauth, integration_store):
        result = await orchestrator.connect(TENANT, IntegrationProvider.SQUARE, {"code": "auth-code"})

        assert result.provider == IntegrationProvider.SQUARE
        assert result.provider_account_name == "Main Street"
        assert result.provider_account_ids == {"merchant_id": "MERCHANT1", "location_id": "LOC1"}
        row = await integration_store.get_integration(TENANT)
        assert row.square_enabled is True
        assert row.sync_status == SyncStatus.IDLE

    async def test_second_provider_is_rejected_without_changes(self, orchestrator, connect_square, integration_store, fake_api):
        """Test connecting Toast while Square is active fails before anything is written or called"""
        await connect_square(TENANT)
        before = await integration_store.get_integration(TENANT)

        with pytest.raises(ConflictingIntegrationError):
            await orchestrator.connect(
                TENANT,
                IntegrationProvider.TOAST,
                {"client_id": "cid", "client_secret": "s", "restaurant_guid": "r"},
            )

        assert await integration_store.get_integration(TENANT) == before
        assert fake_api.calls == []

    async def test_reconnecting_same_provider(self, orchestrator, connect_square):
        await connect_square(TENANT)
        with pytest.raises(AlreadyConnectedError):
            await orchestrator.check_can_connect(TENANT, IntegrationProvider.SQUARE)

    async def test_invalid_credentials_write_nothing(self, orchestrator, fake_api, integration_store):
        fake_api.add("POST", "/oauth2/token", (401, {"errors": []}))

        with pytest.raises(InvalidCredentialsError):
            await orchestrator.connect(TENANT, IntegrationProvider.SQUARE, {"code": "bad"})
        assert await integration_store.get_integration(TENANT) is None

    async def test_connect_while_tenant_busy(self, orchestrator, square_oauth, lock_manager):
        await lock_manager.try_acquire(TENANT)

        with pytest.raises(ConflictingIntegrationError):
            await orchestrator.connect(TENANT, IntegrationProvider.SQUARE, {"code": "auth-code"})


class TestDisconnectAndStatus:

    async def test_disconnect_keeps_menu(self, orchestrator, connect_square, drinks_catalog, catalog_store):
        await connect_square(TENANT)
        await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        await orchestrator.disconnect(TENANT, IntegrationProvider.SQUARE)

        status = await orchestrator.status(TENANT, IntegrationProvider.SQUARE)
        assert status.enabled is False
        menu = await catalog_store.load_snapshot(TENANT)
        assert [item.name for category in menu for item in category.items] == ["Latte"]

    async def test_disconnect_not_connected(self, orchestrator, connect_square):
        await connect_square(TENANT)
        with pytest.raises(NotConnectedError):
            await orchestrator.disconnect(TENANT, IntegrationProvider.TOAST)

    async def test_switch_provider_after_disconnect(self, orchestrator, connect_square):
        await connect_square(TENANT)
        await orchestrator.disconnect(TENANT, IntegrationProvider.SQUARE)

        await orchestrator.check_can_connect(TENANT, IntegrationProvider.TOAST)

    async def test_status_reports_expiring_token(self, orchestrator, connect_square):
        await connect_square(TENANT, expires_in_days=2)

        status = await orchestrator.status(TENANT, IntegrationProvider.SQUARE)

        assert status.enabled is True
        assert status.token_expiring is True
        assert status.provider_account_name == "Main Street"
        assert status.provider_account_ids["merchant_id"] == "MERCHANT1"

    async def test_status_without_integration(self, orchestrator):
        status = await orchestrator.status(TENANT, IntegrationProvider.TOAST)
        assert status.enabled is False
        assert status.sync_status is None


class TestRunSync:

    async def test_first_sync_builds_menu(self, orchestrator, connect_square, drinks_catalog, catalog_store, integration_store):
        """Test Drinks/Latte at 450 lands in the local menu and the tenant goes back to IDLE"""
        await connect_square(TENANT)

        result = await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        assert result.success is True
        assert result.skipped is False
        assert result.categories_synced == 1
        assert result.items_synced == 1
        [drinks] = await catalog_store.load_snapshot(TENANT)
        assert (drinks.name, drinks.provider_category_id) == ("Drinks", "C1")
        [latte] = drinks.items
        assert (latte.name, latte.price, latte.provider_item_id, latte.available) == ("Latte", 450, "I1", True)

        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.IDLE
        assert row.last_sync_at is not None
        [run] = await integration_store.list_sync_runs(TENANT)
        assert run.success is True
        assert run.trigger == TriggerSource.MANUAL
        assert run.summary.items.created == 1

    async def test_second_sync_changes_nothing(self, orchestrator, connect_square, drinks_catalog, catalog_store):
        await connect_square(TENANT)
        await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)
        before = await catalog_store.load_snapshot(TENANT)

        result = await orchestrator.run_sync(TENANT, TriggerSource.SCHEDULE)

        assert result.items_synced == 1
        assert await catalog_store.load_snapshot(TENANT) == before

    async def test_staff_data_survives_sync(self, orchestrator, connect_square, drinks_catalog, catalog_store):
        await connect_square(TENANT)
        catalog_store.add_category(
            TENANT,
            LocalCategory(
                id="cat-staff",
                name="Staff Picks",
                items=[LocalMenuItem(id="item-cookie", category_id="cat-staff", name="Cookie", price=250)],
            ),
        )

        await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        menu = {category.id: category for category in await catalog_store.load_snapshot(TENANT)}
        assert menu["cat-staff"].items[0].available is True
        assert len(menu) == 2

    async def test_sync_while_running_is_coalesced(self, orchestrator, connect_square, lock_manager, fake_api):
        await connect_square(TENANT)
        await lock_manager.try_acquire(TENANT)

        result = await orchestrator.run_sync(TENANT, TriggerSource.WEBHOOK)

        assert result.success is True
        assert result.skipped is True
        assert fake_api.calls == []

    async def test_lock_is_released_after_failure(self, orchestrator, connect_square, fake_api, lock_manager):
        await connect_square(TENANT)
        fake_api.add("GET", CATALOG_PATH, (500, {}))

        with pytest.raises(CatalogFetchError):
            await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        assert await lock_manager.try_acquire(TENANT) is True

    async def test_lost_lock_aborts_before_apply(
        self, orchestrator, connect_square, drinks_catalog, lock_manager, catalog_store, integration_store, monkeypatch
    ):
        await connect_square(TENANT)
        monkeypatch.setattr(lock_manager, "extend", AsyncMock(return_value=False))

        with pytest.raises(SyncLockLostError):
            await orchestrator.run_sync(TENANT, TriggerSource.SCHEDULE)

        assert await catalog_store.load_snapshot(TENANT) == []
        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.ERROR
        assert await lock_manager.try_acquire(TENANT) is True

    async def test_failed_status_write_is_recorded(
        self, orchestrator, connect_square, drinks_catalog, integration_store, monkeypatch
    ):
        await connect_square(TENANT)
        update = integration_store.update_integration

        async def flaky_update(tenant_id, **fields):
            if fields.get("sync_status") == SyncStatus.SYNCING:
                raise RuntimeError("supabase unavailable")
            return await update(tenant_id, **fields)

        monkeypatch.setattr(integration_store, "update_integration", flaky_update)

        with pytest.raises(RuntimeError):
            await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.ERROR
        assert "supabase unavailable" in row.last_sync_error
        [run] = await integration_store.list_sync_runs(TENANT)
        assert run.success is False

    async def test_fetch_failure_puts_tenant_in_error(self, orchestrator, connect_square, fake_api, integration_store, catalog_store):
        await connect_square(TENANT)
        fake_api.add("GET", CATALOG_PATH, (500, {}))

        with pytest.raises(CatalogFetchError):
            await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.ERROR
        assert "Failed to fetch Square catalog" in row.last_sync_error
        [run] = await integration_store.list_sync_runs(TENANT)
        assert run.success is False
        assert run.errors
        assert await catalog_store.load_snapshot(TENANT) == []

    async def test_auth_failure_puts_tenant_in_error(self, orchestrator, connect_square, fake_api, integration_store):
        await connect_square(TENANT, expires_in_days=1)
        fake_api.add("POST", "/oauth2/token", (401, {}))

        with pytest.raises(AuthExpiredError):
            await orchestrator.run_sync(TENANT, TriggerSource.SCHEDULE)

        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.ERROR

    async def test_recovery_clears_error(self, orchestrator, connect_square, fake_api, square_objects, integration_store):
        await connect_square(TENANT)
        fake_api.add(
            "GET",
            CATALOG_PATH,
            (500, {}),
            (500, {}),
            (200, {"objects": [square_objects.item("I1", "Latte", 450)]}),
        )
        with pytest.raises(CatalogFetchError):
            await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.IDLE
        assert row.last_sync_error is None

    async def test_partial_pull_reports_errors_and_keeps_missing_items(
        self, orchestrator, connect_square, fake_api, square_objects, catalog_store
    ):
        """Test an incomplete pull still applies what it got but soft-removes nothing"""
        await connect_square(TENANT)
        catalog_store.add_category(
            TENANT,
            LocalCategory(
                id="cat-food",
                name="Food",
                provider_category_id="C2",
                items=[LocalMenuItem(id="item-bagel", category_id="cat-food", name="Bagel", provider_item_id="I2")],
            ),
        )
        fake_api.add(
            "GET",
            CATALOG_PATH,
            (200, {"objects": [square_objects.item("I1", "Latte", 450)], "cursor": "next"}),
            (503, {}),
        )

        result = await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        assert result.success is True
        assert len(result.errors) == 1
        menu = {category.id: category for category in await catalog_store.load_snapshot(TENANT)}
        assert menu["cat-food"].available is True
        assert menu["cat-food"].items[0].available is True

    async def test_missing_items_are_soft_removed_on_complete_pull(
        self, orchestrator, connect_square, drinks_catalog, catalog_store
    ):
        await connect_square(TENANT)
        catalog_store.add_category(
            TENANT,
            LocalCategory(
                id="cat-food",
                name="Food",
                provider_category_id="C2",
                items=[LocalMenuItem(id="item-bagel", category_id="cat-food", name="Bagel", provider_item_id="I2")],
            ),
        )

        await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

        menu = {category.id: category for category in await catalog_store.load_snapshot(TENANT)}
        assert menu["cat-food"].available is False
        assert menu["cat-food"].items[0].available is False

    async def test_sync_without_integration(self, orchestrator):
        with pytest.raises(NotConnectedError):
            await orchestrator.run_sync(TENANT, TriggerSource.MANUAL)

    async def test_sync_for_inactive_provider(self, orchestrator, connect_square):
        await connect_square(TENANT)
        with pytest.raises(NotConnectedError):
            await orchestrator.run_sync(TENANT, TriggerSource.MANUAL, IntegrationProvider.TOAST)

    async def test_unknown_trigger_is_ignored(self, orchestrator, connect_square, fake_api):
        await connect_square(TENANT)

        assert await orchestrator.dispatch_trigger(TENANT, "NIGHTLY_BATCH") is None
        assert fake_api.calls == []

    async def test_trigger_value_is_parsed(self, orchestrator, connect_square, drinks_catalog):
        await connect_square(TENANT)

        result = await orchestrator.dispatch_trigger(TENANT, "schedule")

        assert result.success is True


class TestRefreshCredentials:

    async def test_refresh_failure_marks_error(self, orchestrator, connect_square, fake_api, integration_store):
        await connect_square(TENANT, expires_in_days=1)
        fake_api.add("POST", "/oauth2/token", (400, {}))

        assert await orchestrator.refresh_credentials(TENANT) is False

        row = await integration_store.get_integration(TENANT)
        assert row.sync_status == SyncStatus.ERROR

    async def test_fresh_token_needs_nothing(self, orchestrator, connect_square, fake_api):
        await connect_square(TENANT, expires_in_days=30)

        assert await orchestrator.refresh_credentials(TENANT) is True
        assert fake_api.calls == []

    async def test_busy_tenant_is_skipped(self, orchestrator, connect_square, lock_manager):
        await connect_square(TENANT, expires_in_days=1)
        await lock_manager.try_acquire(TENANT)

        assert await orchestrator.refresh_credentials(TENANT) is False
