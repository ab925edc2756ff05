# tests/test_square_adapter.py

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from possync.exceptions import AuthExpiredError, CatalogFetchError, InvalidCredentialsError
from possync.integrations.square.adapter import SquareIntegrationAdapter
from possync.integrations.square.token_refresh import is_token_expiring_soon, parse_expires_at
from possync.integrations.square.transformer import (
    UNCATEGORIZED_ID,
    UNCATEGORIZED_SORT_ORDER,
    SquareTransformer,
)
from possync.models.database import IntegrationProvider

TENANT = "tenant-1"
CATALOG_PATH = "/v2/catalog/list"


@pytest.fixture
def adapter(container) -> SquareIntegrationAdapter:
    return container.registry.get_adapter(IntegrationProvider.SQUARE)


def token_response(**overrides):
    body = {
        "access_token": "sq-access-new",
        "refresh_token": "sq-refresh-new",
        "expires_at": (datetime.now(UTC) + timedelta(days=30)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "merchant_id": "MERCHANT1",
        "token_type": "bearer",
    }
    body.update(overrides)
    return 200, body


class TestValidateCredentials:

    async def test_exchanges_code_and_picks_active_location(self, adapter, fake_api):
        fake_api.add("POST", "/oauth2/token", token_response())
        fake_api.add(
            "GET",
            "/v2/locations",
            (
                200,
                {
                    "locations": [
                        {"id": "LOC0", "name": "Closed Shop", "status": "INACTIVE"},
                        {"id": "LOC1", "name": "Main Street", "status": "ACTIVE"},
                    ]
                },
            ),
        )

        validated = await adapter.validate_credentials({"code": "auth-code"})

        assert validated.provider_account_name == "Main Street"
        assert validated.credentials.merchant_id == "MERCHANT1"
        assert validated.credentials.location_id == "LOC1"
        assert validated.credentials.access_token.get_secret_value() == "sq-access-new"
        assert validated.credentials.token_expires_at is not None
        token_request = fake_api.calls_to("/oauth2/token")[0]
        assert b'"grant_type":"authorization_code"' in token_request.content.replace(b" ", b"")

    async def test_missing_code(self, adapter):
        with pytest.raises(InvalidCredentialsError):
            await adapter.validate_credentials({})

    async def test_rejected_code(self, adapter, fake_api):
        fake_api.add("POST", "/oauth2/token", (401, {"errors": [{"code": "UNAUTHORIZED"}]}))

        with pytest.raises(InvalidCredentialsError):
            await adapter.validate_credentials({"code": "bad"})

    async def test_square_outage_is_not_a_credentials_error(self, adapter, fake_api):
        fake_api.add("POST", "/oauth2/token", (503, {"errors": []}))

        with pytest.raises(CatalogFetchError):
            await adapter.validate_credentials({"code": "auth-code"})

    async def test_account_without_locations(self, adapter, fake_api):
        fake_api.add("POST", "/oauth2/token", token_response())
        fake_api.add("GET", "/v2/locations", (200, {"locations": []}))

        with pytest.raises(InvalidCredentialsError):
            await adapter.validate_credentials({"code": "auth-code"})


class TestAuthenticate:

    async def test_fresh_token_is_used_without_calls(self, adapter, connect_square, fake_api):
        await connect_square(TENANT, expires_in_days=30)

        token = await adapter.authenticate(TENANT)

        assert token.token.get_secret_value() == "sq-access"
        assert token.refreshed is False
        assert fake_api.calls == []

    async def test_expiring_token_is_refreshed_and_stored(self, adapter, connect_square, fake_api, container):
        await connect_square(TENANT, expires_in_days=2)
        fake_api.add("POST", "/oauth2/token", token_response())

        token = await adapter.authenticate(TENANT)

        assert token.refreshed is True
        assert token.token.get_secret_value() == "sq-access-new"
        stored = await container.credential_store.get(TENANT)
        assert stored.access_token.get_secret_value() == "sq-access-new"
        assert stored.refresh_token.get_secret_value() == "sq-refresh-new"

    async def test_refresh_failure_requires_reconnect(self, adapter, connect_square, fake_api):
        await connect_square(TENANT, expires_in_days=1)
        fake_api.add("POST", "/oauth2/token", (400, {"errors": [{"code": "INVALID_GRANT"}]}))

        with pytest.raises(AuthExpiredError):
            await adapter.authenticate(TENANT)

    async def test_missing_refresh_token_requires_reconnect(self, adapter, connect_square):
        await connect_square(TENANT, expires_in_days=1, refresh_token=None)

        with pytest.raises(AuthExpiredError):
            await adapter.authenticate(TENANT)


class TestFetchCatalog:

    async def test_paginates_and_normalizes(self, adapter, connect_square, fake_api, square_objects, container):
        await connect_square(TENANT)
        fake_api.add(
            "GET",
            CATALOG_PATH,
            (200, {"objects": [square_objects.category("C1", "Drinks")], "cursor": "page-2"}),
            (200, {"objects": [square_objects.item("I1", "Latte", 450, category_id="C1")]}),
        )
        token = await adapter.authenticate(TENANT)

        result = await adapter.fetch_catalog(TENANT, token)

        assert result.complete is True
        assert result.page_errors == []
        [drinks] = result.catalog.categories
        assert drinks.provider_category_id == "C1"
        assert [(item.provider_item_id, item.price) for item in drinks.items] == [("I1", 450)]
        second_request = fake_api.calls_to(CATALOG_PATH)[1]
        assert second_request.url.params["cursor"] == "page-2"
        assert second_request.headers["Authorization"] == "Bearer sq-access"

    async def test_transient_page_error_is_retried(self, adapter, connect_square, fake_api, square_objects):
        await connect_square(TENANT)
        fake_api.add(
            "GET",
            CATALOG_PATH,
            (500, {"errors": []}),
            (200, {"objects": [square_objects.item("I1", "Latte", 450)]}),
        )

        result = await adapter.fetch_catalog(TENANT, await adapter.authenticate(TENANT))

        assert result.complete is True
        assert len(fake_api.calls_to(CATALOG_PATH)) == 2

    async def test_later_page_failure_is_partial(self, adapter, connect_square, fake_api, square_objects):
        """Test a page failing after retries stops pagination and marks the pull incomplete"""
        await connect_square(TENANT)
        fake_api.add(
            "GET",
            CATALOG_PATH,
            (200, {"objects": [square_objects.item("I1", "Latte", 450)], "cursor": "page-2"}),
            (503, {"errors": []}),
        )

        result = await adapter.fetch_catalog(TENANT, await adapter.authenticate(TENANT))

        assert result.complete is False
        assert len(result.page_errors) == 1
        assert result.page_errors[0].page == 2
        assert result.catalog.item_count == 1

    async def test_first_page_failure_is_total(self, adapter, connect_square, fake_api):
        await connect_square(TENANT)
        fake_api.add("GET", CATALOG_PATH, httpx.ConnectError("connection refused"))

        with pytest.raises(CatalogFetchError):
            await adapter.fetch_catalog(TENANT, await adapter.authenticate(TENANT))

    async def test_unauthorized_first_page(self, adapter, connect_square, fake_api):
        await connect_square(TENANT)
        fake_api.add("GET", CATALOG_PATH, (401, {"errors": [{"code": "UNAUTHORIZED"}]}))

        with pytest.raises(AuthExpiredError):
            await adapter.fetch_catalog(TENANT, await adapter.authenticate(TENANT))
        # 401 is permanent, no retry
        assert len(fake_api.calls_to(CATALOG_PATH)) == 1


class TestSquareTransformer:

    @pytest.fixture
    def transformer(self):
        return SquareTransformer()

    def build(self, transformer, raw, location_id="LOC1"):
        return transformer.build_catalog(transformer.parse_objects(raw), location_id)

    def test_items_without_category_go_to_uncategorized(self, transformer, square_objects):
        catalog = self.build(
            transformer,
            [square_objects.category("C1", "Drinks"), square_objects.item("I1", "Cookie", 250)],
        )

        drinks, uncategorized = catalog.categories
        assert drinks.items == []
        assert uncategorized.provider_category_id == UNCATEGORIZED_ID
        assert uncategorized.sort_order == UNCATEGORIZED_SORT_ORDER
        assert uncategorized.items[0].name == "Cookie"

    def test_no_uncategorized_category_when_every_item_has_one(self, transformer, square_objects):
        catalog = self.build(
            transformer,
            [square_objects.category("C1", "Drinks"), square_objects.item("I1", "Latte", 450, category_id="C1")],
        )
        assert [c.provider_category_id for c in catalog.categories] == ["C1"]

    def test_deleted_and_malformed_objects_are_skipped(self, transformer, square_objects):
        catalog = self.build(
            transformer,
            [
                square_objects.item("I1", "Latte", 450, is_deleted=True),
                {"type": "ITEM"},
                square_objects.item("I2", "Mocha", 500),
            ],
        )
        assert [item.provider_item_id for item in catalog.categories[0].items] == ["I2"]

    def test_item_without_variations_is_skipped(self, transformer, square_objects):
        raw = square_objects.item("I1", "Latte", 450)
        raw["item_data"]["variations"] = []
        assert self.build(transformer, [raw]).categories == []

    @pytest.mark.parametrize(
        "extra,available",
        [
            ({}, True),
            ({"item_data": {"is_archived": True}}, False),
            ({"present_at_all_locations": False, "present_at_location_ids": ["LOC1"]}, True),
            ({"present_at_all_locations": False, "present_at_location_ids": ["LOC2"]}, False),
            ({"absent_at_location_ids": ["LOC1"]}, False),
        ],
    )
    def test_availability_follows_archive_and_location(self, transformer, square_objects, extra, available):
        catalog = self.build(transformer, [square_objects.item("I1", "Latte", 450, **extra)])
        assert catalog.categories[0].items[0].available is available

    def test_modifier_lists_and_images_are_resolved(self, transformer, square_objects):
        item = square_objects.item(
            "I1",
            "Latte",
            450,
            item_data={
                "image_ids": ["IMG1"],
                "modifier_list_info": [
                    {"modifier_list_id": "ML1", "min_selected_modifiers": 1},
                    {"modifier_list_id": "ML2", "enabled": False},
                ],
            },
        )
        raw = [
            item,
            {"id": "IMG1", "type": "IMAGE", "image_data": {"url": "https://img.example.com/latte.jpg"}},
            {
                "id": "ML1",
                "type": "MODIFIER_LIST",
                "modifier_list_data": {
                    "name": "Milk",
                    "modifiers": [
                        {"id": "MOD1", "type": "MODIFIER", "modifier_data": {"name": "Oat", "price_money": {"amount": 75}}},
                        {"id": "MOD2", "type": "MODIFIER", "is_deleted": True, "modifier_data": {"name": "Soy"}},
                    ],
                },
            },
            {"id": "ML2", "type": "MODIFIER_LIST", "modifier_list_data": {"name": "Syrups", "modifiers": []}},
        ]

        [latte] = self.build(transformer, raw).categories[0].items
        assert latte.image_url == "https://img.example.com/latte.jpg"
        [milk] = latte.modifiers
        assert milk.name == "Milk"
        assert milk.required is True
        assert [(option.provider_option_id, option.price) for option in milk.options] == [("MOD1", 75)]


class TestTokenExpiry:

    def test_parse_expires_at(self):
        assert parse_expires_at("2026-01-15T12:00:00Z") == datetime(2026, 1, 15, 12, tzinfo=UTC)
        assert parse_expires_at("garbage") is None
        assert parse_expires_at(None) is None

    def test_is_token_expiring_soon(self):
        now = datetime.now(UTC)
        assert is_token_expiring_soon(now + timedelta(days=3), threshold_days=7) is True
        assert is_token_expiring_soon(now + timedelta(days=10), threshold_days=7) is False
        assert is_token_expiring_soon(None) is True
