# tests/conftest.py
# Shared fixtures: in-memory stores, a fake provider API and a wired service container

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from cryptography.fernet import Fernet
from pydantic import SecretStr

from possync.config import settings
from possync.dependencies import build_container
from possync.integrations.base import Credentials
from possync.models.database import IntegrationProvider
from possync.services.memory_store import InMemoryCatalogStore, InMemoryIntegrationStore
from possync.services.token_encryption import TokenCipher
from possync.sync.locks import InProcessTenantLockManager


class FakeProviderAPI:
    """
    Canned provider HTTP API behind httpx.MockTransport.
    Each (method, path) route holds a queue of responses; the last one repeats.
    A response is a (status, json_body) tuple, an exception to raise, or a callable(request).
    """

    def __init__(self):
        self.routes = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses):
        self.routes[(method.upper(), path)] = list(responses)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.calls if request.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        status, body = response
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """No real waiting between retries or pages; Square app credentials configured."""
    monkeypatch.setattr(settings, "retry_initial_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "retry_backoff_multiplier", 0.0)
    monkeypatch.setattr(settings, "max_retry_attempts", 2)
    monkeypatch.setattr(settings, "pagination_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "square_application_id", "sq0idp-test")
    monkeypatch.setattr(settings, "square_application_secret", "sq0csp-test")
    monkeypatch.setattr(settings, "square_environment", "sandbox")
    monkeypatch.setattr(settings, "toast_environment", "sandbox")


@pytest.fixture
def fake_api():
    return FakeProviderAPI()


@pytest.fixture
def cipher():
    return TokenCipher(Fernet.generate_key().decode())


@pytest.fixture
def integration_store():
    return InMemoryIntegrationStore()


@pytest.fixture
def catalog_store():
    return InMemoryCatalogStore()


@pytest.fixture
def lock_manager():
    return InProcessTenantLockManager()


@pytest.fixture
def container(integration_store, catalog_store, lock_manager, cipher, fake_api):
    return build_container(
        integration_store=integration_store,
        catalog_store=catalog_store,
        lock_manager=lock_manager,
        cipher=cipher,
        transport=fake_api.transport,
    )


@pytest.fixture
def connect_square(container):
    """Store Square credentials for a tenant without going through OAuth."""

    async def _connect(
        tenant_id: str = "tenant-1",
        merchant_id: str = "MERCHANT1",
        location_id: str = "LOC1",
        expires_in_days: float = 30,
        refresh_token: str | None = "sq-refresh",
    ):
        return await container.credential_store.save(
            tenant_id,
            Credentials(
                provider=IntegrationProvider.SQUARE,
                access_token=SecretStr("sq-access"),
                refresh_token=SecretStr(refresh_token) if refresh_token else None,
                token_expires_at=datetime.now(UTC) + timedelta(days=expires_in_days),
                merchant_id=merchant_id,
                location_id=location_id,
                location_name="Main Street",
            ),
        )

    return _connect


@pytest.fixture
def connect_toast(container):
    """Store Toast credentials for a tenant without calling Toast."""

    async def _connect(
        tenant_id: str = "tenant-1",
        restaurant_guid: str = "rest-guid-1",
        expires_in_seconds: float = 3600,
    ):
        return await container.credential_store.save(
            tenant_id,
            Credentials(
                provider=IntegrationProvider.TOAST,
                access_token=SecretStr("toast-bearer"),
                token_expires_at=datetime.now(UTC) + timedelta(seconds=expires_in_seconds),
                restaurant_guid=restaurant_guid,
                restaurant_name="Corner Cafe",
                client_id="toast-client",
                client_secret=SecretStr("toast-secret"),
            ),
        )

    return _connect


def square_item(
    item_id: str,
    name: str,
    price: int,
    category_id: str | None = None,
    **extra,
) -> dict:
    """Raw Square ITEM catalog object with a single variation."""
    item_data = {
        "name": name,
        "variations": [
            {
                "id": f"{item_id}-VAR",
                "type": "ITEM_VARIATION",
                "item_variation_data": {
                    "name": "Regular",
                    "price_money": {"amount": price, "currency": "USD"},
                },
            }
        ],
    }
    if category_id:
        item_data["categories"] = [{"id": category_id}]
    item_data.update(extra.pop("item_data", {}))
    return {"id": item_id, "type": "ITEM", "present_at_all_locations": True, "item_data": item_data, **extra}


def square_category(category_id: str, name: str) -> dict:
    return {"id": category_id, "type": "CATEGORY", "category_data": {"name": name}}


@pytest.fixture
def square_objects():
    """Builders for raw Square catalog objects."""

    class _Builders:
        item = staticmethod(square_item)
        category = staticmethod(square_category)

    return _Builders
