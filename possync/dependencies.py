"""
Service wiring.
Builds stores, adapters, locks and the orchestrator from settings and exposes them as
FastAPI dependencies. Workers and scripts use build_container() directly.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx
import structlog
from supabase import Client

from possync.config import Settings, settings as default_settings
from possync.integrations.registry import IntegrationRegistry, build_registry
from possync.services.credential_store import CredentialStore
from possync.services.memory_store import InMemoryCatalogStore, InMemoryIntegrationStore
from possync.services.stores import CatalogStore, IntegrationStore
from possync.services.supabase_service import (
    SupabaseCatalogStore,
    SupabaseService,
    create_supabase_client,
)
from possync.services.token_encryption import TokenCipher
from possync.sync.dispatcher import SyncDispatcher
from possync.sync.locks import (
    InProcessTenantLockManager,
    SupabaseTenantLockManager,
    TenantLockManager,
)
from possync.sync.orchestrator import SyncOrchestrator
from possync.sync.webhooks import WebhookService

logger = structlog.get_logger()


@dataclass
class ServiceContainer:
    integration_store: IntegrationStore
    catalog_store: CatalogStore
    credential_store: CredentialStore
    registry: IntegrationRegistry
    lock_manager: TenantLockManager
    orchestrator: SyncOrchestrator
    dispatcher: SyncDispatcher
    webhook_service: WebhookService


def build_container(
    config: Optional[Settings] = None,
    *,
    integration_store: Optional[IntegrationStore] = None,
    catalog_store: Optional[CatalogStore] = None,
    lock_manager: Optional[TenantLockManager] = None,
    cipher: Optional[TokenCipher] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContainer:
    """
    Wire every service. Explicit arguments override what the settings select.

    Args:
        config: Settings to build from (global settings by default)
        transport: httpx transport for provider API clients (tests use httpx.MockTransport)
    """
    config = config or default_settings
    client: Optional[Client] = None

    def supabase() -> Client:
        nonlocal client
        if client is None:
            client = create_supabase_client()
        return client

    if integration_store is None:
        integration_store = (
            SupabaseService(supabase()) if config.storage_backend == "supabase" else InMemoryIntegrationStore()
        )
    if catalog_store is None:
        catalog_store = (
            SupabaseCatalogStore(supabase()) if config.storage_backend == "supabase" else InMemoryCatalogStore()
        )
    if lock_manager is None:
        lock_manager = (
            SupabaseTenantLockManager(supabase(), config.sync_lock_ttl_seconds)
            if config.lock_backend == "supabase"
            else InProcessTenantLockManager()
        )

    credential_store = CredentialStore(
        integration_store, cipher or TokenCipher(config.credential_encryption_key)
    )
    registry = build_registry(credential_store, transport)
    orchestrator = SyncOrchestrator(
        integration_store, catalog_store, credential_store, registry, lock_manager
    )
    dispatcher = SyncDispatcher(orchestrator)
    webhook_service = WebhookService(registry, integration_store, dispatcher)

    logger.info(
        "Services configured",
        storage_backend=config.storage_backend,
        lock_backend=config.lock_backend,
        integrations=registry.list_available(),
    )
    return ServiceContainer(
        integration_store=integration_store,
        catalog_store=catalog_store,
        credential_store=credential_store,
        registry=registry,
        lock_manager=lock_manager,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        webhook_service=webhook_service,
    )


@lru_cache(maxsize=1)
def get_container() -> ServiceContainer:
    """Process-wide container for the API."""
    return build_container()
