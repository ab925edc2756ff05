"""
Integration registry.
Maps each provider to its catalog adapter and webhook verifier. Adding a POS means
registering one more pair here.
"""

from typing import Optional

import httpx
import structlog

from possync.integrations.base import CatalogProvider, WebhookVerifier
from possync.integrations.square.adapter import SquareIntegrationAdapter
from possync.integrations.square.webhook import SquareWebhookVerifier
from possync.integrations.toast.adapter import ToastIntegrationAdapter
from possync.integrations.toast.webhook import ToastWebhookVerifier
from possync.models.database import IntegrationProvider
from possync.services.credential_store import CredentialStore

logger = structlog.get_logger()


class IntegrationRegistry:
    """Registry that manages and provides access to all integrations."""

    def __init__(self):
        self._adapters: dict[IntegrationProvider, CatalogProvider] = {}
        self._verifiers: dict[IntegrationProvider, WebhookVerifier] = {}

    def register(self, adapter: CatalogProvider, verifier: Optional[WebhookVerifier] = None):
        """
        Register an integration adapter and its webhook verifier.

        Args:
            adapter: Catalog adapter instance
            verifier: Webhook verifier for the same provider
        """
        name = adapter.get_name()
        if name in self._adapters:
            logger.warning("Integration already registered, replacing", integration_name=name.value)
        self._adapters[name] = adapter
        if verifier is not None:
            self._verifiers[name] = verifier
        logger.debug("Registered integration", integration_name=name.value)

    def get_adapter(self, provider: IntegrationProvider | str) -> CatalogProvider | None:
        """Adapter for the provider, or None if not registered."""
        try:
            return self._adapters.get(IntegrationProvider(provider))
        except ValueError:
            return None

    def get_verifier(self, provider: IntegrationProvider | str) -> WebhookVerifier | None:
        try:
            return self._verifiers.get(IntegrationProvider(provider))
        except ValueError:
            return None

    def list_available(self) -> list[str]:
        return [provider.value for provider in self._adapters]

    def is_available(self, provider: IntegrationProvider | str) -> bool:
        return self.get_adapter(provider) is not None


def build_registry(
    credential_store: CredentialStore,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IntegrationRegistry:
    """Registry with the Square and Toast integrations."""
    registry = IntegrationRegistry()
    registry.register(SquareIntegrationAdapter(credential_store, transport), SquareWebhookVerifier())
    registry.register(ToastIntegrationAdapter(credential_store, transport), ToastWebhookVerifier())
    return registry
