"""
Credential store.
Persists per-tenant POS credentials encrypted with Fernet and exposes the decrypted view adapters use.
No network calls happen here.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import SecretStr

from possync.exceptions import ConflictingIntegrationError, NotConnectedError
from possync.integrations.base import Credentials
from possync.models.database import IntegrationProvider, SyncStatus, TenantIntegration
from possync.services.stores import IntegrationStore
from possync.services.token_encryption import TokenCipher

logger = structlog.get_logger()

_SQUARE_FIELDS = ("square_merchant_id", "square_location_id", "square_location_name")
_TOAST_FIELDS = ("toast_restaurant_guid", "toast_restaurant_name", "toast_client_id")
_SECRET_FIELDS = (
    "encrypted_access_token",
    "encrypted_refresh_token",
    "encrypted_client_secret",
    "token_expires_at",
)


def _reveal(secret: Optional[SecretStr]) -> Optional[str]:
    return secret.get_secret_value() if secret is not None else None


class CredentialStore:
    """Encrypted credential persistence on top of an IntegrationStore."""

    def __init__(self, integration_store: IntegrationStore, cipher: TokenCipher):
        self.integration_store = integration_store
        self.cipher = cipher

    async def get(
        self, tenant_id: str, provider: Optional[IntegrationProvider] = None
    ) -> Credentials:
        """
        Decrypted credentials of the tenant's active provider.

        Args:
            tenant_id: Tenant identifier
            provider: Require this provider to be the enabled one

        Raises:
            NotConnectedError: If no provider (or not the requested one) is enabled
            ConflictingIntegrationError: If the row has both providers enabled
        """
        integration = await self.integration_store.get_integration(tenant_id)
        if integration is None:
            raise NotConnectedError("No POS integration connected", provider=provider.value if provider else None)
        if integration.square_enabled and integration.toast_enabled:
            raise ConflictingIntegrationError("Both Square and Toast are enabled for this tenant")

        active = integration.active_provider
        if active == IntegrationProvider.NONE or (provider is not None and provider != active):
            raise NotConnectedError(
                f"{(provider or active).value} is not connected",
                provider=provider.value if provider else None,
            )
        if not integration.encrypted_access_token:
            raise NotConnectedError(f"No stored access token for {active.value}", provider=active.value)

        access_token = self.cipher.decrypt(integration.encrypted_access_token)
        refresh_token = self.cipher.decrypt(integration.encrypted_refresh_token)
        client_secret = self.cipher.decrypt(integration.encrypted_client_secret)

        return Credentials(
            provider=active,
            access_token=SecretStr(access_token),
            refresh_token=SecretStr(refresh_token) if refresh_token else None,
            token_expires_at=integration.token_expires_at,
            merchant_id=integration.square_merchant_id,
            location_id=integration.square_location_id,
            location_name=integration.square_location_name,
            restaurant_guid=integration.toast_restaurant_guid,
            restaurant_name=integration.toast_restaurant_name,
            client_id=integration.toast_client_id,
            client_secret=SecretStr(client_secret) if client_secret else None,
        )

    async def save(self, tenant_id: str, credentials: Credentials) -> TenantIntegration:
        """Encrypt and persist credentials, enabling the provider with sync_status=IDLE."""
        fields = {
            "encrypted_access_token": self.cipher.encrypt(_reveal(credentials.access_token)),
            "encrypted_refresh_token": self.cipher.encrypt(_reveal(credentials.refresh_token)),
            "encrypted_client_secret": self.cipher.encrypt(_reveal(credentials.client_secret)),
            "token_expires_at": credentials.token_expires_at,
            "sync_status": SyncStatus.IDLE,
            "last_sync_error": None,
        }
        if credentials.provider == IntegrationProvider.SQUARE:
            fields.update(
                square_enabled=True,
                square_merchant_id=credentials.merchant_id,
                square_location_id=credentials.location_id,
                square_location_name=credentials.location_name,
            )
        elif credentials.provider == IntegrationProvider.TOAST:
            fields.update(
                toast_enabled=True,
                toast_restaurant_guid=credentials.restaurant_guid,
                toast_restaurant_name=credentials.restaurant_name,
                toast_client_id=credentials.client_id,
            )
        else:
            raise ValueError("Credentials must name a provider")

        existing = await self.integration_store.get_integration(tenant_id)
        if existing is None:
            integration = TenantIntegration(tenant_id=tenant_id, **fields)
        else:
            integration = existing.model_copy(update=fields)
        saved = await self.integration_store.save_integration(integration)

        logger.info(
            "Stored POS credentials",
            tenant_id=tenant_id,
            provider=credentials.provider.value,
            token_expires_at=credentials.token_expires_at.isoformat() if credentials.token_expires_at else None,
        )
        return saved

    async def clear(self, tenant_id: str, provider: IntegrationProvider) -> TenantIntegration | None:
        """Remove one provider's credentials, linkage and sync metadata. Menu data is untouched."""
        fields: dict = {name: None for name in _SECRET_FIELDS}
        fields.update(sync_status=None, last_sync_error=None, last_sync_at=None)
        if provider == IntegrationProvider.SQUARE:
            fields["square_enabled"] = False
            fields.update({name: None for name in _SQUARE_FIELDS})
        elif provider == IntegrationProvider.TOAST:
            fields["toast_enabled"] = False
            fields.update({name: None for name in _TOAST_FIELDS})
        else:
            raise ValueError("Cannot clear credentials for provider 'none'")

        updated = await self.integration_store.update_integration(tenant_id, **fields)
        logger.info("Cleared POS credentials", tenant_id=tenant_id, provider=provider.value)
        return updated

    async def update_tokens(
        self,
        tenant_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Persist refreshed tokens. A None refresh token keeps the stored one."""
        fields = {
            "encrypted_access_token": self.cipher.encrypt(access_token),
            "token_expires_at": expires_at,
        }
        if refresh_token:
            fields["encrypted_refresh_token"] = self.cipher.encrypt(refresh_token)

        updated = await self.integration_store.update_integration(tenant_id, **fields)
        if updated is None:
            raise NotConnectedError("Cannot store tokens for a tenant without an integration row")
        logger.info(
            "Updated stored tokens",
            tenant_id=tenant_id,
            token_expires_at=expires_at.isoformat() if expires_at else None,
        )
