"""
Base integration interfaces.
Every POS provider implements CatalogProvider and ships a WebhookVerifier.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr

from possync.models.catalog import CanonicalCatalog
from possync.models.database import IntegrationProvider


class Credentials(BaseModel):
    """Decrypted POS credentials. Only ever held in memory inside adapters."""

    provider: IntegrationProvider
    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    token_expires_at: Optional[datetime] = None

    # Square
    merchant_id: Optional[str] = None
    location_id: Optional[str] = None
    location_name: Optional[str] = None

    # Toast
    restaurant_guid: Optional[str] = None
    restaurant_name: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None


class AccessToken(BaseModel):
    """A live provider token returned by CatalogProvider.authenticate()."""

    token: SecretStr
    expires_at: Optional[datetime] = None
    refreshed: bool = False


class ValidatedConnection(BaseModel):
    """Result of a successful validate_credentials() call."""

    credentials: Credentials
    provider_account_name: str


class PartialFetchFailure(BaseModel):
    """A catalog page (or menu) that could not be fetched or normalized."""

    page: int
    message: str

    def __str__(self) -> str:
        return f"page {self.page}: {self.message}"


class FetchResult(BaseModel):
    """Canonical catalog plus the page-level errors collected while fetching it."""

    catalog: CanonicalCatalog = Field(default_factory=CanonicalCatalog)
    page_errors: list[PartialFetchFailure] = Field(default_factory=list)
    # False when pagination stopped early; soft-removal is unsafe on an incomplete pull
    complete: bool = True


class SyncTrigger(BaseModel):
    """Normalized webhook event."""

    provider: IntegrationProvider
    account_id: Optional[str] = None
    event_type: str
    event_id: Optional[str] = None
    requires_sync: bool = False


class CatalogProvider(ABC):
    """Capability every POS adapter implements."""

    @abstractmethod
    def get_name(self) -> IntegrationProvider:
        """Return the provider this adapter serves."""
        pass

    @abstractmethod
    async def validate_credentials(self, raw_credentials: dict[str, Any]) -> ValidatedConnection:
        """
        Validate connect-time credentials against the provider API.
        Called once before anything is persisted.

        Raises:
            InvalidCredentialsError: If the provider rejects the credentials
        """
        pass

    @abstractmethod
    async def authenticate(self, tenant_id: str) -> AccessToken:
        """
        Return a live access token, refreshing and persisting it if needed.

        Raises:
            NotConnectedError: If the tenant has no stored credentials
            AuthExpiredError: If refreshing the token failed
        """
        pass

    @abstractmethod
    async def fetch_catalog(self, tenant_id: str, access_token: AccessToken) -> FetchResult:
        """
        Fetch the full remote catalog and normalize it to the canonical shape.
        Page-level failures are collected in the result instead of aborting.

        Raises:
            CatalogFetchError: If nothing could be fetched
        """
        pass


class WebhookVerifier(ABC):
    """Provider-specific webhook signature check and payload parsing."""

    signature_header: str = ""

    @abstractmethod
    def verify(self, raw_body: bytes, header_signature: str | None, signing_secret: str | None, **kwargs) -> bool:
        """
        Verify the HMAC signature of a webhook body.
        Never raises; any malformed input returns False.
        """
        pass

    @abstractmethod
    def parse_event(self, raw_body: bytes) -> SyncTrigger:
        """
        Parse a verified webhook body into a SyncTrigger.

        Raises:
            WebhookPayloadError: If the body is not a usable event payload
        """
        pass
