"""
Pydantic models for persisted tables.
These models represent tenant integration state, sync runs and the local menu entities.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class IntegrationProvider(str, Enum):
    """POS provider a tenant can connect. At most one is active per tenant."""

    NONE = "none"
    SQUARE = "square"
    TOAST = "toast"


class SyncStatus(str, Enum):
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


class TriggerSource(str, Enum):
    """What started a sync run."""

    MANUAL = "MANUAL"
    WEBHOOK = "WEBHOOK"
    SCHEDULE = "SCHEDULE"

    @classmethod
    def parse(cls, value: "str | TriggerSource | None") -> Optional["TriggerSource"]:
        """Return the trigger for a raw value, or None for unknown trigger types."""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class TenantIntegration(BaseModel):
    """Model for tenant_integrations table (one row per tenant)."""

    tenant_id: str
    square_enabled: bool = False
    toast_enabled: bool = False

    # Provider identifiers
    square_merchant_id: Optional[str] = None
    square_location_id: Optional[str] = None
    square_location_name: Optional[str] = None
    toast_restaurant_guid: Optional[str] = None
    toast_restaurant_name: Optional[str] = None
    toast_client_id: Optional[str] = None

    # Fernet-encrypted secrets
    encrypted_access_token: Optional[str] = None
    encrypted_refresh_token: Optional[str] = None
    encrypted_client_secret: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    # Sync bookkeeping
    sync_status: Optional[SyncStatus] = None
    last_sync_error: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def active_provider(self) -> IntegrationProvider:
        if self.square_enabled and not self.toast_enabled:
            return IntegrationProvider.SQUARE
        if self.toast_enabled and not self.square_enabled:
            return IntegrationProvider.TOAST
        return IntegrationProvider.NONE

    def is_enabled(self, provider: IntegrationProvider) -> bool:
        if provider == IntegrationProvider.SQUARE:
            return self.square_enabled
        if provider == IntegrationProvider.TOAST:
            return self.toast_enabled
        return False

    def account_ids(self, provider: IntegrationProvider) -> dict[str, Optional[str]]:
        """Provider account identifiers exposed by the status endpoint."""
        if provider == IntegrationProvider.SQUARE:
            return {
                "merchant_id": self.square_merchant_id,
                "location_id": self.square_location_id,
            }
        if provider == IntegrationProvider.TOAST:
            return {"restaurant_guid": self.toast_restaurant_guid}
        return {}


class EntityCounts(BaseModel):
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    soft_removed: int = 0

    @property
    def synced(self) -> int:
        """Remote records processed in a run (created, updated or already current)."""
        return self.created + self.updated + self.unchanged


class PlanSummary(BaseModel):
    """Per-entity-kind counts for one reconciliation."""

    categories: EntityCounts = Field(default_factory=EntityCounts)
    items: EntityCounts = Field(default_factory=EntityCounts)
    modifiers: EntityCounts = Field(default_factory=EntityCounts)
    modifier_options: EntityCounts = Field(default_factory=EntityCounts)


class SyncRun(BaseModel):
    """Model for sync_runs table. Finalized once and never mutated afterwards."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    provider: IntegrationProvider
    trigger: TriggerSource
    started_at: datetime
    finished_at: Optional[datetime] = None
    summary: PlanSummary = Field(default_factory=PlanSummary)
    errors: list[str] = Field(default_factory=list)
    success: bool = False


class LocalModifierOption(BaseModel):
    """Model for modifier_options table."""

    id: str
    modifier_id: str
    name: str
    price: int = 0  # minor currency units
    available: bool = True
    provider_option_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class LocalModifier(BaseModel):
    """Model for menu_modifiers table."""

    id: str
    item_id: str
    name: str
    required: bool = False
    available: bool = True
    provider_modifier_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    options: list[LocalModifierOption] = Field(default_factory=list)


class LocalMenuItem(BaseModel):
    """Model for menu_items table."""

    id: str
    category_id: str
    name: str
    description: Optional[str] = None
    price: int = 0  # minor currency units
    image_url: Optional[str] = None
    available: bool = True
    # Set when staff explicitly marked the item unavailable; sync never clears it
    unavailable_override: bool = False
    provider_item_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    modifiers: list[LocalModifier] = Field(default_factory=list)


class LocalCategory(BaseModel):
    """Model for menu_categories table."""

    id: str
    tenant_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    sort_order: int = 0
    available: bool = True
    provider_category_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    items: list[LocalMenuItem] = Field(default_factory=list)
