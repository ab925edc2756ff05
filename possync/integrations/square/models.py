"""
Pydantic models for Square API and webhook payloads.
Covers catalog list pages (CATEGORY, ITEM, MODIFIER_LIST, IMAGE), OAuth token responses,
locations and catalog.version.updated webhook events.
"""

from typing import Any

from pydantic import BaseModel


class SquareMoney(BaseModel):
    """Square Money object - amount is in CENTS (smallest currency unit)."""

    amount: int = 0  # Amount in cents (e.g., 450 = $4.50)
    currency: str = "USD"


class SquareCategoryRef(BaseModel):
    id: str
    ordinal: int | None = None


class SquareCategoryData(BaseModel):
    name: str | None = None


class SquareItemVariationData(BaseModel):
    name: str | None = None
    price_money: SquareMoney | None = None


class SquareItemVariation(BaseModel):
    """Square catalog object variation. Only the first one prices the item."""

    id: str | None = None
    type: str | None = None
    is_deleted: bool | None = None
    item_variation_data: SquareItemVariationData | None = None

    @property
    def price_amount(self) -> int:
        if not self.item_variation_data or not self.item_variation_data.price_money:
            return 0
        return self.item_variation_data.price_money.amount


class SquareModifierListInfo(BaseModel):
    """Link from an item to a MODIFIER_LIST object."""

    modifier_list_id: str
    min_selected_modifiers: int | None = None
    max_selected_modifiers: int | None = None
    enabled: bool | None = None


class SquareItemData(BaseModel):
    """Square item data within a catalog object."""

    name: str | None = None
    description: str | None = None
    category_id: str | None = None  # Older API versions
    categories: list[SquareCategoryRef] | None = None
    variations: list[SquareItemVariation] | None = None
    modifier_list_info: list[SquareModifierListInfo] | None = None
    image_ids: list[str] | None = None
    is_archived: bool | None = None

    @property
    def primary_category_id(self) -> str | None:
        if self.categories:
            return self.categories[0].id
        return self.category_id


class SquareModifierData(BaseModel):
    name: str | None = None
    price_money: SquareMoney | None = None
    ordinal: int | None = None


class SquareModifier(BaseModel):
    id: str
    type: str | None = None
    is_deleted: bool | None = None
    modifier_data: SquareModifierData | None = None


class SquareModifierListData(BaseModel):
    name: str | None = None
    selection_type: str | None = None  # SINGLE | MULTIPLE
    modifiers: list[SquareModifier] | None = None


class SquareImageData(BaseModel):
    name: str | None = None
    url: str | None = None


class SquareCatalogObject(BaseModel):
    """Square catalog object of any of the requested types."""

    id: str
    type: str  # "CATEGORY", "ITEM", "MODIFIER_LIST", "IMAGE"
    version: int | None = None
    is_deleted: bool | None = None
    present_at_all_locations: bool | None = None
    present_at_location_ids: list[str] | None = None
    absent_at_location_ids: list[str] | None = None
    category_data: SquareCategoryData | None = None
    item_data: SquareItemData | None = None
    modifier_list_data: SquareModifierListData | None = None
    image_data: SquareImageData | None = None

    def is_present_at(self, location_id: str | None) -> bool:
        """Location visibility rules of the Square catalog."""
        if not location_id:
            return True
        if self.present_at_all_locations is False:
            return location_id in (self.present_at_location_ids or [])
        return location_id not in (self.absent_at_location_ids or [])


class SquareCatalogPage(BaseModel):
    """One page of GET /v2/catalog/list."""

    objects: list[dict[str, Any]] = []
    cursor: str | None = None


class SquareTokenResponse(BaseModel):
    """Response of POST /oauth2/token (authorization_code and refresh_token grants)."""

    access_token: str
    refresh_token: str | None = None
    expires_at: str | None = None
    merchant_id: str | None = None
    token_type: str | None = None


class SquareLocation(BaseModel):
    id: str
    name: str | None = None
    business_name: str | None = None
    status: str | None = None


class SquareWebhookEvent(BaseModel):
    """Webhook envelope, e.g. catalog.version.updated."""

    merchant_id: str | None = None
    type: str | None = None
    event_id: str | None = None
    created_at: str | None = None
    data: dict[str, Any] | None = None
