"""
Pydantic models for Toast API and webhook payloads.
Toast uses camelCase JSON; fields are declared snake_case with camelCase aliases.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Decimal prices arrive as JSON numbers; kept raw and converted with Decimal(str(...))
RawPrice = Optional[Union[int, float, str]]
ReferenceId = Union[int, str]


class ToastModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToastModifierOption(ToastModel):
    guid: str
    name: Optional[str] = None
    price: RawPrice = None
    ordinal: Optional[int] = None
    reference_id: Optional[ReferenceId] = None


class ToastModifierGroup(ToastModel):
    guid: str
    name: Optional[str] = None
    min_selections: Optional[int] = None
    max_selections: Optional[int] = None
    required_mode: Optional[str] = None  # REQUIRED | OPTIONAL_FORCE_SHOW | OPTIONAL
    reference_id: Optional[ReferenceId] = None
    modifiers: Optional[list[ToastModifierOption]] = None
    modifier_option_references: Optional[list[ReferenceId]] = None

    @property
    def required(self) -> bool:
        return self.required_mode == "REQUIRED" or (self.min_selections or 0) > 0


class ToastMenuItem(ToastModel):
    guid: str
    name: Optional[str] = None
    description: Optional[str] = None
    price: RawPrice = None
    image_link: Optional[str] = None
    ordinal: Optional[int] = None
    modifier_groups: Optional[list[ToastModifierGroup]] = None
    modifier_group_references: Optional[list[ReferenceId]] = None


class ToastMenuGroup(ToastModel):
    guid: str
    name: Optional[str] = None
    description: Optional[str] = None
    ordinal: Optional[int] = None
    menu_items: Optional[list[ToastMenuItem]] = None
    menu_groups: Optional[list["ToastMenuGroup"]] = None


class ToastMenu(ToastModel):
    guid: str
    name: Optional[str] = None
    menu_groups: Optional[list[ToastMenuGroup]] = None


class ToastMenusResponse(ToastModel):
    """GET /menus/v2/menus. Menus stay raw so each can be parsed independently."""

    restaurant_guid: Optional[str] = None
    menus: list[dict[str, Any]] = []
    modifier_group_references: dict[str, dict[str, Any]] = {}
    modifier_option_references: dict[str, dict[str, Any]] = {}


class ToastToken(ToastModel):
    access_token: str
    expires_in: Optional[int] = None
    token_type: Optional[str] = None


class ToastLoginResponse(ToastModel):
    """POST /authentication/v1/authentication/login"""

    token: Optional[ToastToken] = None
    access_token: Optional[str] = None  # Older response shape
    status: Optional[str] = None

    @property
    def bearer(self) -> Optional[str]:
        if self.token:
            return self.token.access_token
        return self.access_token

    @property
    def expires_in(self) -> int:
        # Toast machine tokens last 24 hours
        if self.token and self.token.expires_in:
            return self.token.expires_in
        return 86400


class ToastRestaurantGeneral(ToastModel):
    name: Optional[str] = None


class ToastRestaurant(ToastModel):
    guid: Optional[str] = None
    restaurant_name: Optional[str] = None
    general: Optional[ToastRestaurantGeneral] = None

    @property
    def display_name(self) -> str:
        if self.general and self.general.name:
            return self.general.name
        return self.restaurant_name or "Unknown Restaurant"


class ToastRestaurantRef(ToastModel):
    guid: Optional[str] = None


class ToastWebhookEvent(ToastModel):
    event_type: Optional[str] = None
    type: Optional[str] = None
    guid: Optional[str] = None
    event_guid: Optional[str] = None
    restaurant_guid: Optional[str] = None
    restaurant: Optional[ToastRestaurantRef] = None
    timestamp: Optional[str] = None

    @property
    def kind(self) -> Optional[str]:
        return self.event_type or self.type

    @property
    def account_id(self) -> Optional[str]:
        if self.restaurant_guid:
            return self.restaurant_guid
        return self.restaurant.guid if self.restaurant else None
