"""
Typed merge plan operations.
A MergePlan is the side-effect-free output of reconcile(); stores apply it in one transaction.
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from possync.models.database import PlanSummary


class _Operation(BaseModel):
    model_config = ConfigDict(frozen=True)


class CreateCategory(_Operation):
    op: Literal["create_category"] = "create_category"
    category_id: str
    provider_category_id: str
    name: str
    description: Optional[str] = None
    sort_order: int = 0


class UpdateCategory(_Operation):
    op: Literal["update_category"] = "update_category"
    category_id: str
    changes: dict[str, Any]


class SoftRemoveCategory(_Operation):
    op: Literal["soft_remove_category"] = "soft_remove_category"
    category_id: str


class CreateItem(_Operation):
    op: Literal["create_item"] = "create_item"
    item_id: str
    category_id: str
    provider_item_id: str
    name: str
    description: Optional[str] = None
    price: int = 0
    image_url: Optional[str] = None
    available: bool = True


class UpdateItem(_Operation):
    op: Literal["update_item"] = "update_item"
    item_id: str
    changes: dict[str, Any]


class SoftRemoveItem(_Operation):
    op: Literal["soft_remove_item"] = "soft_remove_item"
    item_id: str


class CreateModifier(_Operation):
    op: Literal["create_modifier"] = "create_modifier"
    modifier_id: str
    item_id: str
    provider_modifier_id: str
    name: str
    required: bool = False


class UpdateModifier(_Operation):
    op: Literal["update_modifier"] = "update_modifier"
    modifier_id: str
    changes: dict[str, Any]


class SoftRemoveModifier(_Operation):
    op: Literal["soft_remove_modifier"] = "soft_remove_modifier"
    modifier_id: str


class CreateModifierOption(_Operation):
    op: Literal["create_modifier_option"] = "create_modifier_option"
    option_id: str
    modifier_id: str
    provider_option_id: str
    name: str
    price: int = 0
    available: bool = True


class UpdateModifierOption(_Operation):
    op: Literal["update_modifier_option"] = "update_modifier_option"
    option_id: str
    changes: dict[str, Any]


class SoftRemoveModifierOption(_Operation):
    op: Literal["soft_remove_modifier_option"] = "soft_remove_modifier_option"
    option_id: str


PlanOperation = Annotated[
    Union[
        CreateCategory,
        UpdateCategory,
        SoftRemoveCategory,
        CreateItem,
        UpdateItem,
        SoftRemoveItem,
        CreateModifier,
        UpdateModifier,
        SoftRemoveModifier,
        CreateModifierOption,
        UpdateModifierOption,
        SoftRemoveModifierOption,
    ],
    Field(discriminator="op"),
]


class MergePlan(BaseModel):
    """Ordered operations; parents are always created before their children."""

    operations: list[PlanOperation] = Field(default_factory=list)
    summary: PlanSummary = Field(default_factory=PlanSummary)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def to_payload(self) -> list[dict[str, Any]]:
        """JSON-ready operations, used by the Supabase apply RPC."""
        return [operation.model_dump(mode="json") for operation in self.operations]
