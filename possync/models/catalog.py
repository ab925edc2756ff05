"""
Canonical catalog shape produced by provider adapters.
Provider-agnostic; it is the only input the reconciliation engine understands.
"""
from typing import Optional

from pydantic import BaseModel, Field


class CanonicalModifierOption(BaseModel):
    provider_option_id: str
    name: str
    price: int = 0  # minor currency units
    available: bool = True


class CanonicalModifier(BaseModel):
    provider_modifier_id: str
    name: str
    required: bool = False
    options: list[CanonicalModifierOption] = Field(default_factory=list)


class CanonicalItem(BaseModel):
    provider_item_id: str
    name: str
    description: Optional[str] = None
    price: int = 0  # minor currency units
    image_url: Optional[str] = None
    available: bool = True
    modifiers: list[CanonicalModifier] = Field(default_factory=list)


class CanonicalCategory(BaseModel):
    provider_category_id: str
    name: str
    description: Optional[str] = None
    sort_order: int = 0
    items: list[CanonicalItem] = Field(default_factory=list)


class CanonicalCatalog(BaseModel):
    """Ordered categories, each with ordered items."""

    categories: list[CanonicalCategory] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return sum(len(category.items) for category in self.categories)
