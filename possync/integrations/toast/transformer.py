"""
Toast data transformation service.
Transforms Toast menus (v2) into canonical categories: every menu group, nested ones included,
becomes a category. Modifier groups are either inline or resolved through the response's
reference maps.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog

from possync.models.catalog import (
    CanonicalCategory,
    CanonicalItem,
    CanonicalModifier,
    CanonicalModifierOption,
)
from possync.integrations.toast.models import (
    RawPrice,
    ReferenceId,
    ToastMenu,
    ToastMenuGroup,
    ToastMenuItem,
    ToastModifierGroup,
    ToastModifierOption,
)

logger = structlog.get_logger()


class ToastTransformError(Exception):
    """Raised when a Toast menu cannot be transformed."""

    pass


def price_to_cents(price: RawPrice) -> int:
    """Convert a Toast decimal price (4.5) to integer cents (450)."""
    if price is None or price == "":
        return 0
    try:
        amount = Decimal(str(price))
    except InvalidOperation as e:
        raise ToastTransformError(f"Invalid price {price!r}") from e
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ToastTransformer:
    """Builds canonical categories from Toast menus."""

    def __init__(
        self,
        modifier_group_references: Optional[Dict[str, Dict[str, Any]]] = None,
        modifier_option_references: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.modifier_group_references = modifier_group_references or {}
        self.modifier_option_references = modifier_option_references or {}

    def transform_menu(self, raw_menu: Dict[str, Any]) -> List[CanonicalCategory]:
        """
        Args:
            raw_menu: One entry of the menus array

        Raises:
            ToastTransformError: If the menu does not have the expected shape
        """
        try:
            menu = ToastMenu(**raw_menu)
        except (TypeError, ValueError) as e:
            raise ToastTransformError(f"Invalid menu: {e}") from e

        categories: List[CanonicalCategory] = []
        for group in menu.menu_groups or []:
            self._collect_groups(group, categories)
        return categories

    def _collect_groups(self, group: ToastMenuGroup, categories: List[CanonicalCategory]) -> None:
        categories.append(
            CanonicalCategory(
                provider_category_id=group.guid,
                name=group.name or "Unnamed Category",
                description=group.description or None,
                sort_order=group.ordinal if group.ordinal is not None else len(categories),
                items=[self.transform_item(item) for item in group.menu_items or []],
            )
        )
        for child in group.menu_groups or []:
            self._collect_groups(child, categories)

    def transform_item(self, item: ToastMenuItem) -> CanonicalItem:
        groups = list(item.modifier_groups or [])
        for reference in item.modifier_group_references or []:
            resolved = self._resolve(self.modifier_group_references, reference)
            if resolved is not None:
                groups.append(ToastModifierGroup(**resolved))

        return CanonicalItem(
            provider_item_id=item.guid,
            name=item.name or "Unnamed Item",
            description=item.description or None,
            price=price_to_cents(item.price),
            image_url=item.image_link or None,
            modifiers=[self.transform_modifier_group(group) for group in groups],
        )

    def transform_modifier_group(self, group: ToastModifierGroup) -> CanonicalModifier:
        options = list(group.modifiers or [])
        for reference in group.modifier_option_references or []:
            resolved = self._resolve(self.modifier_option_references, reference)
            if resolved is not None:
                options.append(ToastModifierOption(**resolved))

        return CanonicalModifier(
            provider_modifier_id=group.guid,
            name=group.name or "Unnamed Modifier",
            required=group.required,
            options=[
                CanonicalModifierOption(
                    provider_option_id=option.guid,
                    name=option.name or "Unnamed Option",
                    price=price_to_cents(option.price),
                )
                for option in options
            ],
        )

    @staticmethod
    def _resolve(references: Dict[str, Dict[str, Any]], reference: ReferenceId) -> Optional[Dict[str, Any]]:
        resolved = references.get(str(reference))
        if resolved is None:
            logger.debug("Unresolved Toast reference", reference_id=reference)
        return resolved
