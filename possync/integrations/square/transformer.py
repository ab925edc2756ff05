"""
Square data transformation service.
Transforms raw Square catalog objects (CATEGORY, ITEM, MODIFIER_LIST, IMAGE) into the canonical catalog.
"""

from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from possync.models.catalog import (
    CanonicalCatalog,
    CanonicalCategory,
    CanonicalItem,
    CanonicalModifier,
    CanonicalModifierOption,
)
from possync.integrations.square.models import (
    SquareCatalogObject,
    SquareModifierListInfo,
)

logger = structlog.get_logger()

# Items without a category land here
UNCATEGORIZED_ID = "__uncategorized__"
UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_SORT_ORDER = 999


class SquareTransformer:
    """Builds a CanonicalCatalog from Square catalog objects."""

    @staticmethod
    def parse_objects(raw_objects: List[Dict[str, Any]]) -> List[SquareCatalogObject]:
        """Parse raw objects, skipping ones that do not match the expected shape."""
        parsed = []
        for raw in raw_objects:
            try:
                parsed.append(SquareCatalogObject(**raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed Square catalog object",
                    object_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(e),
                )
        return parsed

    def build_catalog(
        self, objects: List[SquareCatalogObject], location_id: Optional[str] = None
    ) -> CanonicalCatalog:
        """
        Args:
            objects: Parsed catalog objects from every fetched page
            location_id: Tenant's Square location; items not present there are unavailable

        Returns:
            Canonical catalog with categories in catalog order
        """
        live = [obj for obj in objects if not obj.is_deleted]
        images = {
            obj.id: obj.image_data.url
            for obj in live
            if obj.type == "IMAGE" and obj.image_data and obj.image_data.url
        }
        modifier_lists = {
            obj.id: obj for obj in live if obj.type == "MODIFIER_LIST" and obj.modifier_list_data
        }

        categories: Dict[str, CanonicalCategory] = {}
        for obj in live:
            if obj.type != "CATEGORY":
                continue
            categories[obj.id] = CanonicalCategory(
                provider_category_id=obj.id,
                name=(obj.category_data.name if obj.category_data else None) or "Unnamed Category",
                sort_order=len(categories),
            )

        uncategorized = CanonicalCategory(
            provider_category_id=UNCATEGORIZED_ID,
            name=UNCATEGORIZED_NAME,
            sort_order=UNCATEGORIZED_SORT_ORDER,
        )

        for obj in live:
            if obj.type != "ITEM":
                continue
            item = self.transform_item(obj, images, modifier_lists, location_id)
            if item is None:
                continue
            category_id = obj.item_data.primary_category_id
            categories.get(category_id, uncategorized).items.append(item)

        result = list(categories.values())
        if uncategorized.items:
            result.append(uncategorized)
        return CanonicalCatalog(categories=result)

    def transform_item(
        self,
        obj: SquareCatalogObject,
        images: Dict[str, str],
        modifier_lists: Dict[str, SquareCatalogObject],
        location_id: Optional[str],
    ) -> Optional[CanonicalItem]:
        item_data = obj.item_data
        if not item_data:
            logger.warning("Square item has no item_data, skipping", item_id=obj.id)
            return None

        variations = [v for v in item_data.variations or [] if not v.is_deleted]
        if not variations:
            logger.warning("Square item has no variations, skipping", item_id=obj.id)
            return None

        image_url = None
        if item_data.image_ids:
            image_url = images.get(item_data.image_ids[0])

        modifiers = []
        for info in item_data.modifier_list_info or []:
            modifier = self.transform_modifier_list(info, modifier_lists)
            if modifier is not None:
                modifiers.append(modifier)

        return CanonicalItem(
            provider_item_id=obj.id,
            name=item_data.name or "Unnamed Item",
            description=item_data.description or None,
            price=variations[0].price_amount,
            image_url=image_url,
            available=not item_data.is_archived and obj.is_present_at(location_id),
            modifiers=modifiers,
        )

    @staticmethod
    def transform_modifier_list(
        info: SquareModifierListInfo, modifier_lists: Dict[str, SquareCatalogObject]
    ) -> Optional[CanonicalModifier]:
        if info.enabled is False:
            return None
        modifier_list = modifier_lists.get(info.modifier_list_id)
        if modifier_list is None:
            logger.debug("Modifier list not in catalog", modifier_list_id=info.modifier_list_id)
            return None

        data = modifier_list.modifier_list_data
        options = []
        for modifier in data.modifiers or []:
            if modifier.is_deleted:
                continue
            modifier_data = modifier.modifier_data
            options.append(
                CanonicalModifierOption(
                    provider_option_id=modifier.id,
                    name=(modifier_data.name if modifier_data else None) or "Unnamed Option",
                    price=(
                        modifier_data.price_money.amount
                        if modifier_data and modifier_data.price_money
                        else 0
                    ),
                )
            )

        return CanonicalModifier(
            provider_modifier_id=modifier_list.id,
            name=data.name or "Modifiers",
            required=(info.min_selected_modifiers or 0) > 0,
            options=options,
        )
