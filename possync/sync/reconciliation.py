"""
Reconciliation engine.
Diffs a canonical remote catalog against the local menu snapshot and produces a MergePlan.

Rules:
- Records are matched by provider id; local-only records (provider id is None) are never touched.
- Category sort order belongs to staff and is never overwritten from remote.
- An item staff marked unavailable (unavailable_override) stays unavailable whatever the POS says.
- Provider-linked records missing from the pull are soft-removed (available=False), never deleted.
- Modifiers and options follow the same rules, scoped under their parent.
"""
from collections.abc import Callable, Sequence
from typing import Any
from uuid import uuid4

import structlog

from possync.models.catalog import (
    CanonicalCatalog,
    CanonicalCategory,
    CanonicalItem,
    CanonicalModifier,
    CanonicalModifierOption,
)
from possync.models.database import (
    EntityCounts,
    LocalCategory,
    LocalMenuItem,
    LocalModifier,
    LocalModifierOption,
    PlanSummary,
)
from possync.sync.plan import (
    CreateCategory,
    CreateItem,
    CreateModifier,
    CreateModifierOption,
    MergePlan,
    SoftRemoveCategory,
    SoftRemoveItem,
    SoftRemoveModifier,
    SoftRemoveModifierOption,
    UpdateCategory,
    UpdateItem,
    UpdateModifier,
    UpdateModifierOption,
)

logger = structlog.get_logger()


def _new_id() -> str:
    return str(uuid4())


def reconcile(
    local_categories: Sequence[LocalCategory],
    remote: CanonicalCatalog,
    *,
    soft_remove_missing: bool = True,
    id_factory: Callable[[], str] | None = None,
) -> MergePlan:
    """
    Build the merge plan that brings the local menu in line with the remote catalog.

    Args:
        local_categories: Current local snapshot (categories with nested items/modifiers/options)
        remote: Canonical catalog fetched from the POS
        soft_remove_missing: Soft-remove provider-linked records absent from the pull.
            Pass False when the fetch was incomplete.
        id_factory: Generates internal ids for created records (uuid4 strings by default)

    Returns:
        MergePlan with ordered operations and per-kind counts
    """
    reconciler = _Reconciler(local_categories, id_factory or _new_id, soft_remove_missing)
    return reconciler.run(remote)


def _diff(current: Any, desired: dict[str, Any]) -> dict[str, Any]:
    return {field: value for field, value in desired.items() if getattr(current, field) != value}


class _Reconciler:
    def __init__(
        self,
        local_categories: Sequence[LocalCategory],
        id_factory: Callable[[], str],
        soft_remove_missing: bool,
    ):
        self.local_categories = list(local_categories)
        self.id_factory = id_factory
        self.soft_remove_missing = soft_remove_missing
        self.operations: list = []
        self.summary = PlanSummary()

        self.categories_by_provider_id: dict[str, LocalCategory] = {}
        self.items_by_provider_id: dict[str, tuple[LocalMenuItem, LocalCategory]] = {}
        for category in self.local_categories:
            if category.provider_category_id:
                self.categories_by_provider_id.setdefault(category.provider_category_id, category)
            for item in category.items:
                if item.provider_item_id:
                    self.items_by_provider_id.setdefault(item.provider_item_id, (item, category))

        # provider category id -> internal id of the category the remote items land in
        self.resolved_categories: dict[str, str] = {}
        self.seen_items: set[str] = set()

    def run(self, remote: CanonicalCatalog) -> MergePlan:
        for remote_category in remote.categories:
            category_id = self._reconcile_category(remote_category)
            for remote_item in remote_category.items:
                self._reconcile_item(remote_item, category_id)

        if self.soft_remove_missing:
            self._soft_remove_missing()

        return MergePlan(operations=self.operations, summary=self.summary)

    # Categories

    def _reconcile_category(self, remote: CanonicalCategory) -> str:
        provider_id = remote.provider_category_id
        if provider_id in self.resolved_categories:
            logger.debug("Duplicate remote category, merging items", provider_category_id=provider_id)
            return self.resolved_categories[provider_id]

        counts = self.summary.categories
        local = self.categories_by_provider_id.get(provider_id)
        if local is None:
            category_id = self.id_factory()
            self.operations.append(
                CreateCategory(
                    category_id=category_id,
                    provider_category_id=provider_id,
                    name=remote.name,
                    description=remote.description,
                    sort_order=remote.sort_order,
                )
            )
            counts.created += 1
        else:
            category_id = local.id
            desired = {"name": remote.name, "description": remote.description, "available": True}
            changes = _diff(local, desired)
            self._record_update(counts, changes, UpdateCategory(category_id=local.id, changes=changes))

        self.resolved_categories[provider_id] = category_id
        return category_id

    # Items

    def _reconcile_item(self, remote: CanonicalItem, category_id: str) -> None:
        provider_id = remote.provider_item_id
        if provider_id in self.seen_items:
            # First occurrence wins (e.g. a Toast item listed in two menu groups)
            logger.debug("Duplicate remote item skipped", provider_item_id=provider_id)
            return
        self.seen_items.add(provider_id)

        counts = self.summary.items
        match = self.items_by_provider_id.get(provider_id)
        if match is None:
            item_id = self.id_factory()
            self.operations.append(
                CreateItem(
                    item_id=item_id,
                    category_id=category_id,
                    provider_item_id=provider_id,
                    name=remote.name,
                    description=remote.description,
                    price=remote.price,
                    image_url=remote.image_url,
                    available=remote.available,
                )
            )
            counts.created += 1
            self._reconcile_modifiers(item_id, [], remote.modifiers)
            return

        local, local_category = match
        desired: dict[str, Any] = {
            "name": remote.name,
            "description": remote.description,
            "price": remote.price,
            "available": remote.available and not local.unavailable_override,
        }
        # A missing remote image never wipes an image uploaded locally
        if remote.image_url:
            desired["image_url"] = remote.image_url
        # Items staff placed in a local-only category stay where staff put them
        if local_category.provider_category_id is not None:
            desired["category_id"] = category_id

        changes = _diff(local, desired)
        self._record_update(counts, changes, UpdateItem(item_id=local.id, changes=changes))
        self._reconcile_modifiers(local.id, local.modifiers, remote.modifiers)

    # Modifiers and options

    def _reconcile_modifiers(
        self,
        item_id: str,
        local_modifiers: Sequence[LocalModifier],
        remote_modifiers: Sequence[CanonicalModifier],
    ) -> None:
        counts = self.summary.modifiers
        by_provider_id = {}
        for modifier in local_modifiers:
            if modifier.provider_modifier_id:
                by_provider_id.setdefault(modifier.provider_modifier_id, modifier)

        seen: set[str] = set()
        for remote in remote_modifiers:
            provider_id = remote.provider_modifier_id
            if provider_id in seen:
                continue
            seen.add(provider_id)

            local = by_provider_id.get(provider_id)
            if local is None:
                modifier_id = self.id_factory()
                self.operations.append(
                    CreateModifier(
                        modifier_id=modifier_id,
                        item_id=item_id,
                        provider_modifier_id=provider_id,
                        name=remote.name,
                        required=remote.required,
                    )
                )
                counts.created += 1
                self._reconcile_options(modifier_id, [], remote.options)
                continue

            desired = {"name": remote.name, "required": remote.required, "available": True}
            changes = _diff(local, desired)
            self._record_update(counts, changes, UpdateModifier(modifier_id=local.id, changes=changes))
            self._reconcile_options(local.id, local.options, remote.options)

        if self.soft_remove_missing:
            for local in local_modifiers:
                if local.provider_modifier_id and local.provider_modifier_id not in seen and local.available:
                    self.operations.append(SoftRemoveModifier(modifier_id=local.id))
                    counts.soft_removed += 1

    def _reconcile_options(
        self,
        modifier_id: str,
        local_options: Sequence[LocalModifierOption],
        remote_options: Sequence[CanonicalModifierOption],
    ) -> None:
        counts = self.summary.modifier_options
        by_provider_id = {}
        for option in local_options:
            if option.provider_option_id:
                by_provider_id.setdefault(option.provider_option_id, option)

        seen: set[str] = set()
        for remote in remote_options:
            provider_id = remote.provider_option_id
            if provider_id in seen:
                continue
            seen.add(provider_id)

            local = by_provider_id.get(provider_id)
            if local is None:
                self.operations.append(
                    CreateModifierOption(
                        option_id=self.id_factory(),
                        modifier_id=modifier_id,
                        provider_option_id=provider_id,
                        name=remote.name,
                        price=remote.price,
                        available=remote.available,
                    )
                )
                counts.created += 1
                continue

            desired = {"name": remote.name, "price": remote.price, "available": remote.available}
            changes = _diff(local, desired)
            self._record_update(counts, changes, UpdateModifierOption(option_id=local.id, changes=changes))

        if self.soft_remove_missing:
            for local in local_options:
                if local.provider_option_id and local.provider_option_id not in seen and local.available:
                    self.operations.append(SoftRemoveModifierOption(option_id=local.id))
                    counts.soft_removed += 1

    # Soft removal of records absent from the pull

    def _soft_remove_missing(self) -> None:
        for category in self.local_categories:
            provider_id = category.provider_category_id
            if provider_id and provider_id not in self.resolved_categories and category.available:
                self.operations.append(SoftRemoveCategory(category_id=category.id))
                self.summary.categories.soft_removed += 1

            for item in category.items:
                if item.provider_item_id and item.provider_item_id not in self.seen_items and item.available:
                    self.operations.append(SoftRemoveItem(item_id=item.id))
                    self.summary.items.soft_removed += 1

    def _record_update(self, counts: EntityCounts, changes: dict[str, Any], operation) -> None:
        if changes:
            self.operations.append(operation)
            counts.updated += 1
        else:
            counts.unchanged += 1
