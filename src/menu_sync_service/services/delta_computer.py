"""Delta computation between a baseline catalog and the live catalog."""

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

from menu_sync_service.models.catalog_models import (
    Category,
    EntityType,
    LiveCatalog,
    Modifier,
    Product,
)
from menu_sync_service.models.snapshot_models import (
    DeltaStatistics,
    DeltaWarning,
    EntityUpdate,
    MenuDelta,
)
from menu_sync_service.services.catalog_hashing import hash_json, normalize_entity

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", Product, Category, Modifier)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class _EntityDiff:
    """Added/updated/removed partition for one entity type."""

    def __init__(self) -> None:
        self.added: list[Any] = []
        self.updated: list[Any] = []
        self.removed: list[str] = []
        self.soft_deleted = 0


class DeltaComputer:
    """Computes the minimal change set between two catalogs.

    Entities are matched by id. Soft-deleted entities are excluded from both
    sides, so an entity soft-deleted in the live catalog shows up as removed
    if the baseline had it and is ignored otherwise. Entities with blank ids
    cannot be matched and are reported as data-quality warnings.
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self.clock = clock

    def compute(
        self,
        baseline: LiveCatalog | None,
        live: LiveCatalog,
        source_version: int | None = None,
    ) -> MenuDelta:
        """Compute the delta from ``baseline`` to ``live``.

        Args:
            baseline: Catalog of the latest snapshot, None on first sync
            live: Catalog fetched from the source system
            source_version: Version of the baseline snapshot

        Returns:
            MenuDelta: Partitioned changes with statistics and warnings
        """
        warnings: list[DeltaWarning] = []
        stats = DeltaStatistics()

        products = self._diff(
            EntityType.PRODUCT, baseline.products if baseline else [], live.products, warnings
        )
        categories = self._diff(
            EntityType.CATEGORY, baseline.categories if baseline else [], live.categories, warnings
        )
        modifiers = self._diff(
            EntityType.MODIFIER, baseline.modifiers if baseline else [], live.modifiers, warnings
        )

        stats.products_added = len(products.added)
        stats.products_updated = len(products.updated)
        stats.products_removed = len(products.removed)
        stats.categories_added = len(categories.added)
        stats.categories_updated = len(categories.updated)
        stats.categories_removed = len(categories.removed)
        stats.modifiers_added = len(modifiers.added)
        stats.modifiers_updated = len(modifiers.updated)
        stats.modifiers_removed = len(modifiers.removed)
        stats.soft_deleted = products.soft_deleted + categories.soft_deleted + modifiers.soft_deleted
        stats.excluded = len(warnings)

        delta = MenuDelta(
            account_id=live.account_id,
            branch_id=live.branch_id,
            source_version=source_version,
            target_version=(source_version or 0) + 1,
            computed_at=self.clock(),
            added_products=products.added,
            updated_products=products.updated,
            removed_product_ids=products.removed,
            added_categories=categories.added,
            updated_categories=categories.updated,
            removed_category_ids=categories.removed,
            added_modifiers=modifiers.added,
            updated_modifiers=modifiers.updated,
            removed_modifier_ids=modifiers.removed,
            warnings=warnings,
            statistics=stats,
        )

        logger.info(
            f"Computed delta {delta.delta_id} for {delta.snapshot_key}: "
            f"{stats.total_changes} changes, {len(warnings)} warnings"
        )
        return delta

    def _diff(
        self,
        entity_type: EntityType,
        baseline: Sequence[EntityT],
        live: Sequence[EntityT],
        warnings: list[DeltaWarning],
    ) -> _EntityDiff:
        diff = _EntityDiff()
        baseline_map = self._index(entity_type, baseline, None)
        live_map = self._index(entity_type, live, warnings)

        soft_deleted_ids = {e.id for e in live if e.id.strip() and e.is_deleted}

        for entity_id in sorted(live_map):
            entity = live_map[entity_id]
            previous = baseline_map.get(entity_id)
            if previous is None:
                diff.added.append(entity)
                continue

            current_fields = normalize_entity(entity, exclude={"id"})
            previous_fields = normalize_entity(previous, exclude={"id"})
            if hash_json(current_fields) == hash_json(previous_fields):
                continue

            changed = sorted(
                name for name in current_fields if current_fields[name] != previous_fields.get(name)
            )
            diff.updated.append(
                EntityUpdate[type(entity)](  # type: ignore[misc]
                    entity=entity,
                    changed_fields=changed,
                    previous_values={name: previous_fields.get(name) for name in changed},
                )
            )

        for entity_id in sorted(set(baseline_map) - set(live_map)):
            diff.removed.append(entity_id)
            if entity_id in soft_deleted_ids:
                diff.soft_deleted += 1

        return diff

    def _index(
        self,
        entity_type: EntityType,
        entities: Sequence[EntityT],
        warnings: list[DeltaWarning] | None,
    ) -> dict[str, EntityT]:
        """Index non-deleted entities by id.

        Warnings are only collected for the live side; the baseline was
        already filtered when it was committed.
        """
        index: dict[str, EntityT] = {}
        for entity in entities:
            if entity.is_deleted:
                continue

            entity_id = entity.id.strip()
            if not entity_id:
                if warnings is not None:
                    warnings.append(
                        DeltaWarning(
                            entity_type=entity_type,
                            entity_name=entity.name or None,
                            code="MISSING_ID",
                            message=f"{entity_type.value} without id excluded from sync",
                        )
                    )
                continue

            if entity_id in index and warnings is not None:
                warnings.append(
                    DeltaWarning(
                        entity_type=entity_type,
                        entity_id=entity_id,
                        entity_name=entity.name or None,
                        code="DUPLICATE_ID",
                        message=f"Duplicate {entity_type.value} id {entity_id}, last occurrence kept",
                    )
                )

            index[entity_id] = entity
        return index
