"""Modifier-correctness validation phase."""

from collections import Counter

from menu_sync_service.models.catalog_models import EntityType, LiveCatalog, Modifier
from menu_sync_service.models.validation_models import (
    Severity,
    ValidationCategory,
    ValidationConfig,
    ValidationError,
    ValidationErrorCode,
)
from menu_sync_service.validation.base import ValidationPhase


class ModifierCorrectnessValidator(ValidationPhase):
    """Checks modifier selection rules, option uniqueness and size limits.

    Selection rule: ``0 <= min_selection <= max_selection <= option count``.
    """

    category = ValidationCategory.MODIFIER_CORRECTNESS

    def validate(self, catalog: LiveCatalog, config: ValidationConfig) -> list[ValidationError]:
        errors: list[ValidationError] = []

        for product in catalog.products:
            if product.is_deleted:
                continue
            if len(product.modifier_ids) > config.max_modifiers_per_product:
                errors.append(
                    self.issue(
                        ValidationErrorCode.TOO_MANY_MODIFIERS,
                        Severity.WARNING,
                        EntityType.PRODUCT,
                        f"Product has {len(product.modifier_ids)} modifiers",
                        entity=product,
                        field_name="modifier_ids",
                        current_value=len(product.modifier_ids),
                        expected_value=config.max_modifiers_per_product,
                    )
                )

        for modifier in catalog.modifiers:
            if not modifier.is_deleted:
                errors.extend(self._check_modifier(modifier, config))

        return errors

    def _check_modifier(self, modifier: Modifier, config: ValidationConfig) -> list[ValidationError]:
        option_count = len(modifier.options)
        if option_count == 0:
            # Same finding as the required-fields phase; the pipeline keeps one
            return [
                self.issue(
                    ValidationErrorCode.MODIFIER_WITHOUT_OPTIONS,
                    Severity.CRITICAL,
                    EntityType.MODIFIER,
                    "Modifier has no options",
                    entity=modifier,
                    field_name="options",
                    suggested_fix="Add at least one option or remove the modifier",
                )
            ]

        errors = []
        lo, hi = modifier.min_selection, modifier.max_selection
        if lo < 0 or hi < lo or hi > option_count:
            errors.append(
                self.issue(
                    ValidationErrorCode.INVALID_SELECTION_RANGE,
                    Severity.ERROR,
                    EntityType.MODIFIER,
                    f"Selection range {lo}-{hi} is invalid for {option_count} options",
                    entity=modifier,
                    field_name="min_selection" if lo < 0 or hi < lo else "max_selection",
                    current_value=f"{lo}-{hi}",
                    expected_value=f"0 <= min <= max <= {option_count}",
                )
            )

        if lo > 0 and not any(o.is_active for o in modifier.options):
            errors.append(
                self.issue(
                    ValidationErrorCode.REQUIRED_MODIFIER_WITHOUT_ACTIVE_OPTIONS,
                    Severity.ERROR,
                    EntityType.MODIFIER,
                    "Required modifier has no active options",
                    entity=modifier,
                    field_name="options",
                    suggested_fix="Activate an option or make the modifier optional",
                )
            )

        id_counts = Counter(o.id.strip() for o in modifier.options if o.id.strip())
        for option_id, count in id_counts.items():
            if count > 1:
                errors.append(
                    self.issue(
                        ValidationErrorCode.DUPLICATE_OPTION_ID,
                        Severity.ERROR,
                        EntityType.MODIFIER,
                        f"Option id {option_id} appears {count} times",
                        entity=modifier,
                        field_name=f"options.{option_id}",
                        current_value=option_id,
                    )
                )

        name_counts = Counter(o.name.strip().casefold() for o in modifier.options if o.name.strip())
        for option_name, count in name_counts.items():
            if count > 1:
                errors.append(
                    self.issue(
                        ValidationErrorCode.DUPLICATE_OPTION_NAME,
                        Severity.WARNING,
                        EntityType.MODIFIER,
                        f"Option name '{option_name}' appears {count} times",
                        entity=modifier,
                        field_name=f"options.{option_name}",
                        current_value=option_name,
                    )
                )

        if option_count > config.max_modifier_options:
            errors.append(
                self.issue(
                    ValidationErrorCode.TOO_MANY_OPTIONS,
                    Severity.ERROR,
                    EntityType.MODIFIER,
                    f"Modifier has {option_count} options",
                    entity=modifier,
                    field_name="options",
                    current_value=option_count,
                    expected_value=config.max_modifier_options,
                )
            )

        return errors
