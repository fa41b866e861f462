"""Required-fields validation phase.

Checks that every entity can be identified and displayed: ids and names are
present, text fits the platform limits and contains no disallowed characters,
products have a price and modifiers have options.
"""

from typing import Any

from menu_sync_service.models.catalog_models import EntityType, LiveCatalog
from menu_sync_service.models.validation_models import (
    Severity,
    ValidationCategory,
    ValidationConfig,
    ValidationError,
    ValidationErrorCode,
)
from menu_sync_service.validation.base import ValidationPhase


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class RequiredFieldsValidator(ValidationPhase):
    category = ValidationCategory.REQUIRED_FIELDS

    def validate(self, catalog: LiveCatalog, config: ValidationConfig) -> list[ValidationError]:
        errors: list[ValidationError] = []

        for product in catalog.products:
            if product.is_deleted:
                continue
            errors.extend(self._check_identity(EntityType.PRODUCT, product))
            if product.price is None:
                errors.append(
                    self.issue(
                        ValidationErrorCode.MISSING_PRICE,
                        Severity.ERROR,
                        EntityType.PRODUCT,
                        "Product has no price",
                        entity=product,
                        field_name="price",
                        suggested_fix="Set a base price in the source system",
                    )
                )
            errors.extend(self._check_text(EntityType.PRODUCT, product, config))

        for category in catalog.categories:
            if category.is_deleted:
                continue
            errors.extend(self._check_identity(EntityType.CATEGORY, category))
            errors.extend(self._check_text(EntityType.CATEGORY, category, config))

        for modifier in catalog.modifiers:
            if modifier.is_deleted:
                continue
            errors.extend(self._check_identity(EntityType.MODIFIER, modifier))
            errors.extend(self._check_text(EntityType.MODIFIER, modifier, config))

            if not modifier.options:
                errors.append(
                    self.issue(
                        ValidationErrorCode.MODIFIER_WITHOUT_OPTIONS,
                        Severity.CRITICAL,
                        EntityType.MODIFIER,
                        "Modifier has no options",
                        entity=modifier,
                        field_name="options",
                        suggested_fix="Add at least one option or remove the modifier",
                    )
                )

            for option in modifier.options:
                if _blank(option.id):
                    errors.append(
                        self.issue(
                            ValidationErrorCode.OPTION_MISSING_ID,
                            Severity.CRITICAL,
                            EntityType.MODIFIER_OPTION,
                            "Modifier option has no id",
                            entity=option,
                            field_name="id",
                            parent_id=modifier.id or None,
                        )
                    )
                if _blank(option.name):
                    errors.append(
                        self.issue(
                            ValidationErrorCode.OPTION_MISSING_NAME,
                            Severity.ERROR,
                            EntityType.MODIFIER_OPTION,
                            "Modifier option has no name",
                            entity=option,
                            field_name="name",
                            parent_id=modifier.id or None,
                        )
                    )
                errors.extend(
                    self._check_text(
                        EntityType.MODIFIER_OPTION, option, config, parent_id=modifier.id or None
                    )
                )

        return errors

    def _check_identity(self, entity_type: EntityType, entity: Any) -> list[ValidationError]:
        errors = []
        if _blank(entity.id):
            errors.append(
                self.issue(
                    ValidationErrorCode.MISSING_ID,
                    Severity.CRITICAL,
                    entity_type,
                    f"{entity_type.value} has no id",
                    entity=entity,
                    field_name="id",
                )
            )
        if _blank(entity.name):
            errors.append(
                self.issue(
                    ValidationErrorCode.MISSING_NAME,
                    Severity.CRITICAL,
                    entity_type,
                    f"{entity_type.value} has no name",
                    entity=entity,
                    field_name="name",
                )
            )
        return errors

    def _check_text(
        self,
        entity_type: EntityType,
        entity: Any,
        config: ValidationConfig,
        parent_id: str | None = None,
    ) -> list[ValidationError]:
        errors = []
        fields = [("name", entity.name, config.max_name_length, ValidationErrorCode.NAME_TOO_LONG)]
        description = getattr(entity, "description", None)
        if description is not None:
            fields.append(
                (
                    "description",
                    description,
                    config.max_description_length,
                    ValidationErrorCode.DESCRIPTION_TOO_LONG,
                )
            )

        for field_name, value, max_length, code in fields:
            if not value:
                continue
            if len(value) > max_length:
                errors.append(
                    self.issue(
                        code,
                        Severity.ERROR,
                        entity_type,
                        f"{field_name} is {len(value)} characters, limit is {max_length}",
                        entity=entity,
                        field_name=field_name,
                        parent_id=parent_id,
                        current_value=len(value),
                        expected_value=max_length,
                        suggested_fix=f"Shorten the {field_name}",
                    )
                )
            found = sorted({c for c in value if c in config.invalid_characters})
            if found:
                errors.append(
                    self.issue(
                        ValidationErrorCode.INVALID_CHARACTERS,
                        Severity.ERROR,
                        entity_type,
                        f"{field_name} contains disallowed characters: {found!r}",
                        entity=entity,
                        field_name=field_name,
                        parent_id=parent_id,
                        current_value=value,
                        suggested_fix="Remove HTML special and control characters",
                    )
                )
        return errors
