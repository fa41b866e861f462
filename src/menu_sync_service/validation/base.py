"""Base class for validation phases."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from menu_sync_service.models.catalog_models import EntityType, LiveCatalog
from menu_sync_service.models.validation_models import (
    Severity,
    ValidationCategory,
    ValidationConfig,
    ValidationError,
    ValidationErrorCode,
)


class ValidationPhase(ABC):
    """Abstract base class for a validation phase.

    Each phase inspects the non-deleted entities of a catalog and returns its
    findings in a deterministic order (products, categories, modifiers, each
    in catalog order). Phases never raise for bad data.
    """

    category: ValidationCategory

    @abstractmethod
    def validate(self, catalog: LiveCatalog, config: ValidationConfig) -> list[ValidationError]:
        """Validate a catalog.

        Args:
            catalog: Entities to validate
            config: Validation limits

        Returns:
            list: Findings of this phase, empty if the catalog passes
        """

    def issue(
        self,
        code: ValidationErrorCode,
        severity: Severity,
        entity_type: EntityType,
        message: str,
        entity: Any = None,
        field_name: str | None = None,
        parent_id: str | None = None,
        suggested_fix: str | None = None,
        current_value: Any = None,
        expected_value: Any = None,
    ) -> ValidationError:
        """Build a finding tagged with this phase's category."""
        return ValidationError(
            code=code,
            severity=severity,
            category=self.category,
            entity_type=entity_type,
            entity_id=(entity.id or None) if entity is not None else None,
            entity_name=(entity.name or None) if entity is not None else None,
            parent_id=parent_id,
            field_name=field_name,
            message=message,
            suggested_fix=suggested_fix,
            current_value=_as_text(current_value),
            expected_value=_as_text(expected_value),
        )


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)
