"""Validation result and configuration models.

Note: ``ValidationError`` here is a catalog data-quality finding, not
pydantic's exception of the same name. Modules that need both import
pydantic's as ``PydanticValidationError``.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from menu_sync_service.models.catalog_models import EntityType


class Severity(str, Enum):
    """Severity of a validation finding."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def is_blocking(self) -> bool:
        return self in (Severity.CRITICAL, Severity.ERROR)


class ValidationCategory(str, Enum):
    """Validation phases, in execution order."""

    REQUIRED_FIELDS = "required_fields"
    PRICE_CONSISTENCY = "price_consistency"
    MODIFIER_CORRECTNESS = "modifier_correctness"


class ValidationErrorCode(str, Enum):
    """Stable codes for validation findings."""

    MISSING_ID = "MISSING_ID"
    MISSING_NAME = "MISSING_NAME"
    MISSING_PRICE = "MISSING_PRICE"
    NAME_TOO_LONG = "NAME_TOO_LONG"
    DESCRIPTION_TOO_LONG = "DESCRIPTION_TOO_LONG"
    INVALID_CHARACTERS = "INVALID_CHARACTERS"
    MODIFIER_WITHOUT_OPTIONS = "MODIFIER_WITHOUT_OPTIONS"
    OPTION_MISSING_ID = "OPTION_MISSING_ID"
    OPTION_MISSING_NAME = "OPTION_MISSING_NAME"
    NEGATIVE_PRICE = "NEGATIVE_PRICE"
    ZERO_PRICE = "ZERO_PRICE"
    PRICE_ABOVE_MAXIMUM = "PRICE_ABOVE_MAXIMUM"
    INVALID_PRICE_PRECISION = "INVALID_PRICE_PRECISION"
    INVALID_TAX_RATE = "INVALID_TAX_RATE"
    OPTION_PRICE_VARIANCE = "OPTION_PRICE_VARIANCE"
    INVALID_SELECTION_RANGE = "INVALID_SELECTION_RANGE"
    REQUIRED_MODIFIER_WITHOUT_ACTIVE_OPTIONS = "REQUIRED_MODIFIER_WITHOUT_ACTIVE_OPTIONS"
    DUPLICATE_OPTION_ID = "DUPLICATE_OPTION_ID"
    DUPLICATE_OPTION_NAME = "DUPLICATE_OPTION_NAME"
    TOO_MANY_OPTIONS = "TOO_MANY_OPTIONS"
    TOO_MANY_MODIFIERS = "TOO_MANY_MODIFIERS"


class ValidationError(BaseModel):
    """A single validation finding for one entity (or one field of an entity)."""

    code: ValidationErrorCode
    severity: Severity
    category: ValidationCategory
    entity_type: EntityType
    entity_id: str | None = None
    entity_name: str | None = None
    parent_id: str | None = Field(None, description="Owning modifier id for option findings")
    field_name: str | None = None
    message: str
    suggested_fix: str | None = None
    current_value: str | None = None
    expected_value: str | None = None

    @property
    def dedup_key(self) -> tuple[str, str, str | None, str | None, str | None]:
        return (
            self.code.value,
            self.entity_type.value,
            self.entity_id,
            self.parent_id,
            self.field_name,
        )


class ValidationStatistics(BaseModel):
    """Counts of validated entities and findings by severity."""

    products_validated: int = 0
    categories_validated: int = 0
    modifiers_validated: int = 0
    options_validated: int = 0
    critical_count: int = 0
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0


class ValidationResult(BaseModel):
    """Ordered findings of a validation run plus summary statistics."""

    errors: list[ValidationError] = Field(default_factory=list)
    statistics: ValidationStatistics = Field(default_factory=ValidationStatistics)
    phases_run: list[ValidationCategory] = Field(default_factory=list)
    fail_fast: bool = False
    duration_ms: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_valid(self) -> bool:
        return not any(e.severity.is_blocking for e in self.errors)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_submit(self) -> bool:
        return self.is_valid and not self.has_critical

    @property
    def has_critical(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    @property
    def critical_errors(self) -> list[ValidationError]:
        return [e for e in self.errors if e.severity == Severity.CRITICAL]

    @property
    def blocking_errors(self) -> list[ValidationError]:
        return [e for e in self.errors if e.severity.is_blocking]

    @property
    def warnings(self) -> list[ValidationError]:
        return [e for e in self.errors if e.severity == Severity.WARNING]

    def summary(self) -> str:
        stats = self.statistics
        return (
            f"{stats.critical_count} critical, {stats.error_count} errors, "
            f"{stats.warning_count} warnings"
        )


class ValidationConfig(BaseModel):
    """Tunable limits for the validation pipeline."""

    max_name_length: int = 100
    max_description_length: int = 500
    max_price: Decimal = Decimal("1000")
    max_decimal_places: int = 2
    max_modifier_options: int = 50
    max_modifiers_per_product: int = 20
    price_variance_ratio: Decimal = Decimal("0.5")
    invalid_characters: str = "<>\"'&\n\r\t"
