"""Multi-phase validation pipeline that gates submission."""

import logging
import time
from collections.abc import Sequence

from menu_sync_service.models.catalog_models import EntityType, LiveCatalog
from menu_sync_service.models.snapshot_models import MenuDelta
from menu_sync_service.models.validation_models import (
    Severity,
    ValidationConfig,
    ValidationError,
    ValidationResult,
    ValidationStatistics,
)
from menu_sync_service.observability import traced
from menu_sync_service.validation.base import ValidationPhase
from menu_sync_service.validation.modifier_correctness import ModifierCorrectnessValidator
from menu_sync_service.validation.price_consistency import PriceConsistencyValidator
from menu_sync_service.validation.required_fields import RequiredFieldsValidator

logger = logging.getLogger(__name__)


def default_phases() -> list[ValidationPhase]:
    return [RequiredFieldsValidator(), PriceConsistencyValidator(), ModifierCorrectnessValidator()]


class ValidationPipeline:
    """Runs the validation phases in order over a catalog or delta.

    With ``fail_fast=True`` the pipeline stops after the first phase that
    produced a Critical finding. Findings with the same code, entity and field
    reported by more than one phase are kept once, at their first position, so
    a fail-fast report is always a prefix of the full report.
    """

    def __init__(
        self,
        config: ValidationConfig | None = None,
        phases: Sequence[ValidationPhase] | None = None,
    ) -> None:
        self.config = config or ValidationConfig()
        self.phases = list(phases) if phases is not None else default_phases()

    @traced("validate_catalog")
    def validate(self, target: LiveCatalog | MenuDelta, fail_fast: bool = False) -> ValidationResult:
        """Validate a catalog, or the added and updated entities of a delta.

        Args:
            target: Catalog or delta to validate
            fail_fast: Stop after the first phase with a Critical finding

        Returns:
            ValidationResult: Ordered findings and statistics
        """
        started = time.perf_counter()
        catalog = target.as_catalog() if isinstance(target, MenuDelta) else target

        result = ValidationResult(fail_fast=fail_fast)
        seen: set[tuple[str, str, str | None, str | None, str | None]] = set()

        for phase in self.phases:
            result.phases_run.append(phase.category)
            phase_has_critical = False

            for error in phase.validate(catalog, self.config):
                if error.severity == Severity.CRITICAL:
                    phase_has_critical = True
                if error.dedup_key in seen:
                    continue
                seen.add(error.dedup_key)
                result.errors.append(error)

            if fail_fast and phase_has_critical:
                logger.info(f"Validation stopped after {phase.category.value}: critical findings")
                break

        result.statistics = self._statistics(catalog, result.errors)
        result.duration_ms = (time.perf_counter() - started) * 1000

        if not result.is_valid:
            logger.warning(
                f"Validation failed for account {catalog.account_id}: {result.summary()}"
            )
        return result

    def filter_valid(self, catalog: LiveCatalog) -> tuple[LiveCatalog, ValidationResult]:
        """Drop entities with blocking findings from a catalog.

        Option findings disqualify their whole modifier.

        Returns:
            Tuple of (catalog of entities without blocking findings, full result)
        """
        result = self.validate(catalog, fail_fast=False)

        blocked: set[tuple[EntityType, str]] = set()
        for error in result.blocking_errors:
            if error.entity_type == EntityType.MODIFIER_OPTION:
                blocked.add((EntityType.MODIFIER, error.parent_id or ""))
            else:
                blocked.add((error.entity_type, error.entity_id or ""))

        filtered = LiveCatalog(
            account_id=catalog.account_id,
            branch_id=catalog.branch_id,
            products=[
                p for p in catalog.products if (EntityType.PRODUCT, p.id or "") not in blocked
            ],
            categories=[
                c for c in catalog.categories if (EntityType.CATEGORY, c.id or "") not in blocked
            ],
            modifiers=[
                m for m in catalog.modifiers if (EntityType.MODIFIER, m.id or "") not in blocked
            ],
        )
        return filtered, result

    @staticmethod
    def _statistics(catalog: LiveCatalog, errors: list[ValidationError]) -> ValidationStatistics:
        active_modifiers = [m for m in catalog.modifiers if not m.is_deleted]
        return ValidationStatistics(
            products_validated=sum(1 for p in catalog.products if not p.is_deleted),
            categories_validated=sum(1 for c in catalog.categories if not c.is_deleted),
            modifiers_validated=len(active_modifiers),
            options_validated=sum(len(m.options) for m in active_modifiers),
            critical_count=sum(1 for e in errors if e.severity == Severity.CRITICAL),
            error_count=sum(1 for e in errors if e.severity == Severity.ERROR),
            warning_count=sum(1 for e in errors if e.severity == Severity.WARNING),
            info_count=sum(1 for e in errors if e.severity == Severity.INFO),
        )


def validate(
    target: LiveCatalog | MenuDelta,
    config: ValidationConfig | None = None,
    fail_fast: bool = False,
) -> ValidationResult:
    """Validate with the default phases."""
    return ValidationPipeline(config).validate(target, fail_fast=fail_fast)
