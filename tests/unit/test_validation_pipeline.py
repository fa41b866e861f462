"""Unit tests for ValidationPipeline."""

from decimal import Decimal

import pytest
from conftest import FakeClock, make_catalog, make_modifier, make_product

from menu_sync_service.models.catalog_models import ModifierOption
from menu_sync_service.models.validation_models import (
    ValidationCategory,
    ValidationConfig,
    ValidationErrorCode,
)
from menu_sync_service.services.delta_computer import DeltaComputer
from menu_sync_service.validation.pipeline import ValidationPipeline, validate


def bad_catalog():
    """Catalog with findings in every phase, including a critical one in the first."""
    return make_catalog(
        products=[
            make_product("p1", name=""),
            make_product("p2", price=Decimal("0")),
            make_product("p3", price=Decimal("-5")),
        ],
        modifiers=[make_modifier("m1", options=[]), make_modifier("m2", min_selection=3)],
    )


def duplicate_name_options() -> list[ModifierOption]:
    return [ModifierOption(id="o1", name="Sauce"), ModifierOption(id="o2", name="sauce")]


FAIL_FAST_CASES = {
    "critical_in_first_phase": (bad_catalog, False),
    "critical_in_later_phase": (
        lambda: make_catalog(products=[make_product("p1", price=Decimal("-5"))]),
        False,
    ),
    "error_only": (lambda: make_catalog(products=[make_product("p1", price=Decimal("0"))]), False),
    "error_in_last_phase": (
        lambda: make_catalog(modifiers=[make_modifier("m1", min_selection=3)]),
        False,
    ),
    "warning_only": (
        lambda: make_catalog(modifiers=[make_modifier("m1", options=duplicate_name_options())]),
        True,
    ),
    "clean": (make_catalog, True),
}


@pytest.mark.unit
class TestValidationPipeline:
    """Test suite for ValidationPipeline."""

    @pytest.fixture
    def pipeline(self) -> ValidationPipeline:
        return ValidationPipeline()

    def test_valid_catalog(self, pipeline: ValidationPipeline) -> None:
        result = pipeline.validate(make_catalog())

        assert result.is_valid is True
        assert result.can_submit is True
        assert result.errors == []
        assert result.phases_run == [
            ValidationCategory.REQUIRED_FIELDS,
            ValidationCategory.PRICE_CONSISTENCY,
            ValidationCategory.MODIFIER_CORRECTNESS,
        ]
        assert result.statistics.products_validated == 2
        assert result.statistics.options_validated == 2

    def test_warnings_do_not_block(self, pipeline: ValidationPipeline) -> None:
        options = [
            ModifierOption(id="o1", name="Sauce"),
            ModifierOption(id="o2", name="sauce"),
        ]

        result = pipeline.validate(make_catalog(modifiers=[make_modifier("m1", options=options)]))

        assert result.is_valid is True
        assert result.can_submit is True
        assert [w.code for w in result.warnings] == [ValidationErrorCode.DUPLICATE_OPTION_NAME]

    def test_fail_fast_stops_after_critical_phase(self, pipeline: ValidationPipeline) -> None:
        result = pipeline.validate(bad_catalog(), fail_fast=True)

        assert result.fail_fast is True
        assert result.phases_run == [ValidationCategory.REQUIRED_FIELDS]
        assert result.has_critical
        assert result.can_submit is False

    def test_fail_fast_report_is_prefix_of_full_report(self, pipeline: ValidationPipeline) -> None:
        fast = pipeline.validate(bad_catalog(), fail_fast=True)
        full = pipeline.validate(bad_catalog(), fail_fast=False)

        assert len(full.errors) > len(fast.errors)
        assert full.errors[: len(fast.errors)] == fast.errors

    @pytest.mark.parametrize("case", list(FAIL_FAST_CASES))
    def test_fail_fast_agrees_with_full_run_on_submission(
        self, pipeline: ValidationPipeline, case: str
    ) -> None:
        """Test that stopping early never changes whether a catalog can be submitted."""
        build, expected = FAIL_FAST_CASES[case]

        fast = pipeline.validate(build(), fail_fast=True)
        full = pipeline.validate(build(), fail_fast=False)

        assert fast.can_submit == full.can_submit == expected
        assert fast.is_valid == full.is_valid

    def test_fail_fast_continues_without_critical(self, pipeline: ValidationPipeline) -> None:
        catalog = make_catalog(products=[make_product("p1", price=Decimal("0"))])

        result = pipeline.validate(catalog, fail_fast=True)

        assert len(result.phases_run) == 3
        assert [e.code for e in result.errors] == [ValidationErrorCode.ZERO_PRICE]
        assert result.is_valid is False

    def test_duplicate_findings_across_phases_kept_once(self, pipeline: ValidationPipeline) -> None:
        result = pipeline.validate(make_catalog(modifiers=[make_modifier("m1", options=[])]))

        codes = [e.code for e in result.errors]
        assert codes.count(ValidationErrorCode.MODIFIER_WITHOUT_OPTIONS) == 1
        assert result.errors[0].category == ValidationCategory.REQUIRED_FIELDS
        assert result.statistics.critical_count == 1

    def test_statistics_and_summary(self, pipeline: ValidationPipeline) -> None:
        result = pipeline.validate(bad_catalog())

        stats = result.statistics
        assert stats.critical_count == len(result.critical_errors)
        assert stats.critical_count + stats.error_count + stats.warning_count == len(result.errors)
        assert result.summary() == (
            f"{stats.critical_count} critical, {stats.error_count} errors, "
            f"{stats.warning_count} warnings"
        )
        assert result.duration_ms >= 0

    def test_custom_config_limits(self) -> None:
        pipeline = ValidationPipeline(ValidationConfig(max_price=Decimal("10")))

        result = pipeline.validate(make_catalog())

        assert {e.code for e in result.errors} == {ValidationErrorCode.PRICE_ABOVE_MAXIMUM}

    def test_validates_only_changed_entities_of_delta(
        self, pipeline: ValidationPipeline, clock: FakeClock
    ) -> None:
        baseline = make_catalog(products=[make_product("p1", price=Decimal("0"))])
        live = make_catalog(products=[make_product("p1", price=Decimal("0")), make_product("p2")])
        delta = DeltaComputer(clock=clock).compute(baseline, live, source_version=1)

        result = pipeline.validate(delta)

        assert result.is_valid is True
        assert result.statistics.products_validated == 1

    def test_module_level_validate(self) -> None:
        result = validate(bad_catalog(), fail_fast=True)

        assert result.phases_run == [ValidationCategory.REQUIRED_FIELDS]


@pytest.mark.unit
class TestFilterValid:
    """Test suite for ValidationPipeline.filter_valid."""

    def test_drops_entities_with_blocking_findings(self) -> None:
        catalog = make_catalog(
            products=[make_product("good"), make_product("bad", price=Decimal("0"))]
        )

        filtered, result = ValidationPipeline().filter_valid(catalog)

        assert [p.id for p in filtered.products] == ["good"]
        assert len(filtered.categories) == 1
        assert result.is_valid is False

    def test_keeps_entities_with_only_warnings(self) -> None:
        catalog = make_catalog(products=[make_product("p1", modifier_ids=["a", "b"])])

        filtered, _ = ValidationPipeline(ValidationConfig(max_modifiers_per_product=1)).filter_valid(
            catalog
        )

        assert [p.id for p in filtered.products] == ["p1"]

    def test_option_finding_blocks_parent_modifier(self) -> None:
        options = [
            ModifierOption(id="o1", name="Fine"),
            ModifierOption(id="o2", name="Broken", price=Decimal("-1")),
        ]
        catalog = make_catalog(
            modifiers=[make_modifier("m1"), make_modifier("m2", options=options)]
        )

        filtered, _ = ValidationPipeline().filter_valid(catalog)

        assert [m.id for m in filtered.modifiers] == ["m1"]
        assert filtered.account_id == catalog.account_id
        assert filtered.branch_id == catalog.branch_id
