"""Price-consistency validation phase."""

from decimal import Decimal

from menu_sync_service.models.catalog_models import EntityType, LiveCatalog, Modifier
from menu_sync_service.models.validation_models import (
    Severity,
    ValidationCategory,
    ValidationConfig,
    ValidationError,
    ValidationErrorCode,
)
from menu_sync_service.validation.base import ValidationPhase

TAX_RATE_MIN = Decimal("0")
TAX_RATE_MAX = Decimal("100")


def decimal_places(value: Decimal) -> int:
    """Number of significant fractional digits ("12.50" has 1)."""
    exponent = value.normalize().as_tuple().exponent
    if not isinstance(exponent, int):
        return 0
    return max(0, -exponent)


class PriceConsistencyValidator(ValidationPhase):
    """Checks product and option prices and product tax rates.

    Zero is a valid option price (free add-ons) but not a valid product price.
    A missing product price is reported by the required-fields phase.
    """

    category = ValidationCategory.PRICE_CONSISTENCY

    def validate(self, catalog: LiveCatalog, config: ValidationConfig) -> list[ValidationError]:
        errors: list[ValidationError] = []

        for product in catalog.products:
            if product.is_deleted:
                continue

            if product.price is not None:
                errors.extend(
                    self._check_price(
                        EntityType.PRODUCT, product, product.price, config, allow_zero=False
                    )
                )

            if product.tax_rate is not None and not (
                TAX_RATE_MIN <= product.tax_rate <= TAX_RATE_MAX
            ):
                errors.append(
                    self.issue(
                        ValidationErrorCode.INVALID_TAX_RATE,
                        Severity.ERROR,
                        EntityType.PRODUCT,
                        f"Tax rate {product.tax_rate} is outside 0-100",
                        entity=product,
                        field_name="tax_rate",
                        current_value=product.tax_rate,
                        expected_value="0-100",
                    )
                )

        for modifier in catalog.modifiers:
            if modifier.is_deleted:
                continue
            for option in modifier.options:
                errors.extend(
                    self._check_price(
                        EntityType.MODIFIER_OPTION,
                        option,
                        option.price,
                        config,
                        allow_zero=True,
                        parent_id=modifier.id or None,
                    )
                )
            variance = self._check_variance(modifier, config)
            if variance is not None:
                errors.append(variance)

        return errors

    def _check_price(
        self,
        entity_type: EntityType,
        entity: object,
        price: Decimal,
        config: ValidationConfig,
        allow_zero: bool,
        parent_id: str | None = None,
    ) -> list[ValidationError]:
        if price < 0:
            return [
                self.issue(
                    ValidationErrorCode.NEGATIVE_PRICE,
                    Severity.CRITICAL,
                    entity_type,
                    f"Price {price} is negative",
                    entity=entity,
                    field_name="price",
                    parent_id=parent_id,
                    current_value=price,
                    suggested_fix="Prices must be zero or positive",
                )
            ]

        errors = []
        if price == 0 and not allow_zero:
            errors.append(
                self.issue(
                    ValidationErrorCode.ZERO_PRICE,
                    Severity.ERROR,
                    entity_type,
                    "Price is zero",
                    entity=entity,
                    field_name="price",
                    parent_id=parent_id,
                    current_value=price,
                    suggested_fix="Set a price or deactivate the product",
                )
            )
        if price > config.max_price:
            errors.append(
                self.issue(
                    ValidationErrorCode.PRICE_ABOVE_MAXIMUM,
                    Severity.ERROR,
                    entity_type,
                    f"Price {price} exceeds the maximum of {config.max_price}",
                    entity=entity,
                    field_name="price",
                    parent_id=parent_id,
                    current_value=price,
                    expected_value=config.max_price,
                )
            )
        if decimal_places(price) > config.max_decimal_places:
            errors.append(
                self.issue(
                    ValidationErrorCode.INVALID_PRICE_PRECISION,
                    Severity.ERROR,
                    entity_type,
                    f"Price {price} has more than {config.max_decimal_places} decimal places",
                    entity=entity,
                    field_name="price",
                    parent_id=parent_id,
                    current_value=price,
                    suggested_fix=f"Round to {config.max_decimal_places} decimal places",
                )
            )
        return errors

    def _check_variance(self, modifier: Modifier, config: ValidationConfig) -> ValidationError | None:
        prices = [o.price for o in modifier.options if o.is_active and o.price >= 0]
        if len(prices) < 2:
            return None

        spread = max(prices) - min(prices)
        threshold = config.max_price * config.price_variance_ratio
        if spread <= threshold:
            return None

        return self.issue(
            ValidationErrorCode.OPTION_PRICE_VARIANCE,
            Severity.WARNING,
            EntityType.MODIFIER,
            f"Option prices range from {min(prices)} to {max(prices)}",
            entity=modifier,
            field_name="options",
            current_value=spread,
            expected_value=threshold,
            suggested_fix="Check option prices for data entry mistakes",
        )
