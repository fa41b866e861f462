"""Shared pytest fixtures and configuration for all tests."""

import os
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

# Entry-point modules skip building the object graph in test mode
os.environ.setdefault("ENVIRONMENT", "test")

from menu_sync_service.models.catalog_models import (  # noqa: E402
    Category,
    LiveCatalog,
    Modifier,
    ModifierOption,
    Product,
)


class FakeClock:
    """Controllable clock for services that take a ``clock`` callable."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_product(product_id: str = "prod_1", **overrides: object) -> Product:
    data: dict[str, object] = {
        "id": product_id,
        "name": f"Product {product_id}",
        "description": "Grilled chicken with garlic sauce",
        "price": Decimal("12.50"),
        "category_id": "cat_1",
        "tax_rate": Decimal("5"),
        "modifier_ids": ["mod_1"],
    }
    data.update(overrides)
    return Product(**data)


def make_category(category_id: str = "cat_1", **overrides: object) -> Category:
    data: dict[str, object] = {"id": category_id, "name": f"Category {category_id}", "sort_order": 1}
    data.update(overrides)
    return Category(**data)


def make_modifier(modifier_id: str = "mod_1", **overrides: object) -> Modifier:
    data: dict[str, object] = {
        "id": modifier_id,
        "name": "Choose your sauce",
        "min_selection": 0,
        "max_selection": 2,
        "options": [
            ModifierOption(id=f"{modifier_id}_opt_1", name="Garlic", price=Decimal("0")),
            ModifierOption(id=f"{modifier_id}_opt_2", name="Chili", price=Decimal("1.50")),
        ],
    }
    data.update(overrides)
    return Modifier(**data)


def make_catalog(
    account_id: str = "acct_1",
    branch_id: str | None = "branch_1",
    products: list[Product] | None = None,
    categories: list[Category] | None = None,
    modifiers: list[Modifier] | None = None,
) -> LiveCatalog:
    return LiveCatalog(
        account_id=account_id,
        branch_id=branch_id,
        products=products if products is not None else [make_product("prod_1"), make_product("prod_2")],
        categories=categories if categories is not None else [make_category("cat_1")],
        modifiers=modifiers if modifiers is not None else [make_modifier("mod_1")],
    )


@pytest.fixture
def clock() -> FakeClock:
    """Fixture providing a controllable clock."""
    return FakeClock()


@pytest.fixture
def catalog() -> LiveCatalog:
    """Fixture providing a small valid catalog."""
    return make_catalog()


@pytest.fixture
def mock_schedule_event() -> dict:
    """Fixture providing a sample EventBridge scheduled sync event."""
    return {
        "version": "0",
        "id": "event_123",
        "detail-type": "ScheduledCatalogSync",
        "source": "com.menusync.scheduler",
        "account": "123456789012",
        "time": "2024-01-15T10:30:00Z",
        "region": "us-east-1",
        "resources": [],
        "detail": {"account_id": "acct_1", "branch_id": "branch_1"},
    }
