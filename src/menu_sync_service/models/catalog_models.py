"""Catalog data models.

These models represent the merchant catalog as read from the source
point-of-sale system. Fields are deliberately permissive (blank ids, missing
prices, negative numbers are accepted) so that bad data reaches the validation
pipeline and is reported instead of failing at parse time.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class EntityType(str, Enum):
    """Kinds of catalog entities tracked by deltas and validation."""

    PRODUCT = "product"
    CATEGORY = "category"
    MODIFIER = "modifier"
    MODIFIER_OPTION = "modifier_option"


class _IdentifiedModel(BaseModel):
    """Base for entities matched by id; a null id from the source reads as blank."""

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def null_id_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class ModifierOption(_IdentifiedModel):
    """Single selectable option of a modifier group."""

    id: str = Field(default="", description="Option identifier")
    name: str = Field(default="", description="Option display name")
    price: Decimal = Field(default=Decimal("0"), description="Additional price for the option")
    is_active: bool = Field(default=True, description="Whether the option can be selected")


class Modifier(_IdentifiedModel):
    """Modifier group (e.g. 'Choose your sauce') attached to products."""

    id: str = Field(default="", description="Modifier identifier")
    name: str = Field(default="", description="Modifier display name")
    min_selection: int = Field(default=0, description="Minimum options a customer must pick")
    max_selection: int = Field(default=1, description="Maximum options a customer may pick")
    options: list[ModifierOption] = Field(default_factory=list, description="Selectable options")
    is_deleted: bool = Field(default=False, description="Soft-delete flag from the source system")


class Category(_IdentifiedModel):
    """Menu category model."""

    id: str = Field(default="", description="Category identifier")
    name: str = Field(default="", description="Category name")
    description: str | None = Field(None, description="Category description")
    sort_order: int = Field(default=0, description="Display order of category")
    is_active: bool = Field(default=True, description="Whether category is shown")
    is_deleted: bool = Field(default=False, description="Soft-delete flag from the source system")


class Product(_IdentifiedModel):
    """Sellable product model."""

    id: str = Field(default="", description="Product identifier")
    name: str = Field(default="", description="Product name")
    description: str | None = Field(None, description="Product description")
    price: Decimal | None = Field(None, description="Base price")
    category_id: str | None = Field(None, description="Category this product belongs to")
    tax_rate: Decimal | None = Field(None, description="Tax rate as a percentage (0-100)")
    modifier_ids: list[str] = Field(default_factory=list, description="Attached modifier groups")
    image_url: str | None = Field(None, description="URL to product image")
    is_active: bool = Field(default=True, description="Whether product is currently available")
    is_deleted: bool = Field(default=False, description="Soft-delete flag from the source system")


CatalogEntity = Product | Category | Modifier


class LiveCatalog(BaseModel):
    """Full catalog for an account (and optionally a branch) at a point in time."""

    account_id: str = Field(..., description="Merchant account identifier")
    branch_id: str | None = Field(None, description="Branch identifier, None for account-wide")
    products: list[Product] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    modifiers: list[Modifier] = Field(default_factory=list)

    @property
    def entity_count(self) -> int:
        return len(self.products) + len(self.categories) + len(self.modifiers)

    def is_empty(self) -> bool:
        return self.entity_count == 0
