"""Snapshot and delta models.

A snapshot is the immutable, versioned record of a catalog that the delivery
platform has confirmed. A delta is the minimal change set between the latest
snapshot and the live catalog.
"""

import uuid
from datetime import datetime
from typing import Any, Generic, TypeVar

from boto3.dynamodb.types import Binary
from pydantic import BaseModel, ConfigDict, Field

from menu_sync_service.models.catalog_models import (
    Category,
    EntityType,
    LiveCatalog,
    Modifier,
    Product,
)

EntityT = TypeVar("EntityT", Product, Category, Modifier)


def make_snapshot_key(account_id: str, branch_id: str | None) -> str:
    """Build the partition key shared by snapshots and deltas of one account/branch."""
    return f"{account_id}#{branch_id or '*'}"


class CatalogSnapshot(BaseModel):
    """Immutable versioned catalog snapshot.

    Stored in DynamoDB with (snapshot_key, version) as composite key.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(..., description="Merchant account identifier")
    branch_id: str | None = Field(None, description="Branch identifier, None for account-wide")
    version: int = Field(..., description="Monotonic version per account/branch", ge=1)
    content_hash: str = Field(..., description="SHA-256 of the canonical catalog")
    captured_at: datetime = Field(..., description="When the snapshot was committed")
    payload: bytes = Field(..., description="Gzip-compressed canonical catalog JSON")
    product_count: int = Field(default=0, ge=0)
    category_count: int = Field(default=0, ge=0)
    modifier_count: int = Field(default=0, ge=0)
    import_id: str | None = Field(None, description="Platform import confirming this snapshot")
    vendor_code: str | None = Field(None, description="Platform vendor code the catalog was sent to")

    @property
    def snapshot_key(self) -> str:
        return make_snapshot_key(self.account_id, self.branch_id)

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "snapshot_key": self.snapshot_key,
            "version": self.version,
            "account_id": self.account_id,
            "content_hash": self.content_hash,
            "captured_at": self.captured_at.isoformat(),
            "payload": Binary(self.payload),
            "product_count": self.product_count,
            "category_count": self.category_count,
            "modifier_count": self.modifier_count,
        }

        if self.branch_id is not None:
            item["branch_id"] = self.branch_id

        if self.import_id is not None:
            item["import_id"] = self.import_id

        if self.vendor_code is not None:
            item["vendor_code"] = self.vendor_code

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "CatalogSnapshot":
        """Create CatalogSnapshot from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            CatalogSnapshot: Parsed model instance
        """
        payload = item["payload"]
        if isinstance(payload, Binary):
            payload = payload.value

        return cls(
            account_id=item["account_id"],
            branch_id=item.get("branch_id"),
            version=int(item["version"]),
            content_hash=item["content_hash"],
            captured_at=datetime.fromisoformat(item["captured_at"]),
            payload=bytes(payload),
            product_count=int(item.get("product_count", 0)),
            category_count=int(item.get("category_count", 0)),
            modifier_count=int(item.get("modifier_count", 0)),
            import_id=item.get("import_id"),
            vendor_code=item.get("vendor_code"),
        )


class EntityUpdate(BaseModel, Generic[EntityT]):
    """An entity present in both snapshots whose comparable fields changed."""

    entity: EntityT
    changed_fields: list[str] = Field(default_factory=list)
    previous_values: dict[str, Any] = Field(default_factory=dict)


class DeltaWarning(BaseModel):
    """Data-quality warning for an entity excluded from the delta."""

    entity_type: EntityType
    entity_id: str | None = None
    entity_name: str | None = None
    code: str
    message: str


class DeltaStatistics(BaseModel):
    """Counts of changes per entity type."""

    products_added: int = 0
    products_updated: int = 0
    products_removed: int = 0
    categories_added: int = 0
    categories_updated: int = 0
    categories_removed: int = 0
    modifiers_added: int = 0
    modifiers_updated: int = 0
    modifiers_removed: int = 0
    soft_deleted: int = 0
    excluded: int = 0

    @property
    def total_changes(self) -> int:
        return (
            self.products_added
            + self.products_updated
            + self.products_removed
            + self.categories_added
            + self.categories_updated
            + self.categories_removed
            + self.modifiers_added
            + self.modifiers_updated
            + self.modifiers_removed
        )


class MenuDelta(BaseModel):
    """Change set between a baseline snapshot and the live catalog.

    Any entity id appears in at most one of the added/updated/removed
    collections of its type.
    """

    delta_id: str = Field(default_factory=lambda: f"dlt_{uuid.uuid4().hex[:16]}")
    account_id: str
    branch_id: str | None = None
    source_version: int | None = Field(None, description="Baseline snapshot version, None on first sync")
    target_version: int = Field(..., ge=1)
    computed_at: datetime

    added_products: list[Product] = Field(default_factory=list)
    updated_products: list[EntityUpdate[Product]] = Field(default_factory=list)
    removed_product_ids: list[str] = Field(default_factory=list)

    added_categories: list[Category] = Field(default_factory=list)
    updated_categories: list[EntityUpdate[Category]] = Field(default_factory=list)
    removed_category_ids: list[str] = Field(default_factory=list)

    added_modifiers: list[Modifier] = Field(default_factory=list)
    updated_modifiers: list[EntityUpdate[Modifier]] = Field(default_factory=list)
    removed_modifier_ids: list[str] = Field(default_factory=list)

    warnings: list[DeltaWarning] = Field(default_factory=list)
    statistics: DeltaStatistics = Field(default_factory=DeltaStatistics)

    @property
    def snapshot_key(self) -> str:
        return make_snapshot_key(self.account_id, self.branch_id)

    @property
    def is_empty(self) -> bool:
        return self.statistics.total_changes == 0

    def as_catalog(self) -> LiveCatalog:
        """Return the added and updated entities as a catalog, for validation."""
        return LiveCatalog(
            account_id=self.account_id,
            branch_id=self.branch_id,
            products=self.added_products + [u.entity for u in self.updated_products],
            categories=self.added_categories + [u.entity for u in self.updated_categories],
            modifiers=self.added_modifiers + [u.entity for u in self.updated_modifiers],
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        The full delta body is stored as JSON so prices keep their exact
        decimal representation.
        """
        return {
            "delta_id": self.delta_id,
            "snapshot_key": self.snapshot_key,
            "account_id": self.account_id,
            "target_version": self.target_version,
            "computed_at": self.computed_at.isoformat(),
            "total_changes": self.statistics.total_changes,
            "body": self.model_dump_json(),
        }

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "MenuDelta":
        return cls.model_validate_json(item["body"])
