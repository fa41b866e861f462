"""Canonical serialization, hashing and compression of catalogs.

Two catalogs with the same content produce byte-identical canonical JSON, and
therefore the same SHA-256 hash, regardless of entity order, decimal
formatting ("12.5" vs "12.50") or Unicode normalization form.
"""

import gzip
import hashlib
import json
import unicodedata
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from menu_sync_service.models.catalog_models import LiveCatalog


def normalize_value(value: Any) -> Any:
    """Recursively normalize a value for canonical serialization."""
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, str):
        return unicodedata.normalize("NFC", value)
    if isinstance(value, dict):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [normalize_value(v) for v in value]
    if isinstance(value, BaseModel):
        return normalize_value(value.model_dump())
    return value


def normalize_entity(entity: BaseModel, exclude: set[str] | None = None) -> dict[str, Any]:
    """Return the normalized field mapping of a catalog entity."""
    return normalize_value(entity.model_dump(exclude=exclude))  # type: ignore[no-any-return]


def canonical_catalog(catalog: LiveCatalog) -> dict[str, Any]:
    """Build the canonical content mapping of a catalog.

    Top-level entities are sorted by id; nested lists (modifier options,
    product modifier ids) keep their order since it is displayed to customers.
    Account and branch ids are not part of the content.
    """
    return {
        "products": [normalize_entity(p) for p in sorted(catalog.products, key=lambda e: e.id)],
        "categories": [
            normalize_entity(c) for c in sorted(catalog.categories, key=lambda e: e.id)
        ],
        "modifiers": [normalize_entity(m) for m in sorted(catalog.modifiers, key=lambda e: e.id)],
    }


def canonical_json(catalog: LiveCatalog) -> str:
    return json.dumps(
        canonical_catalog(catalog), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def hash_json(data: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of arbitrary data."""
    encoded = json.dumps(
        normalize_value(data), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def content_hash(catalog: LiveCatalog) -> str:
    """SHA-256 hex digest of the canonical catalog."""
    return hashlib.sha256(canonical_json(catalog).encode("utf-8")).hexdigest()


def compress_catalog(catalog: LiveCatalog) -> bytes:
    """Gzip-compress the canonical catalog JSON."""
    return gzip.compress(canonical_json(catalog).encode("utf-8"))


def decompress_catalog(payload: bytes, account_id: str, branch_id: str | None) -> LiveCatalog:
    """Rebuild a catalog from a compressed snapshot payload.

    Args:
        payload: Gzip-compressed canonical JSON
        account_id: Account the snapshot belongs to
        branch_id: Branch the snapshot belongs to

    Returns:
        LiveCatalog: Catalog with the same content hash as the one compressed
    """
    data = json.loads(gzip.decompress(payload).decode("utf-8"))
    return LiveCatalog(account_id=account_id, branch_id=branch_id, **data)
