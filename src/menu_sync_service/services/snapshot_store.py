"""Snapshot store for versioned, hashed, compressed catalog snapshots."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from menu_sync_service.models.catalog_models import LiveCatalog
from menu_sync_service.models.snapshot_models import CatalogSnapshot, make_snapshot_key
from menu_sync_service.repositories.protocols import SnapshotRepository
from menu_sync_service.services.catalog_hashing import (
    compress_catalog,
    content_hash,
    decompress_catalog,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class SnapshotStore:
    """Service for reading and committing catalog snapshots.

    Versions are strictly increasing per (account, branch). A commit is based
    on the version the caller diffed against: it inserts ``base_version + 1``
    with a conditional write, so two workers racing from the same baseline
    cannot both win. The loser gets ``VersionConflictError`` and must re-run
    against the new latest snapshot.
    """

    def __init__(
        self,
        repository: SnapshotRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the SnapshotStore.

        Args:
            repository: Snapshot persistence backend
            clock: Source of the current time
        """
        self.repository = repository
        self.clock = clock

    async def get_latest(self, account_id: str, branch_id: str | None) -> CatalogSnapshot | None:
        """Get the latest committed snapshot, or None before the first sync."""
        return self.repository.get_latest(make_snapshot_key(account_id, branch_id))

    async def get_version(
        self, account_id: str, branch_id: str | None, version: int
    ) -> CatalogSnapshot | None:
        return self.repository.get_version(make_snapshot_key(account_id, branch_id), version)

    async def list_versions(
        self, account_id: str, branch_id: str | None, limit: int = 20
    ) -> list[CatalogSnapshot]:
        return self.repository.list_versions(make_snapshot_key(account_id, branch_id), limit)

    async def commit(
        self,
        catalog: LiveCatalog,
        base_version: int | None,
        import_id: str | None = None,
        vendor_code: str | None = None,
    ) -> CatalogSnapshot:
        """Commit a confirmed catalog as the next snapshot version.

        Args:
            catalog: The catalog the platform accepted
            base_version: Version of the snapshot the delta was computed against,
                None when there was no prior snapshot
            import_id: Platform import id confirming the submission
            vendor_code: Platform vendor code the catalog was sent to

        Returns:
            CatalogSnapshot: The committed snapshot

        Raises:
            VersionConflictError: If another worker already committed this version
            StorageUnavailableError: If storage cannot be reached
        """
        snapshot = CatalogSnapshot(
            account_id=catalog.account_id,
            branch_id=catalog.branch_id,
            version=(base_version or 0) + 1,
            content_hash=content_hash(catalog),
            captured_at=self.clock(),
            payload=compress_catalog(catalog),
            product_count=len(catalog.products),
            category_count=len(catalog.categories),
            modifier_count=len(catalog.modifiers),
            import_id=import_id,
            vendor_code=vendor_code,
        )

        self.repository.insert(snapshot)

        logger.info(
            f"Committed snapshot v{snapshot.version} for {snapshot.snapshot_key} "
            f"(hash {snapshot.content_hash[:12]}, {len(snapshot.payload)} bytes)"
        )
        return snapshot

    def load_catalog(self, snapshot: CatalogSnapshot) -> LiveCatalog:
        """Decompress a snapshot back into a catalog."""
        return decompress_catalog(snapshot.payload, snapshot.account_id, snapshot.branch_id)
