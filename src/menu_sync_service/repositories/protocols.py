"""Repository interfaces shared by the DynamoDB and in-memory backends.

Repositories on the critical path (snapshots, idempotency) raise
``StorageUnavailableError`` / ``VersionConflictError``; audit repositories
(sync runs, deltas, DLQ) return None/False on storage errors and log.
"""

from datetime import datetime
from typing import Protocol

from menu_sync_service.models.dlq_models import DlqMessage
from menu_sync_service.models.snapshot_models import CatalogSnapshot, MenuDelta
from menu_sync_service.models.sync_models import (
    IdempotencyRecord,
    IdempotencyStatus,
    SyncRun,
)


class SnapshotRepository(Protocol):
    def get_latest(self, snapshot_key: str) -> CatalogSnapshot | None: ...

    def get_version(self, snapshot_key: str, version: int) -> CatalogSnapshot | None: ...

    def list_versions(self, snapshot_key: str, limit: int = 20) -> list[CatalogSnapshot]: ...

    def insert(self, snapshot: CatalogSnapshot) -> None:
        """Insert a new version; raise VersionConflictError if it already exists."""
        ...


class IdempotencyRepository(Protocol):
    def get(self, account_id: str, idempotency_key: str) -> IdempotencyRecord | None: ...

    def try_start(
        self,
        record: IdempotencyRecord,
        now: datetime,
        guard_cutoff: datetime,
    ) -> IdempotencyRecord | None:
        """Atomically move a key to Started.

        Succeeds when no record exists, the existing record has expired, or it
        is Failed and was last processed before ``guard_cutoff``. Returns the
        stored record on success, None if refused.
        """
        ...

    def compare_and_set(
        self,
        account_id: str,
        idempotency_key: str,
        expected: IdempotencyStatus,
        new_status: IdempotencyStatus,
        now: datetime,
        result_hash: str | None = None,
    ) -> bool: ...


class DlqRepository(Protocol):
    def save(self, message: DlqMessage) -> bool: ...

    def get(self, message_id: str) -> DlqMessage | None: ...

    def list_for_account(self, account_id: str, limit: int = 100) -> list[DlqMessage]: ...

    def list_all(self, limit: int = 100) -> list[DlqMessage]: ...


class SyncRunRepository(Protocol):
    def save(self, run: SyncRun) -> bool: ...

    def get(self, correlation_id: str) -> SyncRun | None: ...

    def list_for_account(self, account_id: str, limit: int = 50) -> list[SyncRun]: ...


class DeltaRepository(Protocol):
    def save(self, delta: MenuDelta) -> bool: ...

    def get(self, delta_id: str) -> MenuDelta | None: ...

    def list_for_key(self, snapshot_key: str, limit: int = 20) -> list[MenuDelta]: ...
