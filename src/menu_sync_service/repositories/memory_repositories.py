"""In-memory repository implementations.

Used for local development (STORAGE_BACKEND=memory) and tests. Each
repository serializes access with a lock so conditional writes are atomic in
the same way DynamoDB condition expressions are.
"""

import threading
from datetime import datetime

from menu_sync_service.errors import VersionConflictError
from menu_sync_service.models.dlq_models import DlqMessage
from menu_sync_service.models.snapshot_models import CatalogSnapshot, MenuDelta
from menu_sync_service.models.sync_models import (
    IdempotencyRecord,
    IdempotencyStatus,
    SyncRun,
    make_idempotency_key,
)


class InMemorySnapshotRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[str, dict[int, CatalogSnapshot]] = {}

    def get_latest(self, snapshot_key: str) -> CatalogSnapshot | None:
        with self._lock:
            versions = self._snapshots.get(snapshot_key)
            if not versions:
                return None
            return versions[max(versions)]

    def get_version(self, snapshot_key: str, version: int) -> CatalogSnapshot | None:
        with self._lock:
            return self._snapshots.get(snapshot_key, {}).get(version)

    def list_versions(self, snapshot_key: str, limit: int = 20) -> list[CatalogSnapshot]:
        with self._lock:
            versions = self._snapshots.get(snapshot_key, {})
            return [versions[v] for v in sorted(versions, reverse=True)[:limit]]

    def insert(self, snapshot: CatalogSnapshot) -> None:
        with self._lock:
            versions = self._snapshots.setdefault(snapshot.snapshot_key, {})
            if snapshot.version in versions:
                raise VersionConflictError(snapshot.account_id, snapshot.branch_id, snapshot.version)
            versions[snapshot.version] = snapshot


class InMemoryIdempotencyRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, IdempotencyRecord] = {}

    def get(self, account_id: str, idempotency_key: str) -> IdempotencyRecord | None:
        with self._lock:
            record = self._records.get(make_idempotency_key(account_id, idempotency_key))
            return record.model_copy() if record else None

    def try_start(
        self,
        record: IdempotencyRecord,
        now: datetime,
        guard_cutoff: datetime,
    ) -> IdempotencyRecord | None:
        with self._lock:
            existing = self._records.get(record.record_key)
            if existing is not None and not existing.is_expired(now):
                failed_long_enough = (
                    existing.status == IdempotencyStatus.FAILED
                    and existing.last_processed_at < guard_cutoff
                )
                if not failed_long_enough:
                    return None
                record = record.model_copy(update={"first_seen_at": existing.first_seen_at})

            stored = record.model_copy(
                update={"status": IdempotencyStatus.STARTED, "last_processed_at": now}
            )
            self._records[stored.record_key] = stored
            return stored.model_copy()

    def compare_and_set(
        self,
        account_id: str,
        idempotency_key: str,
        expected: IdempotencyStatus,
        new_status: IdempotencyStatus,
        now: datetime,
        result_hash: str | None = None,
    ) -> bool:
        key = make_idempotency_key(account_id, idempotency_key)
        with self._lock:
            existing = self._records.get(key)
            if existing is None or existing.status != expected:
                return False
            update: dict[str, object] = {"status": new_status, "last_processed_at": now}
            if result_hash is not None:
                update["result_hash"] = result_hash
            self._records[key] = existing.model_copy(update=update)
            return True


class InMemoryDlqRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: dict[str, DlqMessage] = {}

    def save(self, message: DlqMessage) -> bool:
        with self._lock:
            self._messages[message.message_id] = message.model_copy(deep=True)
            return True

    def get(self, message_id: str) -> DlqMessage | None:
        with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    def list_for_account(self, account_id: str, limit: int = 100) -> list[DlqMessage]:
        with self._lock:
            messages = [m for m in self._messages.values() if m.account_id == account_id]
        messages.sort(key=lambda m: m.created_at, reverse=True)
        return [m.model_copy(deep=True) for m in messages[:limit]]

    def list_all(self, limit: int = 100) -> list[DlqMessage]:
        with self._lock:
            messages = list(self._messages.values())
        messages.sort(key=lambda m: m.created_at, reverse=True)
        return [m.model_copy(deep=True) for m in messages[:limit]]


class InMemorySyncRunRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, SyncRun] = {}

    def save(self, run: SyncRun) -> bool:
        with self._lock:
            self._runs[run.correlation_id] = run.model_copy(deep=True)
            return True

    def get(self, correlation_id: str) -> SyncRun | None:
        with self._lock:
            run = self._runs.get(correlation_id)
            return run.model_copy(deep=True) if run else None

    def list_for_account(self, account_id: str, limit: int = 50) -> list[SyncRun]:
        with self._lock:
            runs = [r for r in self._runs.values() if r.account_id == account_id]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs[:limit]]


class InMemoryDeltaRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._deltas: dict[str, MenuDelta] = {}

    def save(self, delta: MenuDelta) -> bool:
        with self._lock:
            self._deltas[delta.delta_id] = delta
            return True

    def get(self, delta_id: str) -> MenuDelta | None:
        with self._lock:
            return self._deltas.get(delta_id)

    def list_for_key(self, snapshot_key: str, limit: int = 20) -> list[MenuDelta]:
        with self._lock:
            deltas = [d for d in self._deltas.values() if d.snapshot_key == snapshot_key]
        deltas.sort(key=lambda d: d.target_version, reverse=True)
        return deltas[:limit]
