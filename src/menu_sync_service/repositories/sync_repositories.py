"""DynamoDB repository classes for sync models.

Audit repositories (sync runs, deltas, DLQ) use simple return values
(None/False/[]) for storage failures. The snapshot and idempotency
repositories guard correctness, so they use conditional writes and raise
typed errors instead.
"""

import logging
from datetime import datetime

from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from menu_sync_service.errors import StorageUnavailableError, VersionConflictError
from menu_sync_service.models.dlq_models import DlqMessage
from menu_sync_service.models.snapshot_models import CatalogSnapshot, MenuDelta
from menu_sync_service.models.sync_models import (
    IdempotencyRecord,
    IdempotencyStatus,
    SyncRun,
    make_idempotency_key,
)

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


class _DynamoRepository:
    """Shared table wiring for all DynamoDB repositories."""

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)


class DynamoSnapshotRepository(_DynamoRepository):
    """Repository for catalog snapshots.

    Composite key (snapshot_key, version); versions are only ever inserted,
    never overwritten.
    """

    def get_latest(self, snapshot_key: str) -> CatalogSnapshot | None:
        """Retrieve the highest version for an account/branch.

        Raises:
            StorageUnavailableError: If DynamoDB cannot be read
        """
        try:
            response = self.table.query(
                KeyConditionExpression="snapshot_key = :key",
                ExpressionAttributeValues={":key": snapshot_key},
                ScanIndexForward=False,  # Highest version first
                Limit=1,
            )
        except ClientError as e:
            raise StorageUnavailableError(f"Failed to read latest snapshot: {e}") from e

        items = response.get("Items", [])
        if not items:
            return None

        return CatalogSnapshot.from_dynamodb_item(items[0])

    def get_version(self, snapshot_key: str, version: int) -> CatalogSnapshot | None:
        try:
            response = self.table.get_item(Key={"snapshot_key": snapshot_key, "version": version})
        except ClientError as e:
            raise StorageUnavailableError(f"Failed to read snapshot version: {e}") from e

        if "Item" not in response:
            return None

        return CatalogSnapshot.from_dynamodb_item(response["Item"])

    def list_versions(self, snapshot_key: str, limit: int = 20) -> list[CatalogSnapshot]:
        try:
            response = self.table.query(
                KeyConditionExpression="snapshot_key = :key",
                ExpressionAttributeValues={":key": snapshot_key},
                ScanIndexForward=False,
                Limit=limit,
            )
        except ClientError as e:
            raise StorageUnavailableError(f"Failed to list snapshots: {e}") from e

        return [CatalogSnapshot.from_dynamodb_item(item) for item in response.get("Items", [])]

    def insert(self, snapshot: CatalogSnapshot) -> None:
        """Insert a new snapshot version with a conditional write.

        Raises:
            VersionConflictError: If the version already exists
            StorageUnavailableError: On any other DynamoDB error
        """
        try:
            self.table.put_item(
                Item=snapshot.to_dynamodb_item(),
                ConditionExpression="attribute_not_exists(snapshot_key) AND attribute_not_exists(version)",
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise VersionConflictError(
                    snapshot.account_id, snapshot.branch_id, snapshot.version
                ) from e
            raise StorageUnavailableError(f"Failed to insert snapshot: {e}") from e


class DynamoIdempotencyRepository(_DynamoRepository):
    """Repository for idempotency records keyed by "<account_id>#<idempotency_key>"."""

    def get(self, account_id: str, idempotency_key: str) -> IdempotencyRecord | None:
        try:
            response = self.table.get_item(
                Key={"record_key": make_idempotency_key(account_id, idempotency_key)}
            )
        except ClientError as e:
            raise StorageUnavailableError(f"Failed to read idempotency record: {e}") from e

        if "Item" not in response:
            return None

        return IdempotencyRecord.from_dynamodb_item(response["Item"])

    def try_start(
        self,
        record: IdempotencyRecord,
        now: datetime,
        guard_cutoff: datetime,
    ) -> IdempotencyRecord | None:
        """Conditionally move a key to Started.

        An absent or expired record is replaced by a fresh one. A Failed
        record older than the guard cutoff is reclaimed in place, keeping its
        ``first_seen_at``. Each path is a single conditional write.

        Returns:
            The stored record, or None if another state blocks processing
        """
        fresh = record.model_copy(
            update={
                "status": IdempotencyStatus.STARTED,
                "first_seen_at": now,
                "last_processed_at": now,
                "result_hash": None,
            }
        )
        try:
            self.table.put_item(
                Item=fresh.to_dynamodb_item(),
                ConditionExpression="attribute_not_exists(record_key) OR #ttl <= :now_epoch",
                ExpressionAttributeNames={"#ttl": "ttl"},
                ExpressionAttributeValues={":now_epoch": int(now.timestamp())},
            )
            return fresh
        except ClientError as e:
            if not _is_conditional_failure(e):
                raise StorageUnavailableError(f"Failed to start idempotency record: {e}") from e

        try:
            response = self.table.update_item(
                Key={"record_key": record.record_key},
                UpdateExpression=(
                    "SET #status = :started, last_processed_at = :now_iso, "
                    "last_processed_epoch = :now_epoch, expires_at = :expires_iso, #ttl = :ttl, "
                    "correlation_id = :correlation REMOVE result_hash"
                ),
                ConditionExpression=(
                    "#status = :failed AND last_processed_epoch < :guard_epoch AND #ttl > :now_epoch"
                ),
                ExpressionAttributeNames={"#status": "status", "#ttl": "ttl"},
                ExpressionAttributeValues={
                    ":started": IdempotencyStatus.STARTED.value,
                    ":failed": IdempotencyStatus.FAILED.value,
                    ":now_iso": now.isoformat(),
                    ":now_epoch": int(now.timestamp()),
                    ":guard_epoch": int(guard_cutoff.timestamp()),
                    ":expires_iso": record.expires_at.isoformat(),
                    ":ttl": int(record.expires_at.timestamp()),
                    ":correlation": record.correlation_id,
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return None
            raise StorageUnavailableError(f"Failed to reclaim idempotency record: {e}") from e

        return IdempotencyRecord.from_dynamodb_item(response["Attributes"])

    def compare_and_set(
        self,
        account_id: str,
        idempotency_key: str,
        expected: IdempotencyStatus,
        new_status: IdempotencyStatus,
        now: datetime,
        result_hash: str | None = None,
    ) -> bool:
        update_expression = (
            "SET #status = :new, last_processed_at = :now_iso, last_processed_epoch = :now_epoch"
        )
        values: dict[str, object] = {
            ":new": new_status.value,
            ":expected": expected.value,
            ":now_iso": now.isoformat(),
            ":now_epoch": int(now.timestamp()),
        }
        if result_hash is not None:
            update_expression += ", result_hash = :hash"
            values[":hash"] = result_hash

        try:
            self.table.update_item(
                Key={"record_key": make_idempotency_key(account_id, idempotency_key)},
                UpdateExpression=update_expression,
                ConditionExpression="#status = :expected",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues=values,  # type: ignore[arg-type]
            )
            return True

        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise StorageUnavailableError(f"Failed to update idempotency record: {e}") from e


class DynamoDlqRepository(_DynamoRepository):
    """Repository for DLQ messages with message_id as partition key."""

    def save(self, message: DlqMessage) -> bool:
        try:
            self.table.put_item(Item=message.to_dynamodb_item())
            return True

        except ClientError as e:
            logger.error(f"Failed to save DLQ message {message.message_id}: {e}")  # pragma: no cover
            return False

    def get(self, message_id: str) -> DlqMessage | None:
        try:
            response = self.table.get_item(Key={"message_id": message_id})

            if "Item" not in response:
                return None

            return DlqMessage.from_dynamodb_item(response["Item"])

        except ClientError as e:
            logger.error(f"Failed to get DLQ message: {e}")  # pragma: no cover
            return None

    def list_for_account(self, account_id: str, limit: int = 100) -> list[DlqMessage]:
        """List DLQ messages for an account, newest first.

        Uses a Global Secondary Index on account_id.
        """
        try:
            response = self.table.query(
                IndexName="account_id-index",
                KeyConditionExpression="account_id = :aid",
                ExpressionAttributeValues={":aid": account_id},
                Limit=limit,
                ScanIndexForward=False,  # Most recent first
            )

            return [DlqMessage.from_dynamodb_item(item) for item in response.get("Items", [])]

        except ClientError as e:
            logger.error(f"Failed to list DLQ messages: {e}")  # pragma: no cover
            return []

    def list_all(self, limit: int = 100) -> list[DlqMessage]:
        try:
            response = self.table.scan(Limit=limit)
            return [DlqMessage.from_dynamodb_item(item) for item in response.get("Items", [])]

        except ClientError as e:
            logger.error(f"Failed to scan DLQ messages: {e}")  # pragma: no cover
            return []


class DynamoSyncRunRepository(_DynamoRepository):
    """Repository for sync runs with correlation_id as partition key."""

    def save(self, run: SyncRun) -> bool:
        try:
            self.table.put_item(Item=run.to_dynamodb_item())
            return True

        except ClientError as e:
            logger.error(f"Failed to save sync run: {e}")  # pragma: no cover
            return False

    def get(self, correlation_id: str) -> SyncRun | None:
        try:
            response = self.table.get_item(Key={"correlation_id": correlation_id})

            if "Item" not in response:
                return None

            return SyncRun.from_dynamodb_item(response["Item"])

        except ClientError as e:
            logger.error(f"Failed to get sync run: {e}")  # pragma: no cover
            return None

    def list_for_account(self, account_id: str, limit: int = 50) -> list[SyncRun]:
        """List recent sync runs for an account.

        Uses a Global Secondary Index on account_id sorted by started_at.
        """
        try:
            response = self.table.query(
                IndexName="account_id-index",
                KeyConditionExpression="account_id = :aid",
                ExpressionAttributeValues={":aid": account_id},
                Limit=limit,
                ScanIndexForward=False,
            )

            return [SyncRun.from_dynamodb_item(item) for item in response.get("Items", [])]

        except ClientError as e:
            logger.error(f"Failed to list sync runs: {e}")  # pragma: no cover
            return []


class DynamoDeltaRepository(_DynamoRepository):
    """Repository for computed deltas with delta_id as partition key."""

    def save(self, delta: MenuDelta) -> bool:
        try:
            self.table.put_item(Item=delta.to_dynamodb_item())
            return True

        except ClientError as e:
            logger.error(f"Failed to save delta: {e}")  # pragma: no cover
            return False

    def get(self, delta_id: str) -> MenuDelta | None:
        try:
            response = self.table.get_item(Key={"delta_id": delta_id})

            if "Item" not in response:
                return None

            return MenuDelta.from_dynamodb_item(response["Item"])

        except ClientError as e:
            logger.error(f"Failed to get delta: {e}")  # pragma: no cover
            return None

    def list_for_key(self, snapshot_key: str, limit: int = 20) -> list[MenuDelta]:
        """List deltas for an account/branch, newest version first.

        Uses a Global Secondary Index on snapshot_key sorted by target_version.
        """
        try:
            response = self.table.query(
                IndexName="snapshot_key-index",
                KeyConditionExpression="snapshot_key = :key",
                ExpressionAttributeValues={":key": snapshot_key},
                Limit=limit,
                ScanIndexForward=False,
            )

            return [MenuDelta.from_dynamodb_item(item) for item in response.get("Items", [])]

        except ClientError as e:
            logger.error(f"Failed to list deltas: {e}")  # pragma: no cover
            return []
