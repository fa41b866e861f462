"""Unit tests for DynamoDB repository classes."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from menu_sync_service.errors import StorageUnavailableError, VersionConflictError
from menu_sync_service.models.dlq_models import DlqMessage, FailureType
from menu_sync_service.models.snapshot_models import CatalogSnapshot
from menu_sync_service.models.sync_models import (
    IdempotencyRecord,
    IdempotencyStatus,
    SyncRun,
    TriggerSource,
)
from menu_sync_service.repositories.sync_repositories import (
    DynamoDeltaRepository,
    DynamoDlqRepository,
    DynamoIdempotencyRepository,
    DynamoSnapshotRepository,
    DynamoSyncRunRepository,
)

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


def client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "Server error"}}, operation)


def make_snapshot(version: int = 1) -> CatalogSnapshot:
    return CatalogSnapshot(
        account_id="acct_1",
        branch_id="branch_1",
        version=version,
        content_hash="a" * 64,
        captured_at=NOW,
        payload=b"payload",
        product_count=2,
    )


def make_record(status: IdempotencyStatus = IdempotencyStatus.STARTED) -> IdempotencyRecord:
    return IdempotencyRecord(
        account_id="acct_1",
        idempotency_key="key_1",
        status=status,
        first_seen_at=NOW,
        last_processed_at=NOW,
        expires_at=NOW + timedelta(days=1),
        correlation_id="corr_1",
    )


@pytest.fixture
def mock_dynamodb() -> MagicMock:
    """Create a mock DynamoDB resource."""
    return MagicMock()


@pytest.fixture
def table(mock_dynamodb: MagicMock) -> MagicMock:
    return mock_dynamodb.Table.return_value


@pytest.mark.unit
class TestDynamoSnapshotRepository:
    """Test suite for DynamoSnapshotRepository."""

    @pytest.fixture
    def repository(self, mock_dynamodb: MagicMock) -> DynamoSnapshotRepository:
        return DynamoSnapshotRepository(mock_dynamodb, "test-snapshots")

    def test_repository_initialization(self, mock_dynamodb: MagicMock) -> None:
        """Test that repository initializes correctly."""
        repo = DynamoSnapshotRepository(dynamodb_resource=mock_dynamodb, table_name="test-table")
        assert repo.table_name == "test-table"
        mock_dynamodb.Table.assert_called_once_with("test-table")

    def test_get_latest_queries_highest_version(
        self, repository: DynamoSnapshotRepository, table: MagicMock
    ) -> None:
        table.query.return_value = {"Items": [make_snapshot(4).to_dynamodb_item()]}

        snapshot = repository.get_latest("acct_1#branch_1")

        assert snapshot is not None
        assert snapshot.version == 4
        kwargs = table.query.call_args.kwargs
        assert kwargs["ScanIndexForward"] is False
        assert kwargs["Limit"] == 1

    def test_get_latest_none_before_first_sync(
        self, repository: DynamoSnapshotRepository, table: MagicMock
    ) -> None:
        table.query.return_value = {"Items": []}

        assert repository.get_latest("acct_1#branch_1") is None

    def test_read_errors_raise_storage_unavailable(
        self, repository: DynamoSnapshotRepository, table: MagicMock
    ) -> None:
        """Test that snapshot reads fail loudly instead of looking like a first sync."""
        table.query.side_effect = client_error("InternalServerError", "Query")

        with pytest.raises(StorageUnavailableError):
            repository.get_latest("acct_1#branch_1")

    def test_insert_is_conditional(
        self, repository: DynamoSnapshotRepository, table: MagicMock
    ) -> None:
        repository.insert(make_snapshot(2))

        kwargs = table.put_item.call_args.kwargs
        assert kwargs["Item"]["version"] == 2
        assert "attribute_not_exists" in kwargs["ConditionExpression"]

    def test_insert_conflict(self, repository: DynamoSnapshotRepository, table: MagicMock) -> None:
        table.put_item.side_effect = client_error("ConditionalCheckFailedException")

        with pytest.raises(VersionConflictError) as exc_info:
            repository.insert(make_snapshot(2))

        assert exc_info.value.version == 2

    def test_insert_other_error(self, repository: DynamoSnapshotRepository, table: MagicMock) -> None:
        table.put_item.side_effect = client_error("ProvisionedThroughputExceededException")

        with pytest.raises(StorageUnavailableError):
            repository.insert(make_snapshot(2))

    def test_get_version(self, repository: DynamoSnapshotRepository, table: MagicMock) -> None:
        table.get_item.return_value = {}

        assert repository.get_version("acct_1#branch_1", 9) is None
        table.get_item.assert_called_once_with(Key={"snapshot_key": "acct_1#branch_1", "version": 9})


@pytest.mark.unit
class TestDynamoIdempotencyRepository:
    """Test suite for DynamoIdempotencyRepository."""

    @pytest.fixture
    def repository(self, mock_dynamodb: MagicMock) -> DynamoIdempotencyRepository:
        return DynamoIdempotencyRepository(mock_dynamodb, "test-idempotency")

    def test_try_start_fresh_record_is_put(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        """Test that an absent or expired key is replaced by a fresh record."""
        stale = make_record().model_copy(
            update={"first_seen_at": NOW - timedelta(days=2), "result_hash": "old-hash"}
        )

        stored = repository.try_start(stale, now=NOW, guard_cutoff=NOW - timedelta(seconds=30))

        assert stored is not None
        assert stored.status == IdempotencyStatus.STARTED
        assert stored.first_seen_at == NOW
        assert stored.result_hash is None
        kwargs = table.put_item.call_args.kwargs
        assert kwargs["ConditionExpression"] == "attribute_not_exists(record_key) OR #ttl <= :now_epoch"
        assert kwargs["ExpressionAttributeValues"] == {":now_epoch": int(NOW.timestamp())}
        assert kwargs["Item"]["first_seen_at"] == NOW.isoformat()
        assert "result_hash" not in kwargs["Item"]
        table.update_item.assert_not_called()

    def test_try_start_reclaims_failed_record(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        """Test that a Failed record past the guard keeps first_seen_at and drops result_hash."""
        first_seen = NOW - timedelta(hours=2)
        table.put_item.side_effect = client_error("ConditionalCheckFailedException")
        table.update_item.return_value = {
            "Attributes": make_record().model_copy(update={"first_seen_at": first_seen}).to_dynamodb_item()
        }

        stored = repository.try_start(make_record(), now=NOW, guard_cutoff=NOW - timedelta(seconds=30))

        assert stored is not None
        assert stored.first_seen_at == first_seen
        kwargs = table.update_item.call_args.kwargs
        assert kwargs["Key"] == {"record_key": "acct_1#key_1"}
        assert "first_seen_at" not in kwargs["UpdateExpression"]
        assert kwargs["UpdateExpression"].endswith("REMOVE result_hash")
        assert kwargs["ExpressionAttributeValues"][":guard_epoch"] == int(
            (NOW - timedelta(seconds=30)).timestamp()
        )

    def test_try_start_refused(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        table.put_item.side_effect = client_error("ConditionalCheckFailedException")
        table.update_item.side_effect = client_error("ConditionalCheckFailedException", "UpdateItem")

        assert repository.try_start(make_record(), now=NOW, guard_cutoff=NOW) is None

    def test_try_start_storage_error_on_put(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        table.put_item.side_effect = client_error("InternalServerError")

        with pytest.raises(StorageUnavailableError):
            repository.try_start(make_record(), now=NOW, guard_cutoff=NOW)

        table.update_item.assert_not_called()

    def test_try_start_storage_error_on_reclaim(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        table.put_item.side_effect = client_error("ConditionalCheckFailedException")
        table.update_item.side_effect = client_error("InternalServerError", "UpdateItem")

        with pytest.raises(StorageUnavailableError):
            repository.try_start(make_record(), now=NOW, guard_cutoff=NOW)

    def test_compare_and_set(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        changed = repository.compare_and_set(
            "acct_1",
            "key_1",
            expected=IdempotencyStatus.STARTED,
            new_status=IdempotencyStatus.SUCCEEDED,
            now=NOW,
            result_hash="abc",
        )

        assert changed is True
        kwargs = table.update_item.call_args.kwargs
        assert kwargs["ConditionExpression"] == "#status = :expected"
        assert kwargs["ExpressionAttributeValues"][":hash"] == "abc"

    def test_compare_and_set_wrong_state(
        self, repository: DynamoIdempotencyRepository, table: MagicMock
    ) -> None:
        table.update_item.side_effect = client_error("ConditionalCheckFailedException", "UpdateItem")

        assert (
            repository.compare_and_set(
                "acct_1",
                "key_1",
                expected=IdempotencyStatus.STARTED,
                new_status=IdempotencyStatus.FAILED,
                now=NOW,
            )
            is False
        )

    def test_get(self, repository: DynamoIdempotencyRepository, table: MagicMock) -> None:
        table.get_item.return_value = {"Item": make_record(IdempotencyStatus.FAILED).to_dynamodb_item()}

        record = repository.get("acct_1", "key_1")

        assert record is not None
        assert record.status == IdempotencyStatus.FAILED


@pytest.mark.unit
class TestAuditRepositories:
    """Test suite for the DLQ, sync run and delta repositories."""

    def test_dlq_save_and_get(self, mock_dynamodb: MagicMock, table: MagicMock) -> None:
        repository = DynamoDlqRepository(mock_dynamodb, "test-dlq")
        message = DlqMessage(
            correlation_id="corr_1",
            account_id="acct_1",
            original_payload={"account_id": "acct_1", "idempotency_key": "key_1"},
            error_code="PLATFORM_TIMEOUT",
            error_message="timed out",
            failure_type=FailureType.TRANSIENT,
            created_at=NOW,
        )

        assert repository.save(message) is True
        table.get_item.return_value = {"Item": table.put_item.call_args.kwargs["Item"]}

        assert repository.get(message.message_id) == message

    def test_dlq_errors_return_defaults(self, mock_dynamodb: MagicMock, table: MagicMock) -> None:
        """Test that DynamoDB errors return None, False or empty lists."""
        repository = DynamoDlqRepository(mock_dynamodb, "test-dlq")
        table.get_item.side_effect = client_error("InternalServerError", "GetItem")
        table.query.side_effect = client_error("InternalServerError", "Query")
        table.scan.side_effect = client_error("InternalServerError", "Scan")

        assert repository.get("dlq_1") is None
        assert repository.list_for_account("acct_1") == []
        assert repository.list_all() == []

    def test_dlq_list_for_account_uses_index(
        self, mock_dynamodb: MagicMock, table: MagicMock
    ) -> None:
        repository = DynamoDlqRepository(mock_dynamodb, "test-dlq")
        table.query.return_value = {"Items": []}

        repository.list_for_account("acct_1", limit=5)

        kwargs = table.query.call_args.kwargs
        assert kwargs["IndexName"] == "account_id-index"
        assert kwargs["Limit"] == 5

    def test_sync_run_save_error(self, mock_dynamodb: MagicMock, table: MagicMock) -> None:
        repository = DynamoSyncRunRepository(mock_dynamodb, "test-runs")
        table.put_item.side_effect = client_error("InternalServerError")
        run = SyncRun(
            correlation_id="corr_1",
            account_id="acct_1",
            idempotency_key="key_1",
            trigger_source=TriggerSource.SCHEDULE,
            started_at=NOW,
        )

        assert repository.save(run) is False

    def test_sync_run_get_not_found(self, mock_dynamodb: MagicMock, table: MagicMock) -> None:
        table.get_item.return_value = {}

        assert DynamoSyncRunRepository(mock_dynamodb, "test-runs").get("corr_1") is None

    def test_delta_list_for_key(self, mock_dynamodb: MagicMock, table: MagicMock) -> None:
        table.query.return_value = {"Items": []}

        assert DynamoDeltaRepository(mock_dynamodb, "test-deltas").list_for_key("acct_1#*") == []
        assert table.query.call_args.kwargs["IndexName"] == "snapshot_key-index"
