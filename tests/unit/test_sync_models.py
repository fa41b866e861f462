"""Unit tests for sync, snapshot and DLQ models."""

from datetime import UTC, datetime, timedelta

import pytest
from boto3.dynamodb.types import Binary
from pydantic import ValidationError as PydanticValidationError

from menu_sync_service.models.dlq_models import (
    BulkReplayResult,
    DlqFilter,
    DlqMessage,
    DlqPriority,
    FailureType,
)
from menu_sync_service.models.snapshot_models import CatalogSnapshot, make_snapshot_key
from menu_sync_service.models.sync_models import (
    IdempotencyRecord,
    IdempotencyStatus,
    SyncPhase,
    SyncRequest,
    SyncRun,
    SyncRunStatus,
    TriggerSource,
)

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


def make_dlq_message(**overrides: object) -> DlqMessage:
    request = SyncRequest(account_id="acct_1", branch_id="branch_1", idempotency_key="key_1")
    data: dict[str, object] = {
        "correlation_id": request.correlation_id,
        "account_id": "acct_1",
        "branch_id": "branch_1",
        "original_payload": request.model_dump(mode="json"),
        "error_code": "VALIDATION_FAILED",
        "error_message": "Validation failed: 1 critical, 0 errors, 0 warnings",
        "failure_type": FailureType.PERMANENT,
        "created_at": NOW,
    }
    data.update(overrides)
    return DlqMessage(**data)


@pytest.mark.unit
class TestSyncRequest:
    """Test suite for SyncRequest model."""

    def test_defaults(self) -> None:
        """Test that a new request is a first scheduled attempt."""
        request = SyncRequest(account_id="acct_1", idempotency_key="key_1")

        assert request.attempt == 1
        assert request.trigger_source == TriggerSource.SCHEDULE
        assert request.first_attempt_at is None
        assert len(request.correlation_id) == 32

    def test_rejects_blank_account(self) -> None:
        """Test that account_id is required."""
        with pytest.raises(PydanticValidationError):
            SyncRequest(account_id="", idempotency_key="key_1")

    def test_next_attempt_keeps_identity(self) -> None:
        """Test that a retry carries the same keys and increments the attempt."""
        request = SyncRequest(account_id="acct_1", idempotency_key="key_1", first_attempt_at=NOW)

        retry = request.next_attempt()

        assert retry.attempt == 2
        assert retry.trigger_source == TriggerSource.RETRY
        assert retry.idempotency_key == request.idempotency_key
        assert retry.correlation_id == request.correlation_id
        assert retry.first_attempt_at == NOW
        assert request.attempt == 1

    def test_for_replay_resets_attempts(self) -> None:
        """Test that a replayed request starts a fresh retry budget."""
        request = SyncRequest(
            account_id="acct_1", idempotency_key="key_1", attempt=3, first_attempt_at=NOW
        )

        replay = request.for_replay()

        assert replay.attempt == 1
        assert replay.trigger_source == TriggerSource.REPLAY
        assert replay.first_attempt_at is None
        assert replay.idempotency_key == "key_1"

    @pytest.mark.parametrize(
        ("vendor_code", "branch_id", "expected"),
        [("v_9", "branch_1", "v_9"), (None, "branch_1", "branch_1"), (None, None, "acct_1")],
    )
    def test_resolved_vendor_code(
        self, vendor_code: str | None, branch_id: str | None, expected: str
    ) -> None:
        request = SyncRequest(
            account_id="acct_1", branch_id=branch_id, vendor_code=vendor_code, idempotency_key="k"
        )

        assert request.resolved_vendor_code == expected


@pytest.mark.unit
class TestIdempotencyRecord:
    """Test suite for IdempotencyRecord model."""

    def test_dynamodb_round_trip(self) -> None:
        """Test converting to and from DynamoDB item format."""
        record = IdempotencyRecord(
            account_id="acct_1",
            idempotency_key="key_1",
            status=IdempotencyStatus.SUCCEEDED,
            first_seen_at=NOW,
            last_processed_at=NOW,
            expires_at=NOW + timedelta(days=1),
            result_hash="abc",
        )

        item = record.to_dynamodb_item()

        assert item["record_key"] == "acct_1#key_1"
        assert item["status"] == "succeeded"
        assert item["ttl"] == int((NOW + timedelta(days=1)).timestamp())
        assert "correlation_id" not in item
        assert IdempotencyRecord.from_dynamodb_item(item) == record

    def test_is_expired(self) -> None:
        record = IdempotencyRecord(
            account_id="acct_1",
            idempotency_key="key_1",
            status=IdempotencyStatus.STARTED,
            first_seen_at=NOW,
            last_processed_at=NOW,
            expires_at=NOW + timedelta(seconds=10),
        )

        assert record.is_expired(NOW) is False
        assert record.is_expired(NOW + timedelta(seconds=10)) is True


@pytest.mark.unit
class TestSyncRun:
    """Test suite for SyncRun model."""

    def test_add_step_numbers_sequentially(self) -> None:
        """Test that steps get consecutive sequence numbers."""
        run = SyncRun(
            correlation_id="corr_1",
            account_id="acct_1",
            idempotency_key="key_1",
            trigger_source=TriggerSource.MANUAL,
            started_at=NOW,
        )

        run.add_step(SyncPhase.RECEIVED, NOW, attempt=1)
        step = run.add_step(SyncPhase.DIFFING, NOW, attempt=1, message="diffing")

        assert step.sequence_number == 2
        assert [s.phase for s in run.steps] == [SyncPhase.RECEIVED, SyncPhase.DIFFING]

    def test_attempt_count_must_be_positive(self) -> None:
        with pytest.raises(PydanticValidationError):
            SyncRun(
                correlation_id="corr_1",
                account_id="acct_1",
                idempotency_key="key_1",
                trigger_source=TriggerSource.MANUAL,
                started_at=NOW,
                attempt_count=0,
            )

    def test_dynamodb_round_trip(self) -> None:
        """Test converting to and from DynamoDB item format."""
        run = SyncRun(
            correlation_id="corr_1",
            account_id="acct_1",
            branch_id="branch_1",
            idempotency_key="key_1",
            trigger_source=TriggerSource.WEBHOOK,
            status=SyncRunStatus.COMPLETED,
            attempt_count=2,
            started_at=NOW,
            completed_at=NOW + timedelta(minutes=1),
            metrics={"total_changes": 3},
        )
        run.add_step(SyncPhase.SUCCEEDED, NOW, attempt=2)

        item = run.to_dynamodb_item()

        assert item["status"] == "completed"
        assert item["steps"][0]["phase"] == "succeeded"
        assert "last_error" not in item
        assert SyncRun.from_dynamodb_item(item) == run


@pytest.mark.unit
class TestCatalogSnapshot:
    """Test suite for CatalogSnapshot model."""

    def test_snapshot_key(self) -> None:
        assert make_snapshot_key("acct_1", None) == "acct_1#*"
        assert make_snapshot_key("acct_1", "b1") == "acct_1#b1"

    def test_dynamodb_round_trip(self) -> None:
        """Test that the payload is stored as Binary and restored as bytes."""
        snapshot = CatalogSnapshot(
            account_id="acct_1",
            version=3,
            content_hash="f" * 64,
            captured_at=NOW,
            payload=b"\x1f\x8b data",
            product_count=2,
        )

        item = snapshot.to_dynamodb_item()

        assert item["snapshot_key"] == "acct_1#*"
        assert isinstance(item["payload"], Binary)
        assert "branch_id" not in item
        assert CatalogSnapshot.from_dynamodb_item(item) == snapshot

    def test_snapshot_is_immutable(self) -> None:
        snapshot = CatalogSnapshot(
            account_id="acct_1", version=1, content_hash="0" * 64, captured_at=NOW, payload=b""
        )

        with pytest.raises(PydanticValidationError):
            snapshot.version = 2  # type: ignore[misc]


@pytest.mark.unit
class TestDlqMessage:
    """Test suite for DlqMessage model."""

    def test_new_message_is_pending(self) -> None:
        message = make_dlq_message()

        assert message.is_pending is True
        assert message.message_id.startswith("dlq_")
        assert message.priority == DlqPriority.NORMAL

    def test_to_request_rebuilds_original(self) -> None:
        message = make_dlq_message()

        request = message.to_request()

        assert request.account_id == "acct_1"
        assert request.idempotency_key == "key_1"
        assert request.correlation_id == message.correlation_id

    def test_dynamodb_round_trip_with_validation_report(self) -> None:
        """Test that nested payloads survive storage as JSON strings."""
        message = make_dlq_message(
            validation_result={"errors": [{"code": "MISSING_NAME"}], "is_valid": False},
            first_attempt_at=NOW,
            notes="checked by ops",
        )

        item = message.to_dynamodb_item()

        assert isinstance(item["original_payload"], str)
        assert isinstance(item["validation_result"], str)
        assert item["first_attempt_at"] == NOW.isoformat()
        assert "acknowledged_at" not in item
        assert DlqMessage.from_dynamodb_item(item) == message

    def test_priority_rank(self) -> None:
        ranked = sorted(DlqPriority, key=lambda p: p.rank)

        assert ranked == [DlqPriority.CRITICAL, DlqPriority.HIGH, DlqPriority.NORMAL, DlqPriority.LOW]


@pytest.mark.unit
class TestDlqFilter:
    """Test suite for DlqFilter."""

    def test_default_filter_matches_pending_only(self) -> None:
        pending = make_dlq_message()
        replayed = make_dlq_message(is_replayed=True)
        acknowledged = make_dlq_message(is_acknowledged=True)

        dlq_filter = DlqFilter()

        assert dlq_filter.matches(pending) is True
        assert dlq_filter.matches(replayed) is False
        assert dlq_filter.matches(acknowledged) is False
        assert DlqFilter(include_replayed=True).matches(replayed) is True

    def test_filters_by_fields(self) -> None:
        message = make_dlq_message()

        assert DlqFilter(account_id="acct_2").matches(message) is False
        assert DlqFilter(failure_type=FailureType.TRANSIENT).matches(message) is False
        assert DlqFilter(error_code="VALIDATION_FAILED").matches(message) is True

    def test_limit_bounds(self) -> None:
        with pytest.raises(PydanticValidationError):
            DlqFilter(limit=0)


@pytest.mark.unit
class TestBulkReplayResult:
    """Test suite for BulkReplayResult."""

    def test_success_rate(self) -> None:
        assert BulkReplayResult().success_rate == 0.0
        assert BulkReplayResult(total=4, succeeded=3, failed=1).success_rate == 75.0
