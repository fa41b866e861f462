"""Sync request, outcome, idempotency and sync-run models.

These models represent sync triggers, the per-key idempotency state machine and
the sync-run audit trail for DynamoDB storage and retrieval.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from menu_sync_service.models.snapshot_models import DeltaStatistics
from menu_sync_service.models.validation_models import ValidationResult


class TriggerSource(str, Enum):
    """What caused a sync request to be created."""

    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"
    RETRY = "retry"
    REPLAY = "replay"


class SyncRequest(BaseModel):
    """A unit of sync work for one account (and optionally one branch).

    The same idempotency key is carried through every retry of the request;
    the correlation id ties all attempts to a single sync run.
    """

    account_id: str = Field(..., min_length=1, description="Merchant account identifier")
    branch_id: str | None = Field(None, description="Branch identifier, None for account-wide")
    idempotency_key: str = Field(..., min_length=1, description="Deduplication key of the trigger")
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    vendor_code: str | None = Field(None, description="Platform-side vendor code")
    trigger_source: TriggerSource = TriggerSource.SCHEDULE
    attempt: int = Field(default=1, ge=1, description="1-based attempt number")
    first_attempt_at: datetime | None = None

    @property
    def resolved_vendor_code(self) -> str:
        return self.vendor_code or self.branch_id or self.account_id

    def next_attempt(self) -> "SyncRequest":
        """Return the request to deliver on the next retry."""
        return self.model_copy(
            update={"attempt": self.attempt + 1, "trigger_source": TriggerSource.RETRY}
        )

    def for_replay(self) -> "SyncRequest":
        """Return the request to re-enter the pipeline from a DLQ replay."""
        return self.model_copy(
            update={"attempt": 1, "trigger_source": TriggerSource.REPLAY, "first_attempt_at": None}
        )


class IdempotencyStatus(str, Enum):
    """States of the per-key idempotency state machine."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class IdempotencyRecord(BaseModel):
    """Idempotency state for one (account, idempotency key) pair.

    Stored in DynamoDB with record_key = "<account_id>#<idempotency_key>" as
    partition key. The ``ttl`` attribute lets DynamoDB expire old records.
    """

    account_id: str
    idempotency_key: str
    status: IdempotencyStatus
    first_seen_at: datetime
    last_processed_at: datetime
    expires_at: datetime
    correlation_id: str | None = None
    result_hash: str | None = None

    @property
    def record_key(self) -> str:
        return make_idempotency_key(self.account_id, self.idempotency_key)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dynamodb_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "record_key": self.record_key,
            "account_id": self.account_id,
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_processed_at": self.last_processed_at.isoformat(),
            "last_processed_epoch": int(self.last_processed_at.timestamp()),
            "expires_at": self.expires_at.isoformat(),
            "ttl": int(self.expires_at.timestamp()),
        }

        if self.correlation_id is not None:
            item["correlation_id"] = self.correlation_id

        if self.result_hash is not None:
            item["result_hash"] = self.result_hash

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "IdempotencyRecord":
        return cls(
            account_id=item["account_id"],
            idempotency_key=item["idempotency_key"],
            status=IdempotencyStatus(item["status"]),
            first_seen_at=datetime.fromisoformat(item["first_seen_at"]),
            last_processed_at=datetime.fromisoformat(item["last_processed_at"]),
            expires_at=datetime.fromisoformat(item["expires_at"]),
            correlation_id=item.get("correlation_id"),
            result_hash=item.get("result_hash"),
        )


def make_idempotency_key(account_id: str, idempotency_key: str) -> str:
    """Scope an idempotency key to its account."""
    return f"{account_id}#{idempotency_key}"


class SyncRunStatus(str, Enum):
    """Enumeration of sync run status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncPhase(str, Enum):
    """Orchestrator state machine phases recorded as sync-run steps."""

    RECEIVED = "received"
    IDEMPOTENCY_CHECKED = "idempotency_checked"
    SKIPPED = "skipped"
    DIFFING = "diffing"
    VALIDATING = "validating"
    REJECTED = "rejected"
    SUBMITTING = "submitting"
    COMMITTED = "committed"
    VERSION_CONFLICT = "version_conflict"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class SyncStep(BaseModel):
    """One recorded transition of a sync run."""

    sequence_number: int = Field(..., ge=1)
    phase: SyncPhase
    timestamp: datetime
    attempt: int = Field(default=1, ge=1)
    message: str = ""


class SyncRun(BaseModel):
    """Audit record of all attempts for a single correlation id.

    Stored in DynamoDB with correlation_id as partition key. Retries append
    steps to the same run.
    """

    correlation_id: str
    account_id: str
    branch_id: str | None = None
    idempotency_key: str
    trigger_source: TriggerSource
    status: SyncRunStatus = SyncRunStatus.PENDING
    attempt_count: int = Field(default=1, ge=1)
    started_at: datetime
    completed_at: datetime | None = None
    steps: list[SyncStep] = Field(default_factory=list)
    metrics: dict[str, int] = Field(default_factory=dict)
    last_error: str | None = None

    @field_validator("attempt_count")
    @classmethod
    def validate_attempt_count(cls, v: int) -> int:
        """Validate that attempt_count is positive."""
        if v < 1:
            raise ValueError("attempt_count must be positive")
        return v

    def add_step(self, phase: SyncPhase, timestamp: datetime, attempt: int, message: str = "") -> SyncStep:
        step = SyncStep(
            sequence_number=len(self.steps) + 1,
            phase=phase,
            timestamp=timestamp,
            attempt=attempt,
            message=message,
        )
        self.steps.append(step)
        return step

    def to_dynamodb_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "correlation_id": self.correlation_id,
            "account_id": self.account_id,
            "idempotency_key": self.idempotency_key,
            "trigger_source": self.trigger_source.value,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "started_at": self.started_at.isoformat(),
            "steps": [step.model_dump(mode="json") for step in self.steps],
            "metrics": dict(self.metrics),
        }

        if self.branch_id is not None:
            item["branch_id"] = self.branch_id

        if self.completed_at is not None:
            item["completed_at"] = self.completed_at.isoformat()

        if self.last_error is not None:
            item["last_error"] = self.last_error

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "SyncRun":
        data: dict[str, Any] = {
            "correlation_id": item["correlation_id"],
            "account_id": item["account_id"],
            "branch_id": item.get("branch_id"),
            "idempotency_key": item["idempotency_key"],
            "trigger_source": TriggerSource(item["trigger_source"]),
            "status": SyncRunStatus(item["status"]),
            "attempt_count": int(item.get("attempt_count", 1)),
            "started_at": datetime.fromisoformat(item["started_at"]),
            "steps": [
                {**step, "sequence_number": int(step["sequence_number"]), "attempt": int(step["attempt"])}
                for step in item.get("steps", [])
            ],
            "metrics": {k: int(v) for k, v in item.get("metrics", {}).items()},
            "last_error": item.get("last_error"),
        }

        if "completed_at" in item:
            data["completed_at"] = datetime.fromisoformat(item["completed_at"])

        return cls(**data)


class SyncOutcomeStatus(str, Enum):
    """Terminal result of one orchestrator invocation."""

    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class SyncOutcome:
    """Result of processing a single sync request.

    Attributes:
        status: Terminal status of this invocation
        correlation_id: Correlation id of the sync run
        account_id: Account the request was for
        attempt: Attempt number that produced this outcome
        snapshot_version: Latest snapshot version after the attempt
        import_id: Platform import id of the submission, if any
        no_changes: True when the live catalog matched the latest snapshot
        delta_statistics: Change counts of the submitted delta
        validation_result: Validation report (full report when rejected)
        dlq_message_id: DLQ message id when dead-lettered
        retry_delay_seconds: Delay of the scheduled retry
        idempotency_status: Existing idempotency state when skipped
        error_code: Classified error code on failure
        error_message: Error description on failure
    """

    status: SyncOutcomeStatus
    correlation_id: str
    account_id: str
    attempt: int = 1
    snapshot_version: int | None = None
    import_id: str | None = None
    no_changes: bool = False
    delta_statistics: DeltaStatistics | None = None
    validation_result: ValidationResult | None = None
    dlq_message_id: str | None = None
    retry_delay_seconds: int | None = None
    idempotency_status: IdempotencyStatus | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SyncOutcomeStatus.SUCCEEDED
