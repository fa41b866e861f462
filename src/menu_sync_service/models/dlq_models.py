"""Dead-letter queue models.

A DLQ message is created when a sync request fails permanently or exhausts its
retry budget. Messages are replayed or acknowledged by operators through the
admin API; an acknowledged message is terminal.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from menu_sync_service.models.sync_models import SyncRequest

DEFAULT_EVENT_TYPE = "menu.sync.requested"


class FailureType(str, Enum):
    """Why the message was dead-lettered."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class DlqPriority(str, Enum):
    """Operator triage priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, lower is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    DlqPriority.CRITICAL: 0,
    DlqPriority.HIGH: 1,
    DlqPriority.NORMAL: 2,
    DlqPriority.LOW: 3,
}


class DlqMessage(BaseModel):
    """Dead-lettered sync request with failure and operator metadata.

    Stored in DynamoDB with message_id as partition key and an
    ``account_id-index`` GSI sorted by created_at.
    """

    message_id: str = Field(default_factory=lambda: f"dlq_{uuid.uuid4().hex[:16]}")
    event_type: str = DEFAULT_EVENT_TYPE
    correlation_id: str
    account_id: str
    branch_id: str | None = None
    original_payload: dict[str, Any] = Field(..., description="Serialized SyncRequest")
    error_code: str
    error_message: str
    attempt_count: int = Field(default=1, ge=1)
    failure_type: FailureType
    priority: DlqPriority = DlqPriority.NORMAL
    validation_result: dict[str, Any] | None = Field(
        None, description="Full validation report for validation failures"
    )
    created_at: datetime
    first_attempt_at: datetime | None = None
    last_attempt_at: datetime | None = None

    is_replayed: bool = False
    replayed_at: datetime | None = None
    replayed_by: str | None = None
    replay_count: int = 0
    replay_result: str | None = None
    replay_error_message: str | None = None

    is_acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    notes: str | None = None

    @property
    def is_pending(self) -> bool:
        return not self.is_replayed and not self.is_acknowledged

    def to_request(self) -> SyncRequest:
        """Rebuild the original sync request from the stored payload."""
        return SyncRequest.model_validate(self.original_payload)

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Nested payloads are stored as JSON strings to avoid float conversion
        issues in the DynamoDB type serializer.
        """
        item: dict[str, Any] = {
            "message_id": self.message_id,
            "event_type": self.event_type,
            "correlation_id": self.correlation_id,
            "account_id": self.account_id,
            "original_payload": json.dumps(self.original_payload),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "attempt_count": self.attempt_count,
            "failure_type": self.failure_type.value,
            "priority": self.priority.value,
            "created_at": self.created_at.isoformat(),
            "is_replayed": self.is_replayed,
            "replay_count": self.replay_count,
            "is_acknowledged": self.is_acknowledged,
        }

        optional: dict[str, Any] = {
            "branch_id": self.branch_id,
            "first_attempt_at": self.first_attempt_at,
            "last_attempt_at": self.last_attempt_at,
            "replayed_at": self.replayed_at,
            "replayed_by": self.replayed_by,
            "replay_result": self.replay_result,
            "replay_error_message": self.replay_error_message,
            "acknowledged_at": self.acknowledged_at,
            "acknowledged_by": self.acknowledged_by,
            "notes": self.notes,
        }
        for key, value in optional.items():
            if value is None:
                continue
            item[key] = value.isoformat() if isinstance(value, datetime) else value

        if self.validation_result is not None:
            item["validation_result"] = json.dumps(self.validation_result)

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "DlqMessage":
        data: dict[str, Any] = dict(item)
        data["original_payload"] = json.loads(item["original_payload"])
        data["attempt_count"] = int(item.get("attempt_count", 1))
        data["replay_count"] = int(item.get("replay_count", 0))

        if "validation_result" in item:
            data["validation_result"] = json.loads(item["validation_result"])

        # pydantic parses the remaining ISO timestamps and enum values
        return cls.model_validate(data)


class DlqFilter(BaseModel):
    """Selection criteria for listing and bulk-replaying DLQ messages."""

    account_id: str | None = None
    failure_type: FailureType | None = None
    error_code: str | None = None
    include_replayed: bool = False
    include_acknowledged: bool = False
    limit: int = Field(default=100, ge=1, le=1000)

    def matches(self, message: DlqMessage) -> bool:
        if self.account_id is not None and message.account_id != self.account_id:
            return False
        if self.failure_type is not None and message.failure_type != self.failure_type:
            return False
        if self.error_code is not None and message.error_code != self.error_code:
            return False
        if message.is_replayed and not self.include_replayed:
            return False
        if message.is_acknowledged and not self.include_acknowledged:
            return False
        return True


class DlqStatistics(BaseModel):
    """Per-account DLQ counts for the admin dashboard."""

    account_id: str
    total: int = 0
    pending: int = 0
    replayed: int = 0
    acknowledged: int = 0
    by_failure_type: dict[str, int] = Field(default_factory=dict)
    by_error_code: dict[str, int] = Field(default_factory=dict)


@dataclass
class ReplayResult:
    """Result of replaying a single DLQ message.

    Attributes:
        message_id: The replayed DLQ message
        success: Whether the replay produced a confirmed sync
        outcome_status: Orchestrator outcome status of the replay, if it ran
        error_message: Why the replay failed or was refused
    """

    message_id: str
    success: bool
    outcome_status: str | None = None
    error_message: str | None = None


@dataclass
class BulkReplayResult:
    """Aggregate result of replaying several DLQ messages."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[ReplayResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Percentage of successful replays (0.0 to 100.0)."""
        if self.total == 0:
            return 0.0
        return (self.succeeded / self.total) * 100.0
