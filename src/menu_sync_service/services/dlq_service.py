"""Dead-letter queue storage, triage and replay."""

import logging
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from menu_sync_service.models.dlq_models import (
    BulkReplayResult,
    DlqFilter,
    DlqMessage,
    DlqPriority,
    DlqStatistics,
    FailureType,
    ReplayResult,
)
from menu_sync_service.models.sync_models import (
    IdempotencyStatus,
    SyncOutcome,
    SyncOutcomeStatus,
    SyncRequest,
)
from menu_sync_service.models.validation_models import ValidationResult
from menu_sync_service.observability import traced
from menu_sync_service.observability.metrics import (
    record_dlq_change,
    record_dlq_replay,
    record_dlq_store_failure,
)
from menu_sync_service.repositories.protocols import DlqRepository

if TYPE_CHECKING:
    from menu_sync_service.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def default_priority(failure_type: FailureType) -> DlqPriority:
    """Permanent failures need a data fix, so they are triaged first."""
    if failure_type == FailureType.PERMANENT:
        return DlqPriority.HIGH
    return DlqPriority.NORMAL


class DlqStore:
    """Service for recording and managing dead-lettered sync requests.

    ``store`` never raises: a failed DLQ write is logged at CRITICAL level as
    a data-loss event and reported by returning None.
    """

    def __init__(self, repository: DlqRepository, clock: Callable[[], datetime] = _utc_now) -> None:
        """Initialize the DlqStore.

        Args:
            repository: DLQ message persistence backend
            clock: Source of the current time
        """
        self.repository = repository
        self.clock = clock

    @traced("dlq_store")
    async def store(
        self,
        request: SyncRequest,
        error_code: str,
        error_message: str,
        failure_type: FailureType,
        attempt_count: int,
        validation_result: ValidationResult | None = None,
        priority: DlqPriority | None = None,
    ) -> str | None:
        """Dead-letter a sync request.

        Args:
            request: The failed request, stored for replay
            error_code: Classified error code
            error_message: Error description
            failure_type: Transient (retries exhausted) or permanent
            attempt_count: Attempts consumed before dead-lettering
            validation_result: Full validation report for validation failures
            priority: Triage priority, defaults by failure type

        Returns:
            The DLQ message id, or None if the message could not be persisted
        """
        now = self.clock()
        try:
            message = DlqMessage(
                correlation_id=request.correlation_id,
                account_id=request.account_id,
                branch_id=request.branch_id,
                original_payload=request.model_dump(mode="json"),
                error_code=error_code,
                error_message=error_message,
                attempt_count=max(attempt_count, 1),
                failure_type=failure_type,
                priority=priority or default_priority(failure_type),
                validation_result=(
                    validation_result.model_dump(mode="json") if validation_result else None
                ),
                created_at=now,
                first_attempt_at=request.first_attempt_at or now,
                last_attempt_at=now,
            )
            saved = self.repository.save(message)
        except Exception as e:
            logger.critical(
                f"DATA LOSS: failed to dead-letter request {request.correlation_id} "
                f"for account {request.account_id} ({error_code}): {e}",
                exc_info=True,
            )
            record_dlq_store_failure()
            return None

        if not saved:
            logger.critical(
                f"DATA LOSS: failed to dead-letter request {request.correlation_id} "
                f"for account {request.account_id} ({error_code}): storage rejected the write"
            )
            record_dlq_store_failure()
            return None

        record_dlq_change(1, failure_type.value)
        logger.error(
            f"Dead-lettered request {request.correlation_id} for account {request.account_id} "
            f"as {message.message_id}: {error_code} after {message.attempt_count} attempt(s)"
        )
        return message.message_id

    async def get(self, message_id: str) -> DlqMessage | None:
        return self.repository.get(message_id)

    async def list_messages(self, message_filter: DlqFilter) -> list[DlqMessage]:
        """List messages matching a filter, newest first."""
        if message_filter.account_id is not None:
            candidates = self.repository.list_for_account(message_filter.account_id, limit=1000)
        else:
            candidates = self.repository.list_all(limit=1000)

        matches = [m for m in candidates if message_filter.matches(m)]
        return matches[: message_filter.limit]

    async def list_pending(self, account_id: str | None = None, limit: int = 100) -> list[DlqMessage]:
        """List messages awaiting action, most urgent priority first, then oldest first."""
        pending = await self.list_messages(DlqFilter(account_id=account_id, limit=1000))
        pending.sort(key=lambda m: (m.priority.rank, m.created_at))
        return pending[:limit]

    async def acknowledge(
        self, message_id: str, acknowledged_by: str, notes: str | None = None
    ) -> DlqMessage | None:
        """Mark a message as handled. Acknowledged messages are terminal.

        Returns:
            The updated message, or None if not found or not saved
        """
        message = self.repository.get(message_id)
        if message is None:
            return None
        if message.is_acknowledged:
            return message

        was_pending = message.is_pending
        message.is_acknowledged = True
        message.acknowledged_at = self.clock()
        message.acknowledged_by = acknowledged_by
        if notes:
            message.notes = notes

        if not self.repository.save(message):
            return None

        if was_pending:
            record_dlq_change(-1, message.failure_type.value)
        logger.info(f"DLQ message {message_id} acknowledged by {acknowledged_by}")
        return message

    async def record_replay(
        self,
        message: DlqMessage,
        success: bool,
        replayed_by: str | None,
        outcome_status: str | None,
        error_message: str | None = None,
    ) -> bool:
        """Record the result of a replay attempt on the message."""
        message.replay_count += 1
        message.replayed_at = self.clock()
        message.replayed_by = replayed_by
        message.replay_result = outcome_status
        message.replay_error_message = error_message
        if success:
            message.is_replayed = True
            record_dlq_change(-1, message.failure_type.value)
        return self.repository.save(message)

    async def get_statistics(self, account_id: str) -> DlqStatistics:
        messages = self.repository.list_for_account(account_id, limit=1000)
        return DlqStatistics(
            account_id=account_id,
            total=len(messages),
            pending=sum(1 for m in messages if m.is_pending),
            replayed=sum(1 for m in messages if m.is_replayed),
            acknowledged=sum(1 for m in messages if m.is_acknowledged),
            by_failure_type=dict(Counter(m.failure_type.value for m in messages)),
            by_error_code=dict(Counter(m.error_code for m in messages)),
        )


class DlqReplayService:
    """Re-enters dead-lettered requests into the orchestrator.

    A replay resets the attempt counter, keeps the correlation id and
    idempotency key, and succeeds when the orchestrator either syncs the
    catalog or skips because the key has already succeeded. Replay never
    acknowledges a message.
    """

    def __init__(self, dlq_store: DlqStore, orchestrator: "SyncOrchestrator") -> None:
        self.dlq_store = dlq_store
        self.orchestrator = orchestrator

    @traced("dlq_replay")
    async def replay(self, message_id: str, replayed_by: str | None = None) -> ReplayResult:
        """Replay a single DLQ message.

        Args:
            message_id: Message to replay
            replayed_by: Operator requesting the replay

        Returns:
            ReplayResult describing whether the catalog is now in sync
        """
        message = await self.dlq_store.get(message_id)
        if message is None:
            return ReplayResult(message_id=message_id, success=False, error_message="Message not found")
        if message.is_acknowledged:
            return ReplayResult(
                message_id=message_id, success=False, error_message="Message already acknowledged"
            )
        if message.is_replayed:
            return ReplayResult(
                message_id=message_id, success=False, error_message="Message already replayed"
            )

        request = message.to_request().for_replay()
        logger.info(f"Replaying DLQ message {message_id} for account {message.account_id}")

        outcome = await self.orchestrator.process(request)
        success = self._is_success(outcome)
        error_message = None if success else (outcome.error_message or outcome.status.value)

        await self.dlq_store.record_replay(
            message,
            success=success,
            replayed_by=replayed_by,
            outcome_status=outcome.status.value,
            error_message=error_message,
        )
        record_dlq_replay(success)

        return ReplayResult(
            message_id=message_id,
            success=success,
            outcome_status=outcome.status.value,
            error_message=error_message,
        )

    async def bulk_replay(
        self, message_filter: DlqFilter, replayed_by: str | None = None
    ) -> BulkReplayResult:
        """Replay every pending message matching a filter, one at a time."""
        selection = message_filter.model_copy(update={"include_replayed": False})
        messages = await self.dlq_store.list_messages(selection)

        result = BulkReplayResult(total=len(messages))
        for message in messages:
            replay = await self.replay(message.message_id, replayed_by=replayed_by)
            result.results.append(replay)
            if replay.success:
                result.succeeded += 1
            else:
                result.failed += 1

        logger.info(
            f"Bulk replay finished: {result.succeeded}/{result.total} succeeded "
            f"({result.success_rate:.1f}%)"
        )
        return result

    @staticmethod
    def _is_success(outcome: SyncOutcome) -> bool:
        if outcome.status == SyncOutcomeStatus.SUCCEEDED:
            return True
        return (
            outcome.status == SyncOutcomeStatus.SKIPPED
            and outcome.idempotency_status == IdempotencyStatus.SUCCEEDED
        )
