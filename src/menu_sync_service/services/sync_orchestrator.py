"""Sync orchestrator driving one sync request to a terminal outcome."""

import logging
import time
from collections.abc import Callable
from datetime import datetime

from menu_sync_service.adapters.base_adapter import DeliveryPlatformAdapter
from menu_sync_service.errors import (
    PermanentSyncError,
    SyncPipelineError,
    TransientSyncError,
    ValidationFailedError,
    VersionConflictError,
)
from menu_sync_service.models.dlq_models import FailureType
from menu_sync_service.models.snapshot_models import MenuDelta
from menu_sync_service.models.sync_models import (
    IdempotencyStatus,
    SyncOutcome,
    SyncOutcomeStatus,
    SyncPhase,
    SyncRequest,
    SyncRun,
    SyncRunStatus,
)
from menu_sync_service.models.validation_models import ValidationResult
from menu_sync_service.observability import traced
from menu_sync_service.observability.metrics import (
    record_retry_scheduled,
    record_sync_outcome,
    record_validation_failure,
    record_version_conflict,
)
from menu_sync_service.repositories.protocols import DeltaRepository, SyncRunRepository
from menu_sync_service.services.catalog_hashing import content_hash
from menu_sync_service.services.delta_computer import DeltaComputer
from menu_sync_service.services.dlq_service import DlqStore
from menu_sync_service.services.idempotency_tracker import IdempotencyTracker
from menu_sync_service.services.retry_scheduler import (
    MAX_ATTEMPTS,
    RetryScheduler,
    retry_delay_for_attempt,
    retry_topic_for_attempt,
)
from menu_sync_service.services.snapshot_store import SnapshotStore, utc_now
from menu_sync_service.services.source_catalog_client import SourceCatalogClient
from menu_sync_service.validation.pipeline import ValidationPipeline

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERSION_CONFLICTS = 3


class SyncOrchestrator:
    """Drives a sync request through the delta sync state machine.

    Received -> IdempotencyChecked -> Skipped, or
    Diffing -> Validating -> (Rejected | Submitting -> Committed), ending in
    Succeeded, RetryScheduled or DeadLettered. Every transition is appended to
    the request's SyncRun.

    A snapshot is committed only after the platform accepted the delta, and
    the idempotency key is marked Succeeded only after the commit. Validation
    rejections are dead-lettered immediately without using the retry budget;
    transient failures are retried by delayed redelivery until ``max_attempts``
    is reached.
    """

    def __init__(
        self,
        source_client: SourceCatalogClient,
        platform_adapter: DeliveryPlatformAdapter,
        snapshot_store: SnapshotStore,
        delta_computer: DeltaComputer,
        validation_pipeline: ValidationPipeline,
        idempotency_tracker: IdempotencyTracker,
        dlq_store: DlqStore,
        retry_scheduler: RetryScheduler,
        sync_run_repository: SyncRunRepository,
        delta_repository: DeltaRepository,
        max_attempts: int = MAX_ATTEMPTS,
        max_version_conflicts: int = DEFAULT_MAX_VERSION_CONFLICTS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the SyncOrchestrator.

        Args:
            source_client: Client for fetching the live catalog
            platform_adapter: Delivery platform the delta is submitted to
            snapshot_store: Versioned snapshot storage
            delta_computer: Computes deltas against the latest snapshot
            validation_pipeline: Gates submission
            idempotency_tracker: Per-key processing guard
            dlq_store: Dead-letter storage
            retry_scheduler: Delayed redelivery of failed attempts
            sync_run_repository: Audit trail of sync runs
            delta_repository: Storage for submitted deltas
            max_attempts: Attempts before a transient failure is dead-lettered
            max_version_conflicts: Immediate re-runs allowed after losing a commit race
            clock: Source of the current time
        """
        self.source_client = source_client
        self.platform_adapter = platform_adapter
        self.snapshot_store = snapshot_store
        self.delta_computer = delta_computer
        self.validation_pipeline = validation_pipeline
        self.idempotency_tracker = idempotency_tracker
        self.dlq_store = dlq_store
        self.retry_scheduler = retry_scheduler
        self.sync_run_repository = sync_run_repository
        self.delta_repository = delta_repository
        self.max_attempts = max_attempts
        self.max_version_conflicts = max_version_conflicts
        self.clock = clock

    @traced("process_sync_request")
    async def process(self, request: SyncRequest) -> SyncOutcome:
        """Process one sync request to a terminal outcome.

        Args:
            request: The sync request (first attempt, retry or replay)

        Returns:
            SyncOutcome: Skipped, Succeeded, RetryScheduled or DeadLettered
        """
        started = time.perf_counter()
        if request.first_attempt_at is None:
            request = request.model_copy(update={"first_attempt_at": self.clock()})

        run = self._load_run(request)
        self._step(run, request, SyncPhase.RECEIVED, f"trigger={request.trigger_source.value}")

        try:
            outcome = await self._run(request, run)
        finally:
            self.sync_run_repository.save(run)

        record_sync_outcome(outcome.status.value, time.perf_counter() - started)
        return outcome

    async def _run(self, request: SyncRequest, run: SyncRun) -> SyncOutcome:
        try:
            can_process, record = await self.idempotency_tracker.check_and_mark_started(
                request.account_id, request.idempotency_key, request.correlation_id
            )
        except SyncPipelineError as e:
            # The key was never claimed, so there is nothing to mark failed
            return await self._handle_failure(request, run, e, claimed=False)

        if not can_process:
            existing_status = record.status if record else None
            self._step(
                run,
                request,
                SyncPhase.SKIPPED,
                f"idempotency key already {existing_status.value if existing_status else 'claimed'}",
            )
            if run.status == SyncRunStatus.PENDING and existing_status == IdempotencyStatus.SUCCEEDED:
                run.status = SyncRunStatus.COMPLETED
                run.completed_at = self.clock()
            logger.warning(
                f"Skipping sync {request.correlation_id} for account {request.account_id}: "
                f"idempotency key {request.idempotency_key} is "
                f"{existing_status.value if existing_status else 'claimed'}"
            )
            return SyncOutcome(
                status=SyncOutcomeStatus.SKIPPED,
                correlation_id=request.correlation_id,
                account_id=request.account_id,
                attempt=request.attempt,
                idempotency_status=existing_status,
            )

        run.status = SyncRunStatus.RUNNING
        run.completed_at = None
        self._step(run, request, SyncPhase.IDEMPOTENCY_CHECKED)

        try:
            return await self._attempt_with_conflict_retries(request, run)
        except SyncPipelineError as e:
            return await self._handle_failure(request, run, e)
        except Exception as e:
            logger.exception(f"Unexpected error processing sync {request.correlation_id}")
            error = TransientSyncError(f"Unexpected error: {e}", code="UNEXPECTED_ERROR")
            return await self._handle_failure(request, run, error)

    async def _attempt_with_conflict_retries(self, request: SyncRequest, run: SyncRun) -> SyncOutcome:
        conflicts = 0
        while True:
            try:
                return await self._attempt(request, run)
            except VersionConflictError as e:
                conflicts += 1
                run.metrics["version_conflicts"] = conflicts
                record_version_conflict()
                self._step(run, request, SyncPhase.VERSION_CONFLICT, e.message)
                logger.warning(
                    f"Version conflict for {request.correlation_id} "
                    f"({conflicts}/{self.max_version_conflicts}): {e.message}"
                )
                if conflicts >= self.max_version_conflicts:
                    raise TransientSyncError(
                        f"Lost the snapshot commit race {conflicts} times",
                        code="VERSION_CONFLICT_EXHAUSTED",
                    ) from e

    async def _attempt(self, request: SyncRequest, run: SyncRun) -> SyncOutcome:
        self._step(run, request, SyncPhase.DIFFING)
        live = await self.source_client.fetch_full_catalog(request.account_id, request.branch_id)
        latest = await self.snapshot_store.get_latest(request.account_id, request.branch_id)

        baseline = None
        if latest is not None:
            live_hash = content_hash(live)
            if live_hash == latest.content_hash:
                return await self._complete_without_changes(request, run, latest.version, live_hash)
            baseline = self.snapshot_store.load_catalog(latest)

        base_version = latest.version if latest else None
        delta = self.delta_computer.compute(baseline, live, source_version=base_version)
        run.metrics["total_changes"] = delta.statistics.total_changes
        if delta.is_empty:
            return await self._complete_without_changes(
                request, run, base_version, latest.content_hash if latest else None
            )

        self._step(run, request, SyncPhase.VALIDATING, delta_summary(delta))
        validation = self.validation_pipeline.validate(delta, fail_fast=True)
        if not validation.can_submit:
            full_report = self.validation_pipeline.validate(delta, fail_fast=False)
            self._step(run, request, SyncPhase.REJECTED, full_report.summary())
            raise ValidationFailedError(full_report)

        self._step(run, request, SyncPhase.SUBMITTING, f"vendor={request.resolved_vendor_code}")
        submission = await self.platform_adapter.submit_delta(request.resolved_vendor_code, delta)
        if not submission.accepted:
            detail = "; ".join(submission.errors) or submission.message or "no reason given"
            raise PermanentSyncError(
                f"{self.platform_adapter.platform_name} rejected delta {delta.delta_id}: {detail}",
                code="SUBMISSION_REJECTED",
            )

        snapshot = await self.snapshot_store.commit(
            live,
            base_version=base_version,
            import_id=submission.import_id,
            vendor_code=request.resolved_vendor_code,
        )
        self._step(run, request, SyncPhase.COMMITTED, f"version={snapshot.version}")
        self.delta_repository.save(delta)

        await self.idempotency_tracker.mark_succeeded(
            request.account_id, request.idempotency_key, snapshot.content_hash
        )
        self._finish(
            run, request, SyncRunStatus.COMPLETED, SyncPhase.SUCCEEDED, f"import={submission.import_id}"
        )
        logger.info(
            f"Synced account {request.account_id} to snapshot v{snapshot.version} "
            f"({delta.statistics.total_changes} changes, import {submission.import_id})"
        )

        return SyncOutcome(
            status=SyncOutcomeStatus.SUCCEEDED,
            correlation_id=request.correlation_id,
            account_id=request.account_id,
            attempt=request.attempt,
            snapshot_version=snapshot.version,
            import_id=submission.import_id,
            delta_statistics=delta.statistics,
            validation_result=validation,
        )

    async def _complete_without_changes(
        self,
        request: SyncRequest,
        run: SyncRun,
        version: int | None,
        result_hash: str | None,
    ) -> SyncOutcome:
        await self.idempotency_tracker.mark_succeeded(
            request.account_id, request.idempotency_key, result_hash
        )
        self._finish(run, request, SyncRunStatus.COMPLETED, SyncPhase.SUCCEEDED, "no changes")
        logger.info(f"No catalog changes for account {request.account_id}, nothing submitted")
        return SyncOutcome(
            status=SyncOutcomeStatus.SUCCEEDED,
            correlation_id=request.correlation_id,
            account_id=request.account_id,
            attempt=request.attempt,
            snapshot_version=version,
            no_changes=True,
        )

    async def _handle_failure(
        self,
        request: SyncRequest,
        run: SyncRun,
        error: SyncPipelineError,
        claimed: bool = True,
    ) -> SyncOutcome:
        """Route a classified failure to a retry or the DLQ."""
        run.last_error = f"{error.code}: {error.message}"
        if claimed:
            await self.idempotency_tracker.mark_failed(request.account_id, request.idempotency_key)

        if isinstance(error, ValidationFailedError):
            record_validation_failure(
                len(error.result.critical_errors), error.result.statistics.error_count
            )
            return await self._dead_letter(
                request, run, error, FailureType.PERMANENT, validation_result=error.result
            )

        if not error.is_transient:
            return await self._dead_letter(request, run, error, FailureType.PERMANENT)

        if request.attempt >= self.max_attempts:
            logger.error(
                f"Sync {request.correlation_id} exhausted {self.max_attempts} attempts: {error.code}"
            )
            return await self._dead_letter(request, run, error, FailureType.TRANSIENT)

        delay = retry_delay_for_attempt(request.attempt)
        try:
            await self.retry_scheduler.schedule_retry(request.next_attempt(), delay)
        except SyncPipelineError as schedule_error:
            logger.error(
                f"Could not schedule retry for {request.correlation_id}: {schedule_error.message}"
            )
            return await self._dead_letter(request, run, error, FailureType.TRANSIENT)

        topic = retry_topic_for_attempt(request.attempt)
        record_retry_scheduled(topic.value)
        run.status = SyncRunStatus.PENDING
        self._step(
            run,
            request,
            SyncPhase.RETRY_SCHEDULED,
            f"{error.code}; attempt {request.attempt + 1} in {delay}s on {topic.value}",
        )
        logger.warning(
            f"Sync {request.correlation_id} attempt {request.attempt} failed with {error.code}, "
            f"retrying in {delay}s"
        )
        return SyncOutcome(
            status=SyncOutcomeStatus.RETRY_SCHEDULED,
            correlation_id=request.correlation_id,
            account_id=request.account_id,
            attempt=request.attempt,
            retry_delay_seconds=delay,
            error_code=error.code,
            error_message=error.message,
        )

    async def _dead_letter(
        self,
        request: SyncRequest,
        run: SyncRun,
        error: SyncPipelineError,
        failure_type: FailureType,
        validation_result: ValidationResult | None = None,
    ) -> SyncOutcome:
        message_id = await self.dlq_store.store(
            request,
            error_code=error.code,
            error_message=error.message,
            failure_type=failure_type,
            attempt_count=request.attempt,
            validation_result=validation_result,
        )
        self._finish(
            run, request, SyncRunStatus.FAILED, SyncPhase.DEAD_LETTERED, f"{error.code} -> {message_id}"
        )
        return SyncOutcome(
            status=SyncOutcomeStatus.DEAD_LETTERED,
            correlation_id=request.correlation_id,
            account_id=request.account_id,
            attempt=request.attempt,
            validation_result=validation_result,
            dlq_message_id=message_id,
            error_code=error.code,
            error_message=error.message,
        )

    def _load_run(self, request: SyncRequest) -> SyncRun:
        run = self.sync_run_repository.get(request.correlation_id)
        if run is None:
            return SyncRun(
                correlation_id=request.correlation_id,
                account_id=request.account_id,
                branch_id=request.branch_id,
                idempotency_key=request.idempotency_key,
                trigger_source=request.trigger_source,
                attempt_count=request.attempt,
                started_at=self.clock(),
            )
        run.attempt_count = max(run.attempt_count, request.attempt)
        return run

    def _step(self, run: SyncRun, request: SyncRequest, phase: SyncPhase, message: str = "") -> None:
        run.add_step(phase, self.clock(), request.attempt, message)

    def _finish(
        self,
        run: SyncRun,
        request: SyncRequest,
        status: SyncRunStatus,
        phase: SyncPhase,
        message: str = "",
    ) -> None:
        run.status = status
        run.completed_at = self.clock()
        self._step(run, request, phase, message)


def delta_summary(delta: MenuDelta) -> str:
    stats = delta.statistics
    return (
        f"+{stats.products_added}/~{stats.products_updated}/-{stats.products_removed} products, "
        f"+{stats.categories_added}/~{stats.categories_updated}/-{stats.categories_removed} categories, "
        f"+{stats.modifiers_added}/~{stats.modifiers_updated}/-{stats.modifiers_removed} modifiers"
    )
