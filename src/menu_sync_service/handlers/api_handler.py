"""FastAPI application for admin API endpoints."""

import logging
import uuid
from typing import Any, Union

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from menu_sync_service.auth.api_dependencies import require_api_key
from menu_sync_service.auth.api_key_validator import APIKeyValidator
from menu_sync_service.models.catalog_models import LiveCatalog
from menu_sync_service.models.dlq_models import DlqFilter, DlqMessage, DlqStatistics, FailureType
from menu_sync_service.models.snapshot_models import DeltaStatistics
from menu_sync_service.models.sync_models import (
    SyncOutcome,
    SyncOutcomeStatus,
    SyncRequest,
    SyncRun,
    TriggerSource,
)
from menu_sync_service.models.validation_models import ValidationResult
from menu_sync_service.repositories.protocols import SyncRunRepository
from menu_sync_service.services.dlq_service import DlqReplayService, DlqStore
from menu_sync_service.services.sync_orchestrator import SyncOrchestrator
from menu_sync_service.validation.pipeline import ValidationPipeline

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str


class ManualSyncRequest(BaseModel):
    """Request body for a manual sync trigger."""

    account_id: str = Field(..., min_length=1)
    branch_id: str | None = None
    vendor_code: str | None = None
    idempotency_key: str | None = Field(
        None, description="Reuse a key to make the trigger idempotent, generated if omitted"
    )


class SyncOutcomeResponse(BaseModel):
    """Response model for a processed sync request."""

    status: SyncOutcomeStatus
    correlation_id: str
    account_id: str
    attempt: int
    snapshot_version: int | None = None
    import_id: str | None = None
    no_changes: bool = False
    delta_statistics: DeltaStatistics | None = None
    validation_result: ValidationResult | None = None
    dlq_message_id: str | None = None
    retry_delay_seconds: int | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_outcome(cls, outcome: SyncOutcome) -> "SyncOutcomeResponse":
        return cls(
            status=outcome.status,
            correlation_id=outcome.correlation_id,
            account_id=outcome.account_id,
            attempt=outcome.attempt,
            snapshot_version=outcome.snapshot_version,
            import_id=outcome.import_id,
            no_changes=outcome.no_changes,
            delta_statistics=outcome.delta_statistics,
            validation_result=outcome.validation_result,
            dlq_message_id=outcome.dlq_message_id,
            retry_delay_seconds=outcome.retry_delay_seconds,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
        )


class ReplayRequest(BaseModel):
    """Operator metadata for a replay."""

    replayed_by: str | None = None


class BulkReplayRequest(BaseModel):
    """Selection and operator metadata for a bulk replay."""

    account_id: str | None = None
    failure_type: FailureType | None = None
    error_code: str | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    replayed_by: str | None = None


class AcknowledgeRequest(BaseModel):
    """Request body for acknowledging a DLQ message."""

    acknowledged_by: str = Field(..., min_length=1)
    notes: str | None = None


class ReplayResponse(BaseModel):
    """Response model for a single replay."""

    message_id: str
    success: bool
    outcome_status: str | None = None
    error_message: str | None = None


class BulkReplayResponse(BaseModel):
    """Response model for a bulk replay."""

    total: int
    succeeded: int
    failed: int
    success_rate: float
    results: list[ReplayResponse]


def create_app(
    orchestrator: SyncOrchestrator,
    dlq_store: DlqStore,
    replay_service: DlqReplayService,
    sync_run_repository: SyncRunRepository,
    validation_pipeline: ValidationPipeline,
    api_keys: list[str],
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        orchestrator: Processes sync requests
        dlq_store: Dead-letter storage
        replay_service: Replays dead-lettered requests
        sync_run_repository: Sync run audit trail
        validation_pipeline: Validation pipeline for dry-run validation
        api_keys: List of valid API keys for authentication

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Menu Sync Service Admin API",
        description="Admin API for catalog delta sync runs and the dead-letter queue",
        version="1.0.0",
    )

    # Store services in app state for access in route handlers
    app.state.orchestrator = orchestrator
    app.state.dlq_store = dlq_store
    app.state.replay_service = replay_service
    app.state.sync_run_repository = sync_run_repository
    app.state.validation_pipeline = validation_pipeline
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy")

    @app.post("/admin/sync", response_model=SyncOutcomeResponse, tags=["Sync"])
    async def trigger_sync(
        body: ManualSyncRequest,
        _api_key: str = Depends(require_api_key),
    ) -> Union[SyncOutcomeResponse, JSONResponse]:
        """Run a sync for an account immediately.

        Returns 200 when the sync succeeded or was skipped, 202 when a retry
        was scheduled, 422 when validation rejected the catalog and 502 when
        the request was dead-lettered for any other reason.
        """
        idempotency_key = body.idempotency_key or (
            f"manual:{body.account_id}:{body.branch_id or '*'}:{uuid.uuid4().hex}"
        )
        request = SyncRequest(
            account_id=body.account_id,
            branch_id=body.branch_id,
            vendor_code=body.vendor_code,
            idempotency_key=idempotency_key,
            trigger_source=TriggerSource.MANUAL,
        )
        logger.info(f"Manual sync triggered for account {body.account_id} ({request.correlation_id})")

        outcome: SyncOutcome = await app.state.orchestrator.process(request)
        response = SyncOutcomeResponse.from_outcome(outcome)

        if outcome.status == SyncOutcomeStatus.RETRY_SCHEDULED:
            return JSONResponse(status_code=202, content=response.model_dump(mode="json"))
        if outcome.status == SyncOutcomeStatus.DEAD_LETTERED:
            status_code = 422 if outcome.validation_result is not None else 502
            return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))
        return response

    @app.get("/admin/sync-runs/{correlation_id}", response_model=SyncRun, tags=["Sync"])
    async def get_sync_run(
        correlation_id: str,
        _api_key: str = Depends(require_api_key),
    ) -> SyncRun:
        run: SyncRun | None = app.state.sync_run_repository.get(correlation_id)
        if run is None:
            raise HTTPException(status_code=404, detail=f"Sync run {correlation_id} not found")
        return run

    @app.get("/admin/accounts/{account_id}/sync-runs", response_model=list[SyncRun], tags=["Sync"])
    async def list_sync_runs(
        account_id: str,
        limit: int = Query(50, ge=1, le=500),
        _api_key: str = Depends(require_api_key),
    ) -> list[SyncRun]:
        """List recent sync runs for an account, newest first."""
        runs: list[SyncRun] = app.state.sync_run_repository.list_for_account(account_id, limit=limit)
        return runs

    @app.post("/admin/validate", response_model=ValidationResult, tags=["Validation"])
    async def validate_catalog(
        catalog: LiveCatalog,
        fail_fast: bool = False,
        _api_key: str = Depends(require_api_key),
    ) -> ValidationResult:
        """Validate a catalog without submitting it anywhere."""
        result: ValidationResult = app.state.validation_pipeline.validate(catalog, fail_fast=fail_fast)
        return result

    @app.get("/admin/dlq", response_model=list[DlqMessage], tags=["Dead Letter Queue"])
    async def list_dlq_messages(
        account_id: str | None = None,
        failure_type: FailureType | None = None,
        error_code: str | None = None,
        include_replayed: bool = False,
        include_acknowledged: bool = False,
        pending_only: bool = False,
        limit: int = Query(100, ge=1, le=1000),
        _api_key: str = Depends(require_api_key),
    ) -> list[DlqMessage]:
        """List DLQ messages.

        With ``pending_only`` the messages are ordered for triage (most urgent
        priority first, then oldest); otherwise newest first.
        """
        if pending_only:
            pending: list[DlqMessage] = await app.state.dlq_store.list_pending(account_id, limit=limit)
            return pending

        message_filter = DlqFilter(
            account_id=account_id,
            failure_type=failure_type,
            error_code=error_code,
            include_replayed=include_replayed,
            include_acknowledged=include_acknowledged,
            limit=limit,
        )
        messages: list[DlqMessage] = await app.state.dlq_store.list_messages(message_filter)
        return messages

    @app.get("/admin/dlq/{message_id}", response_model=DlqMessage, tags=["Dead Letter Queue"])
    async def get_dlq_message(
        message_id: str,
        _api_key: str = Depends(require_api_key),
    ) -> DlqMessage:
        message: DlqMessage | None = await app.state.dlq_store.get(message_id)
        if message is None:
            raise HTTPException(status_code=404, detail=f"DLQ message {message_id} not found")
        return message

    @app.post(
        "/admin/dlq/{message_id}/replay",
        response_model=ReplayResponse,
        tags=["Dead Letter Queue"],
    )
    async def replay_dlq_message(
        message_id: str,
        body: ReplayRequest | None = None,
        _api_key: str = Depends(require_api_key),
    ) -> ReplayResponse:
        """Replay a dead-lettered request through the orchestrator.

        Raises:
            HTTPException: 404 if the message does not exist
        """
        if await app.state.dlq_store.get(message_id) is None:
            raise HTTPException(status_code=404, detail=f"DLQ message {message_id} not found")

        replayed_by = body.replayed_by if body else None
        result = await app.state.replay_service.replay(message_id, replayed_by=replayed_by)
        return ReplayResponse(**_replay_fields(result))

    @app.post("/admin/dlq/replay", response_model=BulkReplayResponse, tags=["Dead Letter Queue"])
    async def bulk_replay_dlq_messages(
        body: BulkReplayRequest,
        _api_key: str = Depends(require_api_key),
    ) -> BulkReplayResponse:
        """Replay every pending message matching the filter."""
        message_filter = DlqFilter(
            account_id=body.account_id,
            failure_type=body.failure_type,
            error_code=body.error_code,
            limit=body.limit,
        )
        result = await app.state.replay_service.bulk_replay(message_filter, replayed_by=body.replayed_by)
        return BulkReplayResponse(
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            success_rate=result.success_rate,
            results=[ReplayResponse(**_replay_fields(r)) for r in result.results],
        )

    @app.post(
        "/admin/dlq/{message_id}/acknowledge",
        response_model=DlqMessage,
        tags=["Dead Letter Queue"],
    )
    async def acknowledge_dlq_message(
        message_id: str,
        body: AcknowledgeRequest,
        _api_key: str = Depends(require_api_key),
    ) -> DlqMessage:
        message: DlqMessage | None = await app.state.dlq_store.acknowledge(
            message_id, acknowledged_by=body.acknowledged_by, notes=body.notes
        )
        if message is None:
            raise HTTPException(status_code=404, detail=f"DLQ message {message_id} not found")
        return message

    @app.get(
        "/admin/accounts/{account_id}/dlq/statistics",
        response_model=DlqStatistics,
        tags=["Dead Letter Queue"],
    )
    async def get_dlq_statistics(
        account_id: str,
        _api_key: str = Depends(require_api_key),
    ) -> DlqStatistics:
        statistics: DlqStatistics = await app.state.dlq_store.get_statistics(account_id)
        return statistics

    return app


def _replay_fields(result: Any) -> dict[str, Any]:
    return {
        "message_id": result.message_id,
        "success": result.success,
        "outcome_status": result.outcome_status,
        "error_message": result.error_message,
    }
