"""Object graph construction shared by the local server and Lambda entry points."""

import logging
from dataclasses import dataclass
from typing import Any

import boto3

from menu_sync_service.adapters.talabat_adapter import TalabatAdapter
from menu_sync_service.config import ServiceSettings
from menu_sync_service.repositories.memory_repositories import (
    InMemoryDeltaRepository,
    InMemoryDlqRepository,
    InMemoryIdempotencyRepository,
    InMemorySnapshotRepository,
    InMemorySyncRunRepository,
)
from menu_sync_service.repositories.protocols import (
    DeltaRepository,
    DlqRepository,
    IdempotencyRepository,
    SnapshotRepository,
    SyncRunRepository,
)
from menu_sync_service.repositories.sync_repositories import (
    DynamoDeltaRepository,
    DynamoDlqRepository,
    DynamoIdempotencyRepository,
    DynamoSnapshotRepository,
    DynamoSyncRunRepository,
)
from menu_sync_service.services.delta_computer import DeltaComputer
from menu_sync_service.services.dlq_service import DlqReplayService, DlqStore
from menu_sync_service.services.idempotency_tracker import IdempotencyTracker
from menu_sync_service.services.retry_scheduler import (
    InProcessRetryScheduler,
    RetryScheduler,
    SqsRetryScheduler,
)
from menu_sync_service.services.snapshot_store import SnapshotStore
from menu_sync_service.services.source_catalog_client import SourceCatalogClient
from menu_sync_service.services.sync_orchestrator import SyncOrchestrator
from menu_sync_service.validation.pipeline import ValidationPipeline

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
    snapshots: SnapshotRepository
    deltas: DeltaRepository
    idempotency: IdempotencyRepository
    dlq: DlqRepository
    sync_runs: SyncRunRepository


@dataclass
class ServiceContainer:
    """Fully wired services of one process."""

    settings: ServiceSettings
    repositories: Repositories
    orchestrator: SyncOrchestrator
    dlq_store: DlqStore
    replay_service: DlqReplayService
    validation_pipeline: ValidationPipeline


def get_dynamodb_resource(settings: ServiceSettings) -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    if settings.dynamodb_endpoint:
        logger.info(f"Using local DynamoDB at {settings.dynamodb_endpoint}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=settings.dynamodb_endpoint,
            region_name=settings.aws_region,
        )

    logger.info(f"Using AWS DynamoDB in region {settings.aws_region}")
    # boto3 uses the default credential chain (IAM role, env vars, etc.)
    return boto3.resource("dynamodb", region_name=settings.aws_region)


def create_repositories(settings: ServiceSettings, dynamodb_resource: Any | None = None) -> Repositories:
    if settings.uses_memory_storage:
        logger.warning("Using in-memory storage, state is lost when the process exits")
        return Repositories(
            snapshots=InMemorySnapshotRepository(),
            deltas=InMemoryDeltaRepository(),
            idempotency=InMemoryIdempotencyRepository(),
            dlq=InMemoryDlqRepository(),
            sync_runs=InMemorySyncRunRepository(),
        )

    resource = dynamodb_resource or get_dynamodb_resource(settings)
    logger.info(
        f"Repositories configured - snapshots: {settings.snapshots_table}, "
        f"idempotency: {settings.idempotency_table}, dlq: {settings.dlq_table}"
    )
    return Repositories(
        snapshots=DynamoSnapshotRepository(resource, settings.snapshots_table),
        deltas=DynamoDeltaRepository(resource, settings.deltas_table),
        idempotency=DynamoIdempotencyRepository(resource, settings.idempotency_table),
        dlq=DynamoDlqRepository(resource, settings.dlq_table),
        sync_runs=DynamoSyncRunRepository(resource, settings.sync_runs_table),
    )


def create_retry_scheduler(settings: ServiceSettings) -> RetryScheduler:
    if settings.retry_backend == "inprocess":
        logger.warning("Using in-process retry scheduling, pending retries are lost on exit")
        return InProcessRetryScheduler()

    if settings.retry_queue_url is None:
        raise ValueError("SYNC_RETRY_QUEUE_URL is required when RETRY_BACKEND is sqs")
    sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return SqsRetryScheduler(sqs_client, settings.retry_queue_url)


def build_container(
    settings: ServiceSettings,
    dynamodb_resource: Any | None = None,
    retry_scheduler: RetryScheduler | None = None,
) -> ServiceContainer:
    """Create repositories, clients and services from settings.

    Args:
        settings: Service settings
        dynamodb_resource: Optional pre-built DynamoDB resource
        retry_scheduler: Optional retry scheduler overriding ``settings.retry_backend``

    Returns:
        ServiceContainer with every service wired

    Raises:
        ValueError: If required configuration is missing
    """
    settings.check_required()
    repositories = create_repositories(settings, dynamodb_resource)

    if not (settings.source_catalog_base_url and settings.source_catalog_api_key):
        raise ValueError("SOURCE_CATALOG_BASE_URL and SOURCE_CATALOG_API_KEY are required")
    source_client = SourceCatalogClient(
        base_url=settings.source_catalog_base_url,
        api_key=settings.source_catalog_api_key,
        page_size=settings.source_catalog_page_size,
    )
    logger.info(f"Source catalog client configured - URL: {settings.source_catalog_base_url}")

    if not (settings.talabat_username and settings.talabat_password and settings.talabat_chain_code):
        raise ValueError("TALABAT_USERNAME, TALABAT_PASSWORD and TALABAT_CHAIN_CODE are required")
    platform_adapter = TalabatAdapter(
        base_url=settings.talabat_base_url,
        chain_code=settings.talabat_chain_code,
        username=settings.talabat_username,
        password=settings.talabat_password,
        callback_url=settings.talabat_callback_url,
    )

    scheduler = retry_scheduler or create_retry_scheduler(settings)
    dlq_store = DlqStore(repositories.dlq)
    validation_pipeline = ValidationPipeline(settings.validation)

    orchestrator = SyncOrchestrator(
        source_client=source_client,
        platform_adapter=platform_adapter,
        snapshot_store=SnapshotStore(repositories.snapshots),
        delta_computer=DeltaComputer(),
        validation_pipeline=validation_pipeline,
        idempotency_tracker=IdempotencyTracker(
            repositories.idempotency,
            ttl_seconds=settings.idempotency_ttl_seconds,
            guard_seconds=settings.idempotency_guard_seconds,
        ),
        dlq_store=dlq_store,
        retry_scheduler=scheduler,
        sync_run_repository=repositories.sync_runs,
        delta_repository=repositories.deltas,
        max_attempts=settings.max_sync_attempts,
        max_version_conflicts=settings.max_version_conflicts,
    )

    if isinstance(scheduler, InProcessRetryScheduler):
        scheduler.bind(orchestrator.process)

    logger.info("Services initialized")
    return ServiceContainer(
        settings=settings,
        repositories=repositories,
        orchestrator=orchestrator,
        dlq_store=dlq_store,
        replay_service=DlqReplayService(dlq_store, orchestrator),
        validation_pipeline=validation_pipeline,
    )
