"""Custom metrics for the menu sync service."""

from opentelemetry import metrics

meter = metrics.get_meter("menu-sync-svc")

sync_outcome_counter = meter.create_counter(
    name="menu_sync_outcome_total",
    description="Sync requests processed, by outcome status",
    unit="1",
)

sync_duration_histogram = meter.create_histogram(
    name="menu_sync_duration_seconds",
    description="Duration of a single orchestrator invocation",
    unit="s",
)

retry_scheduled_counter = meter.create_counter(
    name="menu_sync_retry_scheduled_total",
    description="Retries scheduled, by retry topic",
    unit="1",
)

version_conflict_counter = meter.create_counter(
    name="menu_sync_version_conflict_total",
    description="Snapshot commits that lost a version race",
    unit="1",
)

validation_failure_counter = meter.create_counter(
    name="menu_sync_validation_failure_total",
    description="Deltas rejected by the validation pipeline",
    unit="1",
)

dlq_depth = meter.create_up_down_counter(
    name="menu_sync_dlq_depth",
    description="Messages in the DLQ that are neither replayed nor acknowledged",
    unit="1",
)

dlq_store_failure_counter = meter.create_counter(
    name="menu_sync_dlq_store_failure_total",
    description="DLQ writes that failed (data loss)",
    unit="1",
)

dlq_replay_counter = meter.create_counter(
    name="menu_sync_dlq_replay_total",
    description="DLQ replays, by result",
    unit="1",
)

platform_api_response_time = meter.create_histogram(
    name="platform_api_response_time_seconds",
    description="Response time for delivery platform API calls",
    unit="s",
)


def record_sync_outcome(status: str, duration_seconds: float) -> None:
    """Record the outcome and duration of one orchestrator invocation.

    Args:
        status: Outcome status (skipped, succeeded, retry_scheduled, dead_lettered)
        duration_seconds: Wall-clock duration of the invocation
    """
    sync_outcome_counter.add(1, {"status": status})
    sync_duration_histogram.record(duration_seconds, {"status": status})


def record_retry_scheduled(topic: str) -> None:
    retry_scheduled_counter.add(1, {"topic": topic})


def record_version_conflict() -> None:
    version_conflict_counter.add(1)


def record_validation_failure(critical_count: int, error_count: int) -> None:
    """Record a rejected delta.

    Args:
        critical_count: Number of critical findings
        error_count: Number of error findings
    """
    validation_failure_counter.add(
        1, {"has_critical": str(critical_count > 0).lower(), "error_count": str(error_count)}
    )


def record_dlq_change(change: int, failure_type: str | None = None) -> None:
    """Record a change in DLQ depth.

    Args:
        change: +1 when a message is stored, -1 when replayed or acknowledged
        failure_type: Failure type of the message, when known
    """
    dlq_depth.add(change, {"failure_type": failure_type} if failure_type else {})


def record_dlq_store_failure() -> None:
    dlq_store_failure_counter.add(1)


def record_dlq_replay(success: bool) -> None:
    dlq_replay_counter.add(1, {"result": "succeeded" if success else "failed"})


def record_platform_api_call(platform: str, operation: str, duration_seconds: float) -> None:
    """Record a platform API call.

    Args:
        platform: The platform API that was called
        operation: The operation performed (e.g., "submit_delta", "get_status")
        duration_seconds: Duration in seconds
    """
    platform_api_response_time.record(
        duration_seconds, {"platform": platform, "operation": operation}
    )
