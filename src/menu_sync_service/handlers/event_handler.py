"""Trigger handling: EventBridge schedule/webhook events and SQS retry messages."""

import logging
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from menu_sync_service.models.sync_models import (
    SyncOutcome,
    SyncOutcomeStatus,
    SyncRequest,
    TriggerSource,
)
from menu_sync_service.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

SCHEDULER_SOURCE = "com.menusync.scheduler"
SCHEDULED_SYNC_DETAIL_TYPE = "ScheduledCatalogSync"
WEBHOOK_SOURCE = "com.menusync.webhook"
CATALOG_CHANGED_DETAIL_TYPE = "CatalogChanged"


class SyncEventDetail(BaseModel):
    """Detail payload of schedule and webhook events.

    Attributes:
        account_id: Account whose catalog should be synced
        branch_id: Optional branch to scope the sync to
        vendor_code: Optional platform vendor code
        idempotency_key: Key supplied by the webhook sender, if any
    """

    account_id: str = Field(..., min_length=1)
    branch_id: str | None = None
    vendor_code: str | None = None
    idempotency_key: str | None = None


def parse_eventbridge_event(event: dict[str, Any]) -> SyncRequest | None:
    """Parse an EventBridge event into a SyncRequest.

    Scheduled events are keyed on the EventBridge event id, so a redelivered
    event is deduplicated while the next scheduled run gets a new key. Webhooks
    use the sender's idempotency key when present.

    Args:
        event: Raw EventBridge event dictionary

    Returns:
        SyncRequest if parsing succeeds, None for unsupported or invalid events
    """
    source = event.get("source", "")
    detail_type = event.get("detail-type", "")
    event_id = event.get("id") or "unknown"

    try:
        detail = SyncEventDetail(**(event.get("detail") or {}))
    except (PydanticValidationError, TypeError) as e:
        logger.error(f"Failed to parse EventBridge event {event_id}: {e}")
        return None

    if source == SCHEDULER_SOURCE and detail_type == SCHEDULED_SYNC_DETAIL_TYPE:
        trigger = TriggerSource.SCHEDULE
        key = f"schedule:{detail.account_id}:{detail.branch_id or '*'}:{event_id}"
    elif source == WEBHOOK_SOURCE and detail_type == CATALOG_CHANGED_DETAIL_TYPE:
        trigger = TriggerSource.WEBHOOK
        key = detail.idempotency_key or f"webhook:{event_id}"
    else:
        logger.warning(f"Unsupported event type: {source}/{detail_type}")
        return None

    return SyncRequest(
        account_id=detail.account_id,
        branch_id=detail.branch_id,
        vendor_code=detail.vendor_code,
        idempotency_key=key,
        trigger_source=trigger,
    )


def parse_retry_message(record: dict[str, Any]) -> SyncRequest | None:
    """Parse an SQS retry record body into the SyncRequest to redeliver."""
    try:
        return SyncRequest.model_validate_json(record.get("body", ""))
    except PydanticValidationError as e:
        logger.error(f"Discarding malformed retry message {record.get('messageId')}: {e}")
        return None


class SyncEventHandler:
    """Turns triggers into orchestrator invocations."""

    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        self.orchestrator = orchestrator

    async def handle_sync_request(self, request: SyncRequest) -> SyncOutcome:
        logger.info(
            f"Processing {request.trigger_source.value} sync for account {request.account_id} "
            f"(attempt {request.attempt}, {request.correlation_id})"
        )
        outcome = await self.orchestrator.process(request)
        logger.info(f"Sync {request.correlation_id} finished: {outcome.status.value}")
        return outcome

    async def handle_eventbridge_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Handle a schedule or webhook event.

        Args:
            event: EventBridge event dictionary

        Returns:
            Dictionary with statusCode and body for Lambda response
        """
        request = parse_eventbridge_event(event)
        if request is None:
            return {
                "statusCode": 400,
                "body": f"Unsupported or invalid event: {event.get('source')}/{event.get('detail-type')}",
            }

        outcome = await self.handle_sync_request(request)
        # A scheduled retry or a dead-letter is a handled outcome, not a Lambda failure
        return {
            "statusCode": 200,
            "body": f"Sync {outcome.correlation_id} for account {outcome.account_id}: {outcome.status.value}",
        }

    async def handle_sqs_batch(self, event: dict[str, Any]) -> dict[str, Any]:
        """Handle a batch of SQS retry messages.

        Every outcome is terminal for its message (retries are re-enqueued by
        the orchestrator itself), so only records that raised are reported as
        batch item failures for SQS to redeliver.

        Returns:
            Partial batch response with ``batchItemFailures``
        """
        failures: list[dict[str, str]] = []

        for record in event.get("Records", []):
            request = parse_retry_message(record)
            if request is None:
                continue

            try:
                outcome = await self.handle_sync_request(request)
            except Exception:
                logger.exception(f"Retry message {record.get('messageId')} failed")
                failures.append({"itemIdentifier": record.get("messageId", "")})
                continue

            if outcome.status == SyncOutcomeStatus.DEAD_LETTERED and outcome.dlq_message_id is None:
                # DLQ write failed, let SQS redeliver rather than drop the request
                failures.append({"itemIdentifier": record.get("messageId", "")})

        return {"batchItemFailures": failures}
