"""Single Lambda entry point for the menu sync service.

One function serves three trigger types:

* SQS retry messages, redelivered attempts scheduled by the orchestrator
* EventBridge schedule ticks and catalog-changed webhooks
* API Gateway requests for the admin API, through Mangum
"""

import asyncio
import logging
import os
from typing import Any

from mangum import Mangum

from lambda_dependencies import get_event_handler, get_fastapi_app, initialize_lambda_environment
from menu_sync_service.observability import setup_observability

logger = logging.getLogger(__name__)

# Cold start wiring is skipped under test so the module imports without AWS config
if os.getenv("ENVIRONMENT") == "test":
    app = None  # type: ignore
    mangum_handler = None  # type: ignore
else:
    initialize_lambda_environment()
    app = get_fastapi_app()
    setup_observability(app=app)
    mangum_handler = Mangum(app, lifespan="off")


def is_sqs_event(event: dict[str, Any]) -> bool:
    records = event.get("Records")
    return bool(records) and all(r.get("eventSource") == "aws:sqs" for r in records)


def is_eventbridge_event(event: dict[str, Any]) -> bool:
    return all(field in event for field in ("source", "detail-type", "detail"))


def handle_sqs_event(event: dict[str, Any]) -> dict[str, Any]:
    """Process a batch of retry messages.

    Returns a partial batch response so SQS redelivers only the failed
    records. An exception here fails, and redelivers, the whole batch.
    """
    logger.info(f"Processing {len(event['Records'])} retry message(s)")
    response: dict[str, Any] = asyncio.run(get_event_handler().handle_sqs_batch(event))
    return response


def handle_eventbridge_event(event: dict[str, Any]) -> dict[str, Any]:
    """Process a schedule tick or catalog-changed webhook."""
    logger.info(f"Processing EventBridge event {event.get('source')}/{event.get('detail-type')}")
    try:
        response: dict[str, Any] = asyncio.run(get_event_handler().handle_eventbridge_event(event))
    except Exception as e:
        logger.exception(f"EventBridge event {event.get('id')} failed")
        return {"statusCode": 500, "body": f"Error processing event: {e}"}
    return response


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Route a Lambda invocation by event shape.

    Args:
        event: Lambda event payload
        context: Lambda context object

    Returns:
        ``batchItemFailures`` for SQS, otherwise a statusCode/body response
    """
    logger.info(f"Lambda invocation {context.aws_request_id}")

    if is_sqs_event(event):
        return handle_sqs_event(event)

    if is_eventbridge_event(event):
        return handle_eventbridge_event(event)

    try:
        result: dict[str, Any] = mangum_handler(event, context)
    except Exception as e:
        logger.exception("Admin API request failed")
        return {"statusCode": 500, "body": f"Internal server error: {e}"}
    return result
