"""Retry scheduling with fixed backoff steps.

Failed attempt N is redelivered after:

=======  =======  ======================
attempt  delay    logical topic
=======  =======  ======================
1        60 s     menu.sync.retry.1m
2        300 s    menu.sync.retry.5m
3+       900 s    menu.sync.retry.15m
=======  =======  ======================

Workers never sleep; a retry is a delayed delivery of the next attempt.
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from botocore.exceptions import ClientError
from mypy_boto3_sqs import SQSClient

from menu_sync_service.errors import TransientSyncError
from menu_sync_service.models.sync_models import SyncRequest

logger = logging.getLogger(__name__)

RETRY_DELAYS_SECONDS = (60, 300, 900)
MAX_ATTEMPTS = 3


class RetryTopic(str, Enum):
    """Logical retry topics, one per backoff step."""

    ONE_MINUTE = "menu.sync.retry.1m"
    FIVE_MINUTES = "menu.sync.retry.5m"
    FIFTEEN_MINUTES = "menu.sync.retry.15m"


_TOPICS = (RetryTopic.ONE_MINUTE, RetryTopic.FIVE_MINUTES, RetryTopic.FIFTEEN_MINUTES)


def _step_index(attempt: int) -> int:
    return min(max(attempt, 1), len(RETRY_DELAYS_SECONDS)) - 1


def retry_delay_for_attempt(attempt: int) -> int:
    """Delay in seconds before retrying after failed attempt ``attempt``."""
    return RETRY_DELAYS_SECONDS[_step_index(attempt)]


def retry_topic_for_attempt(attempt: int) -> RetryTopic:
    return _TOPICS[_step_index(attempt)]


class RetryScheduler(ABC):
    """Delivers a sync request again after a delay.

    Implementations raise ``TransientSyncError`` if the retry could not be
    scheduled; the orchestrator then dead-letters the request.
    """

    @abstractmethod
    async def schedule_retry(self, request: SyncRequest, delay_seconds: int) -> None:
        """Schedule ``request`` (already advanced to its next attempt) for delivery.

        Args:
            request: Request to redeliver
            delay_seconds: Seconds to wait before delivery
        """


class SqsRetryScheduler(RetryScheduler):
    """Schedules retries as delayed SQS messages.

    SQS caps DelaySeconds at 900, which matches the longest backoff step.
    """

    MAX_DELAY_SECONDS = 900

    def __init__(self, sqs_client: SQSClient, queue_url: str) -> None:
        self.sqs_client = sqs_client
        self.queue_url = queue_url

    async def schedule_retry(self, request: SyncRequest, delay_seconds: int) -> None:
        topic = retry_topic_for_attempt(request.attempt - 1)
        try:
            response = self.sqs_client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=request.model_dump_json(),
                DelaySeconds=min(delay_seconds, self.MAX_DELAY_SECONDS),
                MessageAttributes={
                    "retry_topic": {"DataType": "String", "StringValue": topic.value},
                    "correlation_id": {"DataType": "String", "StringValue": request.correlation_id},
                    "attempt": {"DataType": "Number", "StringValue": str(request.attempt)},
                },
            )
        except ClientError as e:
            raise TransientSyncError(
                f"Failed to schedule retry on {topic.value}: {e}", code="RETRY_SCHEDULING_FAILED"
            ) from e

        logger.info(
            f"Scheduled attempt {request.attempt} for {request.correlation_id} on {topic.value} "
            f"in {delay_seconds}s (message {response.get('MessageId')})"
        )


class InProcessRetryScheduler(RetryScheduler):
    """Schedules retries on the running asyncio loop.

    Intended for local development and tests; pending retries are lost when
    the process exits.
    """

    def __init__(self, processor: Callable[[SyncRequest], Awaitable[Any]] | None = None) -> None:
        self.processor = processor
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Future[Any]] = set()

    def bind(self, processor: Callable[[SyncRequest], Awaitable[Any]]) -> None:
        """Attach the callable that processes redelivered requests."""
        self.processor = processor

    @property
    def pending_count(self) -> int:
        return len(self._handles)

    async def schedule_retry(self, request: SyncRequest, delay_seconds: int) -> None:
        if self.processor is None:
            raise TransientSyncError(
                "In-process retry scheduler has no processor bound", code="RETRY_SCHEDULING_FAILED"
            )

        loop = asyncio.get_running_loop()
        handle_key = f"{request.correlation_id}:{request.attempt}"
        self._handles[handle_key] = loop.call_later(
            delay_seconds, self._fire, handle_key, request, self.processor
        )
        logger.info(f"Scheduled in-process retry {handle_key} in {delay_seconds}s")

    def _fire(
        self,
        handle_key: str,
        request: SyncRequest,
        processor: Callable[[SyncRequest], Awaitable[Any]],
    ) -> None:
        self._handles.pop(handle_key, None)
        task = asyncio.ensure_future(processor(request))
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_task_done, handle_key))

    def _on_task_done(self, handle_key: str, task: "asyncio.Future[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"In-process retry {handle_key} failed: {error}", exc_info=error)

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
