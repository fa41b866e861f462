"""Idempotency tracker: per-(account, key) compare-and-set state machine.

States::

    (absent | expired) --check--> Started --succeeded--> Succeeded
                                          --failed-----> Failed --check after guard--> Started

A Succeeded record makes redelivery of the same key a no-op until it
expires. A Failed record may be restarted once the guard window has passed,
which lets scheduled retries (first delay 60s) re-acquire the key while
near-simultaneous duplicates are still refused.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from menu_sync_service.models.sync_models import IdempotencyRecord, IdempotencyStatus
from menu_sync_service.repositories.protocols import IdempotencyRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_GUARD_SECONDS = 30


def _utc_now() -> datetime:
    return datetime.now(UTC)


class IdempotencyTracker:
    """Service guarding at-most-once processing per idempotency key."""

    def __init__(
        self,
        repository: IdempotencyRepository,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        guard_seconds: int = DEFAULT_GUARD_SECONDS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize the IdempotencyTracker.

        Args:
            repository: Idempotency record persistence backend
            ttl_seconds: How long a record blocks redelivery of its key
            guard_seconds: Minimum age of a Failed record before it can restart
            clock: Source of the current time
        """
        self.repository = repository
        self.ttl = timedelta(seconds=ttl_seconds)
        self.guard = timedelta(seconds=guard_seconds)
        self.clock = clock

    async def check_and_mark_started(
        self,
        account_id: str,
        idempotency_key: str,
        correlation_id: str | None = None,
    ) -> tuple[bool, IdempotencyRecord | None]:
        """Atomically claim a key for processing.

        Args:
            account_id: Account the key is scoped to
            idempotency_key: Trigger deduplication key
            correlation_id: Sync run claiming the key

        Returns:
            Tuple of (can_process, record). When processing is refused the
            existing record is returned so callers can tell a completed key
            from one in flight.

        Raises:
            StorageUnavailableError: If the record store cannot be reached
        """
        now = self.clock()
        candidate = IdempotencyRecord(
            account_id=account_id,
            idempotency_key=idempotency_key,
            status=IdempotencyStatus.STARTED,
            first_seen_at=now,
            last_processed_at=now,
            expires_at=now + self.ttl,
            correlation_id=correlation_id,
        )

        stored = self.repository.try_start(candidate, now=now, guard_cutoff=now - self.guard)
        if stored is not None:
            return True, stored

        existing = self.repository.get(account_id, idempotency_key)
        logger.info(
            f"Idempotency key {idempotency_key} for account {account_id} refused, "
            f"existing status: {existing.status.value if existing else 'unknown'}"
        )
        return False, existing

    async def mark_succeeded(
        self, account_id: str, idempotency_key: str, result_hash: str | None = None
    ) -> bool:
        """Move Started -> Succeeded. Returns False if the record was not Started."""
        return self._transition(
            account_id, idempotency_key, IdempotencyStatus.SUCCEEDED, result_hash
        )

    async def mark_failed(self, account_id: str, idempotency_key: str) -> bool:
        """Move Started -> Failed. Returns False if the record was not Started."""
        return self._transition(account_id, idempotency_key, IdempotencyStatus.FAILED)

    async def get_record(self, account_id: str, idempotency_key: str) -> IdempotencyRecord | None:
        return self.repository.get(account_id, idempotency_key)

    def _transition(
        self,
        account_id: str,
        idempotency_key: str,
        new_status: IdempotencyStatus,
        result_hash: str | None = None,
    ) -> bool:
        changed = self.repository.compare_and_set(
            account_id,
            idempotency_key,
            expected=IdempotencyStatus.STARTED,
            new_status=new_status,
            now=self.clock(),
            result_hash=result_hash,
        )
        if not changed:
            logger.warning(
                f"Idempotency key {idempotency_key} for account {account_id} was not Started, "
                f"left unchanged instead of marking {new_status.value}"
            )
        return changed
