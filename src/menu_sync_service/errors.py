"""Typed error model for the sync pipeline.

Collaborators (source client, platform adapter, storage) raise these errors so
the orchestrator can route failures by kind instead of inspecting messages:

- transient errors are retried with backoff until the attempt budget runs out
- permanent errors are dead-lettered immediately
- validation failures are dead-lettered with the full validation report
"""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from menu_sync_service.models.validation_models import ValidationResult


class FailureKind(str, Enum):
    """Classification used by the orchestrator to route a failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    VALIDATION_FAILED = "validation_failed"


# Status codes that indicate the remote side may succeed later
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


class SyncPipelineError(Exception):
    """Base class for all classified pipeline failures.

    Attributes:
        message: Human readable description
        code: Stable machine readable error code
        status_code: Remote HTTP status code, when the failure came from a remote call
    """

    kind: FailureKind = FailureKind.TRANSIENT
    default_code: str = "SYNC_ERROR"

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.kind == FailureKind.TRANSIENT

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class TransientSyncError(SyncPipelineError):
    """Failure that may succeed if the same request is retried later."""

    kind = FailureKind.TRANSIENT
    default_code = "TRANSIENT_ERROR"


class PermanentSyncError(SyncPipelineError):
    """Failure that will not succeed on retry without a change in data or config."""

    kind = FailureKind.PERMANENT
    default_code = "PERMANENT_ERROR"


class ValidationFailedError(SyncPipelineError):
    """The catalog delta did not pass the validation pipeline."""

    kind = FailureKind.VALIDATION_FAILED
    default_code = "VALIDATION_FAILED"

    def __init__(self, result: "ValidationResult", message: str | None = None) -> None:
        super().__init__(message or f"Validation failed: {result.summary()}")
        self.result = result


class StorageUnavailableError(TransientSyncError):
    """Persistent storage could not be reached or returned an unexpected error."""

    default_code = "STORAGE_UNAVAILABLE"


class VersionConflictError(SyncPipelineError):
    """Another worker committed the same snapshot version first.

    The orchestrator re-runs the attempt against the new latest snapshot without
    consuming retry budget.
    """

    kind = FailureKind.TRANSIENT
    default_code = "VERSION_CONFLICT"

    def __init__(self, account_id: str, branch_id: str | None, version: int) -> None:
        super().__init__(
            f"Snapshot version {version} already exists for {account_id}/{branch_id or '*'}"
        )
        self.account_id = account_id
        self.branch_id = branch_id
        self.version = version


def is_transient_status(status_code: int) -> bool:
    """Return True if an HTTP status code should be retried."""
    return status_code in TRANSIENT_STATUS_CODES or status_code >= 500


def error_from_status(status_code: int, message: str, code: str | None = None) -> SyncPipelineError:
    """Build a classified error from a remote HTTP status code.

    Args:
        status_code: HTTP status code returned by the remote system
        message: Description of the failed call
        code: Optional error code, defaults to ``HTTP_<status>``

    Returns:
        TransientSyncError for 408/425/429/5xx, PermanentSyncError otherwise
    """
    error_code = code or f"HTTP_{status_code}"
    if is_transient_status(status_code):
        return TransientSyncError(message, code=error_code, status_code=status_code)
    return PermanentSyncError(message, code=error_code, status_code=status_code)
