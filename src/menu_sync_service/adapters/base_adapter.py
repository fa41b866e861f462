"""Base adapter for delivery platform integrations.

This module defines the abstract base class that all platform adapters must
implement. Adapters raise the typed errors from ``menu_sync_service.errors``
for failed calls so the orchestrator can decide between retrying and
dead-lettering; a response the platform returns but does not accept is
reported as ``SubmissionResult(accepted=False)``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from menu_sync_service.models.snapshot_models import MenuDelta


@dataclass
class SubmissionResult:
    """Platform response to a catalog delta submission.

    Attributes:
        accepted: Whether the platform accepted the delta for import
        import_id: Platform import id used to track the submission
        message: Platform message, typically the rejection reason
        errors: Field-level errors reported by the platform
    """

    accepted: bool
    import_id: str | None = None
    message: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class SubmissionStatus:
    """Processing status of a previous submission."""

    import_id: str
    status: str
    errors: list[str] = field(default_factory=list)


class DeliveryPlatformAdapter(ABC):
    """Abstract base class for delivery platform adapters."""

    def __init__(self, platform_name: str) -> None:
        """Initialize the platform adapter.

        Args:
            platform_name: Name of the delivery platform (e.g., 'talabat')
        """
        self.platform_name = platform_name

    @abstractmethod
    def format_delta(self, vendor_code: str, delta: MenuDelta) -> dict[str, Any]:
        """Transform a delta to the platform's request payload.

        Args:
            vendor_code: Platform-side vendor the catalog belongs to
            delta: Validated catalog delta

        Returns:
            dict: Platform-specific request body
        """

    @abstractmethod
    async def submit_delta(self, vendor_code: str, delta: MenuDelta) -> SubmissionResult:
        """Submit a delta to the platform.

        Args:
            vendor_code: Platform-side vendor the catalog belongs to
            delta: Validated catalog delta

        Returns:
            SubmissionResult: Whether the platform accepted the submission

        Raises:
            TransientSyncError: On network failures, timeouts, 408/425/429/5xx
            PermanentSyncError: On other 4xx responses and authentication failures
        """

    @abstractmethod
    async def get_submission_status(self, vendor_code: str, import_id: str) -> SubmissionStatus:
        """Look up the processing status of a previous submission."""
