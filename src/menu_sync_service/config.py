"""Service configuration read from environment variables."""

import os
from dataclasses import dataclass, field
from decimal import Decimal

from menu_sync_service.models.validation_models import ValidationConfig


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _api_keys_from_env() -> list[str]:
    api_keys_str = os.getenv("ADMIN_API_KEY", "")
    return [key.strip() for key in api_keys_str.split(",") if key.strip()]


@dataclass
class ServiceSettings:
    """All runtime settings of the sync service.

    ``storage_backend`` selects DynamoDB or in-memory repositories and
    ``retry_backend`` selects SQS or in-process retry delivery; the in-memory
    and in-process options are meant for local development.
    """

    environment: str = "development"
    log_level: str = "INFO"
    aws_region: str = "us-east-1"
    dynamodb_endpoint: str | None = None

    storage_backend: str = "dynamodb"
    snapshots_table: str = "menu-sync-snapshots"
    deltas_table: str = "menu-sync-deltas"
    idempotency_table: str = "menu-sync-idempotency"
    dlq_table: str = "menu-sync-dlq"
    sync_runs_table: str = "menu-sync-runs"

    retry_backend: str = "sqs"
    retry_queue_url: str | None = None

    source_catalog_base_url: str | None = None
    source_catalog_api_key: str | None = None
    source_catalog_page_size: int = 200

    talabat_base_url: str = "https://integration-middleware.talabat.com"
    talabat_username: str | None = None
    talabat_password: str | None = None
    talabat_chain_code: str | None = None
    talabat_callback_url: str | None = None

    idempotency_ttl_seconds: int = 24 * 60 * 60
    idempotency_guard_seconds: int = 30
    max_sync_attempts: int = 3
    max_version_conflicts: int = 3

    admin_api_keys: list[str] = field(default_factory=list)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    @property
    def uses_memory_storage(self) -> bool:
        return self.storage_backend == "memory"

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        validation_defaults = ValidationConfig()

        validation = ValidationConfig(
            max_name_length=_int_env("VALIDATION_MAX_NAME_LENGTH", validation_defaults.max_name_length),
            max_description_length=_int_env(
                "VALIDATION_MAX_DESCRIPTION_LENGTH", validation_defaults.max_description_length
            ),
            max_price=Decimal(os.getenv("VALIDATION_MAX_PRICE", str(validation_defaults.max_price))),
            max_modifier_options=_int_env(
                "VALIDATION_MAX_MODIFIER_OPTIONS", validation_defaults.max_modifier_options
            ),
            max_modifiers_per_product=_int_env(
                "VALIDATION_MAX_MODIFIERS_PER_PRODUCT", validation_defaults.max_modifiers_per_product
            ),
        )

        return cls(
            environment=os.getenv("ENVIRONMENT", defaults.environment),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            aws_region=os.getenv("AWS_REGION", defaults.aws_region),
            dynamodb_endpoint=os.getenv("DYNAMODB_ENDPOINT"),
            storage_backend=os.getenv("STORAGE_BACKEND", defaults.storage_backend).lower(),
            snapshots_table=os.getenv("DYNAMODB_SNAPSHOTS_TABLE", defaults.snapshots_table),
            deltas_table=os.getenv("DYNAMODB_DELTAS_TABLE", defaults.deltas_table),
            idempotency_table=os.getenv("DYNAMODB_IDEMPOTENCY_TABLE", defaults.idempotency_table),
            dlq_table=os.getenv("DYNAMODB_DLQ_TABLE", defaults.dlq_table),
            sync_runs_table=os.getenv("DYNAMODB_SYNC_RUNS_TABLE", defaults.sync_runs_table),
            retry_backend=os.getenv("RETRY_BACKEND", defaults.retry_backend).lower(),
            retry_queue_url=os.getenv("SYNC_RETRY_QUEUE_URL"),
            source_catalog_base_url=os.getenv("SOURCE_CATALOG_BASE_URL"),
            source_catalog_api_key=os.getenv("SOURCE_CATALOG_API_KEY"),
            source_catalog_page_size=_int_env(
                "SOURCE_CATALOG_PAGE_SIZE", defaults.source_catalog_page_size
            ),
            talabat_base_url=os.getenv("TALABAT_BASE_URL", defaults.talabat_base_url),
            talabat_username=os.getenv("TALABAT_USERNAME"),
            talabat_password=os.getenv("TALABAT_PASSWORD"),
            talabat_chain_code=os.getenv("TALABAT_CHAIN_CODE"),
            talabat_callback_url=os.getenv("TALABAT_CALLBACK_URL"),
            idempotency_ttl_seconds=_int_env(
                "IDEMPOTENCY_TTL_SECONDS", defaults.idempotency_ttl_seconds
            ),
            idempotency_guard_seconds=_int_env(
                "IDEMPOTENCY_GUARD_SECONDS", defaults.idempotency_guard_seconds
            ),
            max_sync_attempts=_int_env("MAX_SYNC_ATTEMPTS", defaults.max_sync_attempts),
            max_version_conflicts=_int_env("MAX_VERSION_CONFLICTS", defaults.max_version_conflicts),
            admin_api_keys=_api_keys_from_env(),
            validation=validation,
        )

    def check_required(self) -> None:
        """Raise ValueError if settings needed to run a sync are missing."""
        if not self.source_catalog_base_url or not self.source_catalog_api_key:
            raise ValueError(
                "SOURCE_CATALOG_BASE_URL and SOURCE_CATALOG_API_KEY must be set in environment"
            )

        talabat = (self.talabat_username, self.talabat_password, self.talabat_chain_code)
        if not all(talabat):
            raise ValueError(
                "TALABAT_USERNAME, TALABAT_PASSWORD and TALABAT_CHAIN_CODE must be set in environment"
            )

        if self.retry_backend == "sqs" and not self.retry_queue_url:
            raise ValueError("SYNC_RETRY_QUEUE_URL must be set when RETRY_BACKEND is sqs")

        if self.storage_backend not in ("dynamodb", "memory"):
            raise ValueError(f"Unsupported STORAGE_BACKEND: {self.storage_backend}")

        if self.retry_backend not in ("sqs", "inprocess"):
            raise ValueError(f"Unsupported RETRY_BACKEND: {self.retry_backend}")
