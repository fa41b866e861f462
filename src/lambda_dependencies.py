"""Per-container object cache for the Lambda entry point.

Settings, the service container, the event handler and the admin app are
built on first use and kept in module globals, so warm invocations reuse
the same DynamoDB resource, HTTP clients and token caches.
"""

import logging

from fastapi import FastAPI

from menu_sync_service.config import ServiceSettings
from menu_sync_service.container import ServiceContainer, build_container
from menu_sync_service.handlers.api_handler import create_app
from menu_sync_service.handlers.event_handler import SyncEventHandler
from menu_sync_service.observability import configure_logging

logger = logging.getLogger(__name__)

DEVELOPMENT_API_KEY = "dummy-key-for-development"

_settings: ServiceSettings | None = None
_container: ServiceContainer | None = None
_event_handler: SyncEventHandler | None = None
_fastapi_app: FastAPI | None = None


def get_settings() -> ServiceSettings:
    global _settings
    if _settings is None:
        _settings = ServiceSettings.from_env()
    return _settings


def get_container() -> ServiceContainer:
    """Return the cached container, building it from the environment once.

    Raises:
        ValueError: If required settings are missing
    """
    global _container
    if _container is None:
        _container = build_container(get_settings())
        logger.info(
            f"Service container ready (storage={_container.settings.storage_backend}, "
            f"retries={_container.settings.retry_backend})"
        )
    return _container


def get_event_handler() -> SyncEventHandler:
    global _event_handler
    if _event_handler is None:
        _event_handler = SyncEventHandler(orchestrator=get_container().orchestrator)
    return _event_handler


def get_fastapi_app() -> FastAPI:
    """Return the cached admin app wired to the container's services."""
    global _fastapi_app
    if _fastapi_app is not None:
        return _fastapi_app

    container = get_container()
    api_keys = container.settings.admin_api_keys
    if not api_keys:
        logger.warning("ADMIN_API_KEY is not set, falling back to the development key")
        api_keys = [DEVELOPMENT_API_KEY]

    _fastapi_app = create_app(
        orchestrator=container.orchestrator,
        dlq_store=container.dlq_store,
        replay_service=container.replay_service,
        sync_run_repository=container.repositories.sync_runs,
        validation_pipeline=container.validation_pipeline,
        api_keys=api_keys,
    )
    return _fastapi_app


def initialize_lambda_environment() -> None:
    """Configure JSON logging; called once per cold start."""
    configure_logging(get_settings().log_level)
    logger.info("Lambda environment initialized")
