"""Local server entry point for the menu sync service.

Run ``python src/main.py`` (or ``uvicorn main:app`` from ``src``) with
``STORAGE_BACKEND=memory`` and ``RETRY_BACKEND=inprocess`` to work without AWS.
"""

import logging
import os

from fastapi import FastAPI

from lambda_dependencies import DEVELOPMENT_API_KEY
from menu_sync_service.config import ServiceSettings
from menu_sync_service.container import build_container
from menu_sync_service.handlers.api_handler import create_app
from menu_sync_service.observability import configure_logging, setup_observability

logger = logging.getLogger(__name__)


def create_application(settings: ServiceSettings | None = None) -> FastAPI:
    """Build the admin app and every service behind it.

    Args:
        settings: Service settings, read from the environment if omitted

    Returns:
        The instrumented FastAPI application

    Raises:
        ValueError: If required settings are missing
    """
    settings = settings or ServiceSettings.from_env()
    configure_logging(settings.log_level)

    container = build_container(settings)

    api_keys = settings.admin_api_keys
    if not api_keys:
        logger.warning("ADMIN_API_KEY is not set, falling back to the development key")
        api_keys = [DEVELOPMENT_API_KEY]

    app = create_app(
        orchestrator=container.orchestrator,
        dlq_store=container.dlq_store,
        replay_service=container.replay_service,
        sync_run_repository=container.repositories.sync_runs,
        validation_pipeline=container.validation_pipeline,
        api_keys=api_keys,
    )
    setup_observability(app=app)

    logger.info(f"Menu sync service ready in {settings.environment} environment")
    return app


# Not built during test collection, tests call create_application directly
app = create_application() if os.getenv("ENVIRONMENT") != "test" else FastAPI()


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8001"))
    logger.info(f"Starting development server on http://{host}:{port} (docs at /docs)")

    uvicorn.run("main:app", host=host, port=port, reload=True, log_level=os.getenv("LOG_LEVEL", "info").lower())
