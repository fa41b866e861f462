"""FastAPI dependencies guarding the admin routes."""

import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request

from menu_sync_service.auth.api_key_validator import APIKeyValidator

logger = logging.getLogger(__name__)


def check_api_key(api_key: str | None, validator: APIKeyValidator | None) -> str:
    """Return the key if the validator accepts it.

    Raises:
        HTTPException: 401 if the key is missing, or unknown to the validator.
            A missing validator rejects every key.
    """
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API key")

    if validator is None or not validator.validate(api_key):
        logger.warning("Rejected admin request with an unknown API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return api_key


def require_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header()] = None,
) -> str:
    """Dependency validating X-API-Key against the app's ``api_key_validator``."""
    validator = getattr(request.app.state, "api_key_validator", None)
    return check_api_key(x_api_key, validator)
