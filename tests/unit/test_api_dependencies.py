"""Unit tests for FastAPI authentication dependencies."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from menu_sync_service.auth.api_dependencies import check_api_key, require_api_key
from menu_sync_service.auth.api_key_validator import APIKeyValidator


@pytest.fixture
def validator() -> APIKeyValidator:
    return APIKeyValidator(api_keys=["ops-key"])


@pytest.mark.unit
class TestCheckAPIKey:
    """Test suite for check_api_key."""

    def test_returns_valid_key(self, validator: APIKeyValidator) -> None:
        assert check_api_key("ops-key", validator) == "ops-key"

    @pytest.mark.parametrize(
        ("api_key", "detail"),
        [(None, "Missing API key"), ("", "Missing API key"), ("wrong-key", "Invalid API key")],
    )
    def test_rejects_with_401(
        self, validator: APIKeyValidator, api_key: str | None, detail: str
    ) -> None:
        """Test that missing and unknown keys are both unauthorized."""
        with pytest.raises(HTTPException) as exc_info:
            check_api_key(api_key, validator)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == detail

    def test_no_validator_rejects_every_key(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            check_api_key("ops-key", None)

        assert exc_info.value.detail == "Invalid API key"


@pytest.mark.unit
class TestRequireAPIKey:
    """Test suite for the require_api_key dependency."""

    def test_uses_validator_from_app_state(self, validator: APIKeyValidator) -> None:
        request = MagicMock()
        request.app.state = SimpleNamespace(api_key_validator=validator)

        assert require_api_key(request, x_api_key="ops-key") == "ops-key"

    def test_app_without_validator_rejects(self) -> None:
        request = MagicMock()
        request.app.state = SimpleNamespace()

        with pytest.raises(HTTPException) as exc_info:
            require_api_key(request, x_api_key="ops-key")

        assert exc_info.value.status_code == 401
