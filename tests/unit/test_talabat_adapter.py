"""Unit tests for TalabatAdapter."""

from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from conftest import FakeClock, make_catalog, make_category, make_modifier, make_product

from menu_sync_service.adapters.talabat_adapter import TalabatAdapter
from menu_sync_service.errors import PermanentSyncError, TransientSyncError
from menu_sync_service.models.snapshot_models import MenuDelta
from menu_sync_service.services.delta_computer import DeltaComputer

BASE_URL = "https://integration-middleware.test.com"


def response(status_code: int, body: Any = None) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.content = b"{}" if body is not None else b""
    mock.json.return_value = body
    mock.text = str(body)
    return mock


def login_ok(expires_in: int = 7200) -> MagicMock:
    return response(200, {"access_token": "token_1", "expires_in": expires_in})


@pytest.fixture
def adapter() -> TalabatAdapter:
    """Create a TalabatAdapter with test configuration."""
    return TalabatAdapter(
        base_url=BASE_URL,
        chain_code="chain_1",
        username="integration-user",
        password="secret",
        callback_url="https://menu-sync.test.com/callbacks/talabat",
    )


@pytest.fixture
def delta(clock: FakeClock) -> MenuDelta:
    baseline = make_catalog(
        products=[make_product("prod_1"), make_product("prod_gone")],
        categories=[make_category("cat_1")],
        modifiers=[make_modifier("mod_1")],
    )
    live = make_catalog(
        products=[make_product("prod_1", price=Decimal("15")), make_product("prod_new")],
        categories=[make_category("cat_1")],
        modifiers=[make_modifier("mod_1")],
    )
    return DeltaComputer(clock=clock).compute(baseline, live, source_version=3)


@pytest.mark.unit
class TestTalabatFormatting:
    """Test suite for Talabat payload formatting."""

    def test_adapter_initialization(self, adapter: TalabatAdapter) -> None:
        assert adapter.platform_name == "talabat"
        assert adapter.chain_code == "chain_1"

    def test_format_delta(self, adapter: TalabatAdapter, delta: MenuDelta) -> None:
        """Test that added and updated entities become typed catalog items."""
        payload = adapter.format_delta("vendor_9", delta)

        assert payload["vendors"] == ["vendor_9"]
        assert payload["version"] == 4
        assert payload["callbackUrl"] == "https://menu-sync.test.com/callbacks/talabat"
        items = payload["catalog"]["items"]
        assert set(items) == {"prod_1", "prod_new"}
        assert items["prod_1"]["type"] == "Product"
        assert items["prod_1"]["price"] == "15.00"
        assert items["prod_1"]["title"] == {"default": "Product prod_1"}
        assert items["prod_1"]["category"] == {"id": "cat_1", "type": "Category"}
        assert items["prod_1"]["toppings"] == {"mod_1": {"id": "mod_1", "type": "Topping"}}
        assert payload["catalog"]["removedItems"] == [{"id": "prod_gone", "type": "Product"}]

    def test_format_modifier_and_category(self, adapter: TalabatAdapter, clock: FakeClock) -> None:
        delta = DeltaComputer(clock=clock).compute(None, make_catalog(products=[]))

        items = adapter.format_delta("vendor_9", delta)["catalog"]["items"]

        assert items["cat_1"]["type"] == "Category"
        assert items["cat_1"]["order"] == 1
        topping = items["mod_1"]
        assert topping["type"] == "Topping"
        assert topping["quantity"] == {"minimum": 0, "maximum": 2}
        assert [o["price"] for o in topping["options"]] == ["0.00", "1.50"]

    def test_no_callback_url(self, delta: MenuDelta) -> None:
        adapter = TalabatAdapter(BASE_URL, "chain_1", "user", "secret")

        assert "callbackUrl" not in adapter.format_delta("vendor_9", delta)


@pytest.mark.unit
class TestTalabatSubmission:
    """Test suite for Talabat catalog submission."""

    @pytest.mark.asyncio
    async def test_submit_delta_success(self, adapter: TalabatAdapter, delta: MenuDelta) -> None:
        """Test that an accepted submission returns the import id."""
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()) as post,
            patch(
                "httpx.AsyncClient.put",
                new_callable=AsyncMock,
                return_value=response(200, {"catalogImportId": "imp_42", "status": "queued"}),
            ) as put,
        ):
            result = await adapter.submit_delta("vendor_9", delta)

        assert result.accepted is True
        assert result.import_id == "imp_42"
        assert post.await_args.args[0] == f"{BASE_URL}/v2/login"
        assert post.await_args.kwargs["data"]["grant_type"] == "client_credentials"
        assert put.await_args.args[0] == f"{BASE_URL}/v2/chains/chain_1/catalog"
        assert put.await_args.kwargs["headers"] == {"Authorization": "Bearer token_1"}

    @pytest.mark.asyncio
    async def test_token_is_cached(self, adapter: TalabatAdapter, delta: MenuDelta) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()) as post,
            patch("httpx.AsyncClient.put", new_callable=AsyncMock, return_value=response(202, {})),
        ):
            await adapter.submit_delta("vendor_9", delta)
            await adapter.submit_delta("vendor_9", delta)

        assert post.await_count == 1

    @pytest.mark.asyncio
    async def test_short_lived_token_is_refreshed(
        self, adapter: TalabatAdapter, delta: MenuDelta
    ) -> None:
        with (
            patch(
                "httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok(expires_in=30)
            ) as post,
            patch("httpx.AsyncClient.put", new_callable=AsyncMock, return_value=response(202, {})),
        ):
            await adapter.submit_delta("vendor_9", delta)
            await adapter.submit_delta("vendor_9", delta)

        assert post.await_count == 2

    @pytest.mark.asyncio
    async def test_unauthorized_refreshes_token_once(
        self, adapter: TalabatAdapter, delta: MenuDelta
    ) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()) as post,
            patch(
                "httpx.AsyncClient.put",
                new_callable=AsyncMock,
                side_effect=[response(401, {}), response(200, {"importId": "imp_1"})],
            ),
        ):
            result = await adapter.submit_delta("vendor_9", delta)

        assert result.accepted is True
        assert result.import_id == "imp_1"
        assert post.await_count == 2

    @pytest.mark.asyncio
    async def test_repeated_unauthorized_is_permanent(
        self, adapter: TalabatAdapter, delta: MenuDelta
    ) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch("httpx.AsyncClient.put", new_callable=AsyncMock, return_value=response(401, {})),
        ):
            with pytest.raises(PermanentSyncError) as exc_info:
                await adapter.submit_delta("vendor_9", delta)

        assert exc_info.value.code == "PLATFORM_AUTH_FAILED"

    @pytest.mark.asyncio
    async def test_login_failure(self, adapter: TalabatAdapter, delta: MenuDelta) -> None:
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=response(403, {})):
            with pytest.raises(PermanentSyncError) as exc_info:
                await adapter.submit_delta("vendor_9", delta)

        assert exc_info.value.code == "PLATFORM_AUTH_FAILED"

    @pytest.mark.asyncio
    async def test_bad_request_is_a_rejection(
        self, adapter: TalabatAdapter, delta: MenuDelta
    ) -> None:
        """Test that a 400 is reported as a rejected submission, not an exception."""
        body = {"errors": [{"field": "items.prod_1.price", "message": "invalid"}]}
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch("httpx.AsyncClient.put", new_callable=AsyncMock, return_value=response(400, body)),
        ):
            result = await adapter.submit_delta("vendor_9", delta)

        assert result.accepted is False
        assert result.errors == ["items.prod_1.price: invalid"]

    @pytest.mark.asyncio
    async def test_rejected_status_in_body(self, adapter: TalabatAdapter, delta: MenuDelta) -> None:
        body = {"importId": "imp_1", "status": "REJECTED", "message": "vendor not found"}
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch("httpx.AsyncClient.put", new_callable=AsyncMock, return_value=response(200, body)),
        ):
            result = await adapter.submit_delta("vendor_9", delta)

        assert result.accepted is False
        assert result.message == "vendor not found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status_code", "error_type"),
        [(429, TransientSyncError), (503, TransientSyncError), (404, PermanentSyncError)],
    )
    async def test_http_errors_are_classified(
        self,
        adapter: TalabatAdapter,
        delta: MenuDelta,
        status_code: int,
        error_type: type[Exception],
    ) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch(
                "httpx.AsyncClient.put", new_callable=AsyncMock, return_value=response(status_code, {})
            ),
        ):
            with pytest.raises(error_type):
                await adapter.submit_delta("vendor_9", delta)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, adapter: TalabatAdapter, delta: MenuDelta) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch(
                "httpx.AsyncClient.put",
                new_callable=AsyncMock,
                side_effect=httpx.ReadTimeout("timed out"),
            ),
        ):
            with pytest.raises(TransientSyncError) as exc_info:
                await adapter.submit_delta("vendor_9", delta)

        assert exc_info.value.code == "PLATFORM_TIMEOUT"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(
        self, adapter: TalabatAdapter, delta: MenuDelta
    ) -> None:
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("Connection refused"),
        ):
            with pytest.raises(TransientSyncError) as exc_info:
                await adapter.submit_delta("vendor_9", delta)

        assert exc_info.value.code == "PLATFORM_UNREACHABLE"


@pytest.mark.unit
class TestTalabatImportStatus:
    """Test suite for import status lookups."""

    @pytest.mark.asyncio
    async def test_get_submission_status(self, adapter: TalabatAdapter) -> None:
        body = {"importId": "imp_1", "status": "done", "errors": ["prod_2: image too large"]}
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=response(200, body)) as get,
        ):
            status = await adapter.get_submission_status("vendor_9", "imp_1")

        assert status.status == "done"
        assert status.errors == ["prod_2: image too large"]
        assert get.await_args.kwargs["params"] == {"importId": "imp_1"}

    @pytest.mark.asyncio
    async def test_get_submission_status_error(self, adapter: TalabatAdapter) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=response(502, {})),
        ):
            with pytest.raises(TransientSyncError):
                await adapter.get_submission_status("vendor_9", "imp_1")

    @pytest.mark.asyncio
    async def test_get_submission_status_invalid_json_is_permanent(
        self, adapter: TalabatAdapter
    ) -> None:
        not_json = response(200, "<html>maintenance</html>")
        not_json.json.side_effect = ValueError("Expecting value")
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=not_json),
        ):
            with pytest.raises(PermanentSyncError) as exc_info:
                await adapter.get_submission_status("vendor_9", "imp_1")

        assert exc_info.value.code == "PLATFORM_RESPONSE_INVALID"
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_get_submission_status_unexpected_shape_is_permanent(
        self, adapter: TalabatAdapter
    ) -> None:
        with (
            patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=login_ok()),
            patch(
                "httpx.AsyncClient.get", new_callable=AsyncMock, return_value=response(200, ["done"])
            ),
        ):
            with pytest.raises(PermanentSyncError) as exc_info:
                await adapter.get_submission_status("vendor_9", "imp_1")

        assert exc_info.value.code == "PLATFORM_RESPONSE_INVALID"
