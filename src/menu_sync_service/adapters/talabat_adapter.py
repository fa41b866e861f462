"""Talabat platform adapter implementation.

This adapter transforms catalog deltas to Talabat's integration middleware
(V2) catalog format and submits them via the chain catalog endpoint.
"""

import logging
import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import httpx

from menu_sync_service.adapters.base_adapter import (
    DeliveryPlatformAdapter,
    SubmissionResult,
    SubmissionStatus,
)
from menu_sync_service.errors import (
    PermanentSyncError,
    SyncPipelineError,
    TransientSyncError,
    error_from_status,
)
from menu_sync_service.models.catalog_models import Category, Modifier, Product
from menu_sync_service.models.snapshot_models import MenuDelta
from menu_sync_service.observability.metrics import record_platform_api_call

logger = logging.getLogger(__name__)

REJECTED_STATUSES = {"rejected", "failed", "error"}
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


def _price(value: Decimal | None) -> str | None:
    return f"{value:.2f}" if value is not None else None


class TalabatAdapter(DeliveryPlatformAdapter):
    """Adapter for the Talabat integration middleware V2 API.

    Authenticates with a form-encoded client-credentials login and caches the
    bearer token until shortly before it expires. A 401 on submission
    refreshes the token once before giving up.
    """

    def __init__(
        self,
        base_url: str,
        chain_code: str,
        username: str,
        password: str,
        callback_url: str | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize Talabat adapter.

        Args:
            base_url: Integration middleware base URL
            chain_code: Talabat chain the vendors belong to
            username: Integration login username
            password: Integration login password
            callback_url: Optional URL Talabat calls with import results
            timeout_seconds: Per-request timeout
        """
        super().__init__("talabat")
        self.base_url = base_url.rstrip("/")
        self.chain_code = chain_code
        self.username = username
        self.password = password
        self.callback_url = callback_url
        self.timeout_seconds = timeout_seconds
        self._access_token: str | None = None
        self._token_expires_at: datetime | None = None

    def format_delta(self, vendor_code: str, delta: MenuDelta) -> dict[str, Any]:
        """Transform a delta to Talabat's catalog format.

        Talabat expects a map of items keyed by id, each tagged with its type,
        plus the list of vendors the catalog applies to.
        """
        items: dict[str, dict[str, Any]] = {}

        for product in delta.added_products + [u.entity for u in delta.updated_products]:
            items[product.id] = self._format_product(product)
        for category in delta.added_categories + [u.entity for u in delta.updated_categories]:
            items[category.id] = self._format_category(category)
        for modifier in delta.added_modifiers + [u.entity for u in delta.updated_modifiers]:
            items[modifier.id] = self._format_modifier(modifier)

        removed = (
            [{"id": pid, "type": "Product"} for pid in delta.removed_product_ids]
            + [{"id": cid, "type": "Category"} for cid in delta.removed_category_ids]
            + [{"id": mid, "type": "Topping"} for mid in delta.removed_modifier_ids]
        )

        payload: dict[str, Any] = {
            "vendors": [vendor_code],
            "catalog": {"items": items, "removedItems": removed},
            "version": delta.target_version,
        }
        if self.callback_url:
            payload["callbackUrl"] = self.callback_url
        return payload

    async def submit_delta(self, vendor_code: str, delta: MenuDelta) -> SubmissionResult:
        payload = self.format_delta(vendor_code, delta)
        url = f"{self.base_url}/v2/chains/{self.chain_code}/catalog"

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                token = await self._get_access_token(client)
                response = await client.put(
                    url, json=payload, headers={"Authorization": f"Bearer {token}"}
                )

                if response.status_code == 401:
                    logger.warning("Talabat rejected the access token, refreshing once")
                    token = await self._get_access_token(client, force_refresh=True)
                    response = await client.put(
                        url, json=payload, headers={"Authorization": f"Bearer {token}"}
                    )
                    if response.status_code == 401:
                        raise PermanentSyncError(
                            "Talabat authentication failed after token refresh",
                            code="PLATFORM_AUTH_FAILED",
                            status_code=401,
                        )

        except httpx.TimeoutException as e:
            raise TransientSyncError(f"Talabat submission timed out: {e}", code="PLATFORM_TIMEOUT") from e
        except httpx.RequestError as e:
            raise TransientSyncError(
                f"Talabat submission failed: {e}", code="PLATFORM_UNREACHABLE"
            ) from e
        finally:
            record_platform_api_call(self.platform_name, "submit_delta", time.perf_counter() - started)

        return self._parse_submission(response, vendor_code)

    async def get_submission_status(self, vendor_code: str, import_id: str) -> SubmissionStatus:
        url = f"{self.base_url}/v2/chains/{self.chain_code}/catalog/import-log"

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                token = await self._get_access_token(client)
                response = await client.get(
                    url,
                    params={"importId": import_id},
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.RequestError as e:
            raise TransientSyncError(
                f"Talabat import log lookup failed: {e}", code="PLATFORM_UNREACHABLE"
            ) from e

        if response.status_code != 200:
            raise error_from_status(
                response.status_code,
                f"Talabat import log lookup for {vendor_code} returned {response.status_code}",
                code="PLATFORM_HTTP_ERROR",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PermanentSyncError(
                f"Talabat import log for {import_id} is not valid JSON",
                code="PLATFORM_RESPONSE_INVALID",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise PermanentSyncError(
                f"Talabat import log for {import_id} has unexpected shape",
                code="PLATFORM_RESPONSE_INVALID",
                status_code=response.status_code,
            )

        return SubmissionStatus(
            import_id=data.get("importId") or import_id,
            status=data.get("status", "unknown"),
            errors=[self._error_text(err) for err in data.get("errors") or []],
        )

    async def _get_access_token(self, client: httpx.AsyncClient, force_refresh: bool = False) -> str:
        now = datetime.now(UTC)
        if (
            not force_refresh
            and self._access_token
            and self._token_expires_at is not None
            and now < self._token_expires_at - TOKEN_REFRESH_MARGIN
        ):
            return self._access_token

        response = await client.post(
            f"{self.base_url}/v2/login",
            data={
                "username": self.username,
                "password": self.password,
                "grant_type": "client_credentials",
            },
        )

        if response.status_code != 200:
            logger.error(f"Talabat login failed: {response.status_code}")
            error: SyncPipelineError = error_from_status(
                response.status_code, "Talabat login failed", code="PLATFORM_AUTH_FAILED"
            )
            raise error

        body = response.json()
        self._access_token = body["access_token"]
        self._token_expires_at = now + timedelta(seconds=int(body.get("expires_in", 7200)))
        return self._access_token

    def _parse_submission(self, response: httpx.Response, vendor_code: str) -> SubmissionResult:
        if response.status_code == 400:
            errors = self._response_errors(response)
            logger.error(f"Talabat rejected catalog for {vendor_code}: {errors}")
            return SubmissionResult(
                accepted=False, message="Talabat rejected the catalog (400)", errors=errors
            )

        if not 200 <= response.status_code < 300:
            raise error_from_status(
                response.status_code,
                f"Talabat catalog submission for {vendor_code} returned {response.status_code}",
                code="PLATFORM_HTTP_ERROR",
            )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        import_id = body.get("catalogImportId") or body.get("importId")
        status = str(body.get("status", "")).lower()
        accepted = body.get("success", True) is not False and status not in REJECTED_STATUSES

        if accepted:
            logger.info(f"Talabat accepted catalog for {vendor_code}, import {import_id}")
        else:
            logger.error(f"Talabat did not accept catalog for {vendor_code}: {body.get('message')}")

        return SubmissionResult(
            accepted=accepted,
            import_id=import_id,
            message=body.get("message"),
            errors=[self._error_text(err) for err in body.get("errors") or []],
        )

    def _response_errors(self, response: httpx.Response) -> list[str]:
        try:
            body = response.json()
        except ValueError:
            return [response.text]
        if isinstance(body, dict):
            errors = body.get("errors") or []
            if errors:
                return [self._error_text(err) for err in errors]
            if body.get("message"):
                return [str(body["message"])]
        return [response.text]

    @staticmethod
    def _error_text(error: Any) -> str:
        if isinstance(error, dict):
            field = error.get("field")
            message = error.get("message") or error.get("code") or ""
            return f"{field}: {message}" if field else str(message)
        return str(error)

    @staticmethod
    def _format_product(product: Product) -> dict[str, Any]:
        item: dict[str, Any] = {
            "id": product.id,
            "type": "Product",
            "title": {"default": product.name},
            "price": _price(product.price),
            "active": product.is_active,
            "toppings": {mid: {"id": mid, "type": "Topping"} for mid in product.modifier_ids},
        }
        if product.description:
            item["description"] = {"default": product.description}
        if product.category_id:
            item["category"] = {"id": product.category_id, "type": "Category"}
        if product.image_url:
            item["images"] = {"main": {"url": product.image_url}}
        return item

    @staticmethod
    def _format_category(category: Category) -> dict[str, Any]:
        item: dict[str, Any] = {
            "id": category.id,
            "type": "Category",
            "title": {"default": category.name},
            "order": category.sort_order,
            "active": category.is_active,
        }
        if category.description:
            item["description"] = {"default": category.description}
        return item

    @staticmethod
    def _format_modifier(modifier: Modifier) -> dict[str, Any]:
        return {
            "id": modifier.id,
            "type": "Topping",
            "title": {"default": modifier.name},
            "quantity": {"minimum": modifier.min_selection, "maximum": modifier.max_selection},
            "options": [
                {
                    "id": option.id,
                    "title": {"default": option.name},
                    "price": _price(option.price),
                    "active": option.is_active,
                }
                for option in modifier.options
            ],
        }
