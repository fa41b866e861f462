"""Client for fetching the live catalog from the source catalog service."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from menu_sync_service.errors import PermanentSyncError, TransientSyncError, error_from_status
from menu_sync_service.models.catalog_models import Category, LiveCatalog, Modifier, Product

logger = logging.getLogger(__name__)


class SourceCatalogClient:
    """HTTP client for the source catalog service.

    Each entity collection is paged with ``page``/``page_size`` query
    parameters; the service answers ``{"items": [...], "next_page": n | null}``.
    Failures are raised as typed pipeline errors so the orchestrator can decide
    whether to retry.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        page_size: int = 200,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize the source catalog client.

        Args:
            base_url: Base URL of the source catalog API (e.g., "https://catalog.example.com")
            api_key: API key for service-to-service authentication
            page_size: Items requested per page
            timeout_seconds: Per-request timeout
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.page_size = page_size
        self.timeout_seconds = timeout_seconds

    async def fetch_full_catalog(self, account_id: str, branch_id: str | None) -> LiveCatalog:
        """Fetch every product, category and modifier for an account (and branch).

        Args:
            account_id: Account to fetch
            branch_id: Branch to scope the catalog to, None for account-wide

        Returns:
            LiveCatalog: The complete live catalog

        Raises:
            TransientSyncError: On network failures, timeouts, 408/425/429/5xx
            PermanentSyncError: On other 4xx responses or a malformed payload
        """
        headers = {"X-API-Key": self.api_key}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, headers=headers) as client:
                products = await self._fetch_collection(client, account_id, branch_id, "products")
                categories = await self._fetch_collection(client, account_id, branch_id, "categories")
                modifiers = await self._fetch_collection(client, account_id, branch_id, "modifiers")

            catalog = LiveCatalog(
                account_id=account_id,
                branch_id=branch_id,
                products=[Product(**item) for item in products],
                categories=[Category(**item) for item in categories],
                modifiers=[Modifier(**item) for item in modifiers],
            )

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"Source catalog returned {status_code} for account {account_id}")
            raise error_from_status(
                status_code,
                f"Source catalog request failed with status {status_code}",
                code="SOURCE_HTTP_ERROR",
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Failed to reach source catalog for account {account_id}: {e}")
            raise TransientSyncError(
                f"Source catalog unreachable: {e}", code="SOURCE_UNREACHABLE"
            ) from e
        except PydanticValidationError as e:
            logger.error(f"Source catalog payload for account {account_id} is malformed: {e}")
            raise PermanentSyncError(
                f"Source catalog payload is malformed: {e.error_count()} error(s)",
                code="SOURCE_PAYLOAD_INVALID",
            ) from e

        logger.info(
            f"Fetched catalog for account {account_id}: {len(catalog.products)} products, "
            f"{len(catalog.categories)} categories, {len(catalog.modifiers)} modifiers"
        )
        return catalog

    async def _fetch_collection(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        branch_id: str | None,
        collection: str,
    ) -> list[dict[str, Any]]:
        url = f"{self.base_url}/accounts/{account_id}/catalog/{collection}"
        items: list[dict[str, Any]] = []
        page: int | None = 1

        while page is not None:
            params: dict[str, Any] = {"page": page, "page_size": self.page_size}
            if branch_id:
                params["branch_id"] = branch_id

            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()

            items.extend(data.get("items", []))
            next_page = data.get("next_page")
            # guard against a server that keeps returning the same page
            page = next_page if next_page is not None and next_page != page else None

        return items
