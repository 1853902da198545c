"""
HTTP client for the entitlement service.

Implements EntitlementReader and CheckoutInitiator over the REST API,
authenticated with the user's Supabase access token.
"""

from typing import Any
from uuid import UUID

import httpx
from structlog import get_logger

from vibestore.client.errors import StoreClientError
from vibestore.client.session import CheckoutLink
from vibestore.models.api import SubscriptionTier

logger = get_logger(__name__)


class VibeStoreClient:
    """Async client for one user's access token."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "VibeStoreClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ========================================================================
    # EntitlementReader
    # ========================================================================

    async def list_entitlements(self, user_id: UUID) -> list[UUID]:
        data = await self._request("GET", "/v1/entitlements")
        if UUID(data["user_id"]) != user_id:
            raise StoreClientError("Access token belongs to a different user", status_code=403)
        return [UUID(product_id) for product_id in data["product_ids"]]

    async def has_entitlement(self, user_id: UUID, product_id: UUID) -> bool:
        data = await self._request("GET", f"/v1/entitlements/{product_id}")
        return bool(data["owned"])

    # ========================================================================
    # CheckoutInitiator
    # ========================================================================

    async def create_app_checkout(
        self, app_id: UUID, success_url: str, cancel_url: str
    ) -> CheckoutLink:
        data = await self._request(
            "POST",
            f"/v1/apps/{app_id}/checkout",
            json={"successUrl": success_url, "cancelUrl": cancel_url},
        )
        return CheckoutLink(session_id=data["sessionId"], url=data["url"])

    async def create_subscription_checkout(
        self, tier: SubscriptionTier, success_url: str, cancel_url: str
    ) -> CheckoutLink:
        data = await self._request(
            "POST",
            "/v1/subscriptions/checkout",
            json={"plan": tier.value, "successUrl": success_url, "cancelUrl": cancel_url},
        )
        return CheckoutLink(session_id=data["sessionId"], url=data["url"])

    # ========================================================================
    # Transport
    # ========================================================================

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            response = await self.http_client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("store_request_timeout", method=method, path=path)
            raise StoreClientError(f"Request timed out: {path}", retriable=True) from exc
        except httpx.HTTPError as exc:
            logger.warning("store_request_failed", method=method, path=path, error=str(exc))
            raise StoreClientError(f"Request failed: {exc}", retriable=True) from exc

        if response.status_code >= 400:
            raise self._error_from(response)

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise StoreClientError("Invalid JSON in response", response.status_code) from exc
        return body

    @staticmethod
    def _error_from(response: httpx.Response) -> StoreClientError:
        try:
            body = response.json()
            message = str(body.get("detail") or body.get("error") or response.reason_phrase)
        except ValueError:
            message = response.reason_phrase
        retriable = response.status_code >= 500 or response.status_code == 429
        logger.warning(
            "store_request_rejected",
            status_code=response.status_code,
            error=message,
            retriable=retriable,
        )
        return StoreClientError(message, status_code=response.status_code, retriable=retriable)
