"""
Purchase Session - one signed-in user's view of the store.

Wires the entitlement cache, the gate and checkout together:

    sign_in -> load cache
    open_product -> gate (with one durable re-check on a miss)
    start_checkout -> redirect URL
    complete_checkout -> optimistic add, then confirm against the durable store
    sign_out -> clear cache
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from structlog import get_logger

from vibestore.client.cache import EntitlementCache, EntitlementReader, ProductId
from vibestore.client.errors import AlreadyOwnedError, NotSignedInError, StoreClientError
from vibestore.client.gate import decide
from vibestore.models.api import SubscriptionTier
from vibestore.models.domain import AccessDecision, AppProduct, Product

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckoutLink:
    """Where to send the browser to pay."""

    session_id: str
    url: str


class CheckoutInitiator(Protocol):
    async def create_app_checkout(
        self, app_id: UUID, success_url: str, cancel_url: str
    ) -> CheckoutLink: ...

    async def create_subscription_checkout(
        self, tier: SubscriptionTier, success_url: str, cancel_url: str
    ) -> CheckoutLink: ...


class PurchaseSession:
    """Owns the entitlement cache for whoever is signed in."""

    def __init__(
        self,
        reader: EntitlementReader,
        initiator: CheckoutInitiator,
        *,
        cache: EntitlementCache | None = None,
        confirm_attempts: int = 3,
        confirm_delay: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if confirm_attempts < 1:
            raise ValueError("confirm_attempts must be at least 1")
        self._reader = reader
        self._initiator = initiator
        self.cache = cache or EntitlementCache(reader)
        self.confirm_attempts = confirm_attempts
        self.confirm_delay = confirm_delay
        self._sleep = sleep
        self._user_id: UUID | None = None
        self._rechecked: set[ProductId] = set()

    @property
    def user_id(self) -> UUID | None:
        return self._user_id

    async def sign_in(self, user_id: UUID) -> frozenset[ProductId]:
        """Bind the session to a user and load their entitlements."""
        if self._user_id is not None and self._user_id != user_id:
            self._reset()
        self._user_id = user_id
        return await self.cache.load(user_id)

    async def sign_out(self) -> None:
        self._reset()
        logger.info("purchase_session_signed_out")

    async def refresh(self) -> frozenset[ProductId]:
        """Reload the cache for the signed-in user."""
        if self._user_id is None:
            return frozenset()
        return await self.cache.load(self._user_id)

    async def open_product(self, product: AppProduct) -> AccessDecision:
        """
        Decide whether the product opens.

        A cache miss for a signed-in user is checked once against the durable
        store, which catches purchases made in another session.
        """
        decision = decide(product, self.cache)
        if decision == AccessDecision.OPEN or self._user_id is None:
            return decision

        if product.product_id in self._rechecked:
            return decision
        self._rechecked.add(product.product_id)

        user_id = self._user_id
        try:
            owned = await self._reader.has_entitlement(user_id, product.product_id)
        except StoreClientError as exc:
            logger.warning(
                "entitlement_recheck_failed",
                product_id=str(product.product_id),
                error=exc.message,
            )
            return decision

        if owned and self._user_id == user_id:
            self.cache.add(product.product_id)
            return AccessDecision.OPEN
        return decision

    async def start_checkout(
        self, product: Product, success_url: str, cancel_url: str
    ) -> CheckoutLink:
        """
        Open a checkout for a product the user cannot open yet.

        Raises:
            NotSignedInError: No user is signed in
            AlreadyOwnedError: The gate already opens this app
            StoreClientError: The service refused or failed the request
        """
        if self._user_id is None:
            raise NotSignedInError()

        if isinstance(product, AppProduct):
            if decide(product, self.cache) == AccessDecision.OPEN:
                raise AlreadyOwnedError(str(product.product_id))
            return await self._initiator.create_app_checkout(
                product.app_id, success_url, cancel_url
            )

        return await self._initiator.create_subscription_checkout(
            product.tier, success_url, cancel_url
        )

    async def complete_checkout(self, product_id: ProductId) -> bool:
        """
        Handle the redirect back from a successful checkout.

        The product is added optimistically so it opens immediately, then the
        durable store is polled. Returns True once the entitlement is durable.
        """
        if self._user_id is None:
            raise NotSignedInError()
        self.cache.add(product_id)
        return await self.confirm_purchase(product_id)

    async def confirm_purchase(self, product_id: ProductId) -> bool:
        """
        Poll the durable store until the webhook has recorded the purchase.

        Reloads the cache only after confirmation; until then the optimistic
        entry stays in place.
        """
        user_id = self._user_id
        if user_id is None:
            return False

        for attempt in range(1, self.confirm_attempts + 1):
            try:
                durable = await self._reader.has_entitlement(user_id, product_id)
            except StoreClientError as exc:
                logger.warning(
                    "purchase_confirm_failed",
                    product_id=str(product_id),
                    attempt=attempt,
                    error=exc.message,
                )
                durable = False

            if self._user_id != user_id:
                return False

            if durable:
                await self.cache.load(user_id)
                if self._user_id != user_id:
                    return False
                if not self.cache.has(product_id):
                    # List reads can lag the point check that just confirmed it
                    self.cache.add(product_id)
                logger.info("purchase_confirmed", product_id=str(product_id), attempt=attempt)
                return True

            if attempt < self.confirm_attempts:
                await self._sleep(self.confirm_delay)

        logger.info(
            "purchase_confirmation_pending",
            product_id=str(product_id),
            attempts=self.confirm_attempts,
        )
        return False

    def _reset(self) -> None:
        self.cache.clear()
        self._user_id = None
        self._rechecked.clear()
