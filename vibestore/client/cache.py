"""
Entitlement Cache - session-local set of owned product ids.

The durable store is the source of truth. The cache is an eventually
consistent view of it for one signed-in user: loads replace it wholesale,
and purchases returning from checkout are added optimistically until the
webhook has landed.
"""

from typing import Protocol
from uuid import UUID

from structlog import get_logger

from vibestore.client.errors import StoreClientError

logger = get_logger(__name__)

ProductId = UUID


class EntitlementReader(Protocol):
    """Durable read access to a user's entitlements."""

    async def list_entitlements(self, user_id: UUID) -> list[ProductId]:
        """All product ids the user owns."""
        ...

    async def has_entitlement(self, user_id: UUID, product_id: ProductId) -> bool:
        """Point check for one product."""
        ...


class EntitlementCache:
    """
    Owned product ids for exactly one user.

    Loading for a different user clears the cache first, and clear()
    invalidates any load still in flight, so one user's entitlements are
    never visible to the next.
    """

    def __init__(self, reader: EntitlementReader) -> None:
        self._reader = reader
        self._user_id: UUID | None = None
        self._owned: set[ProductId] = set()
        self._pending: set[ProductId] = set()
        self._generation = 0
        self._stale = False

    @property
    def user_id(self) -> UUID | None:
        return self._user_id

    @property
    def pending(self) -> frozenset[ProductId]:
        """Ids added optimistically that no load has confirmed yet."""
        return frozenset(self._pending)

    @property
    def stale(self) -> bool:
        """True when the last load failed and the set may be out of date."""
        return self._stale

    def snapshot(self) -> frozenset[ProductId]:
        return frozenset(self._owned)

    async def load(self, user_id: UUID) -> frozenset[ProductId]:
        """
        Replace the cache with the user's durable entitlements.

        On a read failure the cache is left as it was and marked stale.
        """
        if self._user_id != user_id:
            self.clear()
            self._user_id = user_id

        generation = self._generation
        try:
            product_ids = await self._reader.list_entitlements(user_id)
        except StoreClientError as exc:
            self._stale = True
            logger.warning(
                "entitlement_cache_load_failed",
                user_id=str(user_id),
                error=exc.message,
                retriable=exc.retriable,
            )
            return self.snapshot()

        if generation != self._generation:
            # Cleared (sign-out or user switch) while the read was in flight
            logger.info("entitlement_cache_load_discarded", user_id=str(user_id))
            return self.snapshot()

        self._owned = set(product_ids)
        self._pending.clear()
        self._stale = False
        logger.debug("entitlement_cache_loaded", user_id=str(user_id), count=len(self._owned))
        return self.snapshot()

    def has(self, product_id: ProductId) -> bool:
        return product_id in self._owned

    def add(self, product_id: ProductId) -> None:
        """Optimistically record a purchase the durable store may not show yet."""
        if product_id not in self._owned:
            self._pending.add(product_id)
        self._owned.add(product_id)

    def clear(self) -> None:
        """Forget everything, including which user the cache belonged to."""
        self._owned.clear()
        self._pending.clear()
        self._user_id = None
        self._stale = False
        self._generation += 1
