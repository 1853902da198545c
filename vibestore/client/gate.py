"""
Entitlement Gate - decides whether opening a product needs a payment.
"""

from typing import Protocol
from uuid import UUID

from vibestore.models.domain import AccessDecision, AppProduct


class OwnershipView(Protocol):
    def has(self, product_id: UUID) -> bool: ...


def decide(product: AppProduct, cache: OwnershipView) -> AccessDecision:
    """
    Free products always open; anything else opens only if the cache holds it.

    Pure and synchronous: no I/O, same inputs give the same answer.
    """
    if product.is_free:
        return AccessDecision.OPEN
    if cache.has(product.product_id):
        return AccessDecision.OPEN
    return AccessDecision.REQUIRE_PAYMENT
