"""
Session-side entitlement library: cache, gate and purchase session.
"""

from vibestore.client.cache import EntitlementCache, EntitlementReader
from vibestore.client.errors import AlreadyOwnedError, NotSignedInError, StoreClientError
from vibestore.client.gate import decide
from vibestore.client.http import VibeStoreClient
from vibestore.client.session import CheckoutInitiator, CheckoutLink, PurchaseSession

__all__ = [
    "AlreadyOwnedError",
    "CheckoutInitiator",
    "CheckoutLink",
    "EntitlementCache",
    "EntitlementReader",
    "NotSignedInError",
    "PurchaseSession",
    "StoreClientError",
    "VibeStoreClient",
    "decide",
]
