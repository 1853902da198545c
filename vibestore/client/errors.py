"""
Client Exceptions - errors raised by the session-side library.
"""


class StoreClientError(Exception):
    """Raised when the entitlement service cannot be reached or refuses a call."""

    def __init__(self, message: str, status_code: int | None = None, retriable: bool = False) -> None:
        self.message = message
        self.status_code = status_code
        self.retriable = retriable
        super().__init__(message)


class NotSignedInError(StoreClientError):
    """Raised when a purchase action needs a signed-in user."""

    def __init__(self) -> None:
        super().__init__("Sign in to purchase")


class AlreadyOwnedError(StoreClientError):
    """Raised when checkout is requested for a product the user can already open."""

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} is already available")
