"""
Exception Classes - Strongly typed exception hierarchy.

Payment failures (the user was not charged) and grant failures (the user
was charged but the entitlement was not recorded) are separate types so
they never get confused in logs or metrics.
"""

from uuid import UUID


class StoreError(Exception):
    """Base exception for all entitlement service errors."""

    pass


class PaymentProviderError(StoreError):
    """Raised when a payment provider call fails. Safe to retry."""

    retriable = True

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class CheckoutTimeoutError(PaymentProviderError):
    """Raised when the provider does not answer within the checkout timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"checkout session creation timed out after {timeout_seconds}s")


class CheckoutRecordError(StoreError):
    """Raised when a checkout session was opened but its pending row was not stored."""

    retriable = True

    def __init__(self, processor_reference: str, message: str) -> None:
        self.processor_reference = processor_reference
        self.message = message
        super().__init__(f"Failed to record checkout {processor_reference}: {message}")


class PaymentsNotConfiguredError(StoreError):
    """Raised when payment credentials are absent."""

    def __init__(self) -> None:
        super().__init__("Payment provider not configured")


class WebhookVerificationError(StoreError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class ProductNotFoundError(StoreError):
    """Raised when a product cannot be resolved for checkout."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Product not found: {reference}")


class InvalidProductError(StoreError):
    """Raised when a product cannot be sold (free, zero price, not approved)."""

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Product {reference} cannot be purchased: {reason}")


class EntitlementGrantError(StoreError):
    """Raised when a verified payment could not be recorded as an entitlement."""

    def __init__(self, processor_reference: str, message: str) -> None:
        self.processor_reference = processor_reference
        self.message = message
        super().__init__(f"Entitlement grant failed for {processor_reference}: {message}")


class DataIntegrityError(StoreError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class AppNotFoundError(StoreError):
    """Raised when an app doesn't exist."""

    def __init__(self, app_id: UUID) -> None:
        self.app_id = app_id
        super().__init__(f"App not found: {app_id}")


class InvalidStatusTransitionError(StoreError):
    """Raised when a moderation action does not apply to the app's current status."""

    def __init__(self, app_id: UUID, current_status: str, target_status: str) -> None:
        self.app_id = app_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(f"App {app_id} cannot move from {current_status} to {target_status}")


class AuthenticationError(StoreError):
    """Raised when authentication fails (missing or invalid token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(StoreError):
    """Raised when user lacks required permissions."""

    def __init__(self, required_role: str) -> None:
        self.required_role = required_role
        super().__init__(f"Authorization failed: requires role {required_role}")
