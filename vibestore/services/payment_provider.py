"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - Webhook payloads are parsed into typed models before
any service sees them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from vibestore.models.domain import CheckoutIntent


@dataclass(frozen=True)
class CheckoutSession:
    """A hosted checkout session the browser is redirected to."""

    session_id: str  # Provider-specific session ID (cs_...)
    url: str
    amount_minor: int | None = None
    currency: str | None = None


@dataclass(frozen=True)
class CheckoutSessionData:
    """The checkout session carried by a checkout.session.* event."""

    session_id: str
    mode: str
    payment_status: str
    amount_total: int | None
    currency: str | None
    payment_intent_id: str | None
    subscription_id: str | None
    customer_email: str | None
    metadata_user_id: str | None
    metadata_app_id: str | None
    metadata_plan_id: str | None

    @property
    def is_paid(self) -> bool:
        """Funds are captured (or nothing was owed)."""
        return self.payment_status in ("paid", "no_payment_required")


@dataclass(frozen=True)
class SubscriptionData:
    """The subscription carried by a customer.subscription.* event."""

    subscription_id: str
    status: str
    price_refs: tuple[str, ...] = field(default_factory=tuple)
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    metadata_user_id: str | None = None
    metadata_plan_id: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    Exactly one of checkout_session / subscription is set for the event
    types the ingestor handles; both are None for anything else.
    """

    event_id: str
    event_type: str
    created_at: datetime
    checkout_session: CheckoutSessionData | None = None
    subscription: SubscriptionData | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Stripe is the production implementation; the sandbox provider is only
    selected by explicit configuration.
    """

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If the provider rejects the request
            CheckoutTimeoutError: If the provider does not answer in time
        """
        ...

    async def expire_checkout_session(self, session_id: str) -> None:
        """
        Expire an open checkout session so it can no longer be paid.

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def list_price_refs(self, session_id: str) -> list[str]:
        """
        List the price references purchased in a checkout session.

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse webhook event from provider.

        Raises:
            WebhookVerificationError: If signature verification or parsing fails
        """
        ...
