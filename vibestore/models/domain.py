"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from vibestore.models.api import (
    CheckoutMode,
    PricingType,
    SubscriptionTier,
)

# Subscription statuses that no longer carry a paid tier
ENDED_SUBSCRIPTION_STATUSES = frozenset({"canceled", "unpaid", "incomplete_expired"})


class AccessDecision(str, Enum):
    """Outcome of the entitlement gate."""

    OPEN = "open"
    REQUIRE_PAYMENT = "require_payment"


@dataclass(frozen=True)
class AppProduct:
    """A marketplace app a user can be entitled to."""

    app_id: UUID
    title: str
    pricing_type: PricingType
    price_minor: int
    currency: str = "USD"
    developer_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate price constraints."""
        if self.price_minor < 0:
            raise ValueError(f"Price cannot be negative: {self.price_minor}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")

    @property
    def product_id(self) -> UUID:
        """Entitlement key for this product."""
        return self.app_id

    @property
    def is_free(self) -> bool:
        """Free apps never need an entitlement."""
        return self.pricing_type == PricingType.FREE


@dataclass(frozen=True)
class SubscriptionPlan:
    """A recurring plan identified by its tier."""

    tier: SubscriptionTier
    price_ref: str
    price_minor: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        """Validate plan constraints."""
        if self.tier == SubscriptionTier.FREE:
            raise ValueError("The free tier is not a purchasable plan")
        if not self.price_ref:
            raise ValueError("price_ref cannot be empty")


Product = AppProduct | SubscriptionPlan


@dataclass(frozen=True)
class CheckoutIntent:
    """Everything the payment processor needs to open a checkout session."""

    user_id: UUID
    price_ref: str | None
    amount_minor: int
    currency: str
    product_name: str
    mode: CheckoutMode
    success_url: str
    cancel_url: str
    customer_email: str | None = None
    app_id: UUID | None = None
    plan_tier: SubscriptionTier | None = None

    def __post_init__(self) -> None:
        """Validate checkout constraints."""
        if self.amount_minor <= 0:
            raise ValueError(f"Checkout amount must be positive: {self.amount_minor}")
        if self.app_id is None and self.plan_tier is None:
            raise ValueError("Checkout must reference an app or a plan")


@dataclass(frozen=True)
class AppGrant:
    """A verified one-time purchase to be recorded durably."""

    event_id: str
    event_type: str
    user_id: UUID
    app_id: UUID
    processor_reference: str
    amount_minor: int
    currency: str
    payment_intent_id: str | None
    event_created_at: datetime


@dataclass(frozen=True)
class GrantResult:
    """Outcome of recording a grant or subscription change."""

    duplicate_event: bool
    transaction_completed: bool
    entitlement_created: bool
    user_id: UUID | None = None


@dataclass(frozen=True)
class SubscriptionChange:
    """A verified subscription state change to overwrite onto the profile."""

    event_id: str
    event_type: str
    user_id: UUID | None
    tier: SubscriptionTier
    status: str
    processor_subscription_id: str | None
    processor_reference: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    event_created_at: datetime
    amount_minor: int | None = None
    currency: str | None = None


@dataclass(frozen=True)
class SubscriptionState:
    """Current subscription of a user."""

    tier: SubscriptionTier
    status: str
    processor_subscription_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity taken from a verified Supabase access token."""

    user_id: UUID
    email: str | None = None
