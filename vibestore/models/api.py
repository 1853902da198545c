"""
API Models - Pydantic models for request/response validation.

Checkout payloads use camelCase on the wire (the storefront sends
`priceRef`, `successUrl`, ...); Python attributes stay snake_case.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class PricingType(str, Enum):
    """How an app is priced in the marketplace."""

    FREE = "free"
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"
    FREEMIUM = "freemium"


class SubscriptionTier(str, Enum):
    """Profile subscription tier."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class TransactionStatus(str, Enum):
    """Transaction ledger status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CheckoutMode(str, Enum):
    """Stripe Checkout mode."""

    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"


class AppStatus(str, Enum):
    """Moderation status of a submitted app."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================================
# Checkout Models
# ============================================================================


class _CamelModel(BaseModel):
    """Accepts both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(_CamelModel):
    """POST /v1/checkout request body."""

    price_ref: str = Field(..., alias="priceRef", min_length=1, max_length=255)
    success_url: HttpUrl = Field(..., alias="successUrl")
    cancel_url: HttpUrl = Field(..., alias="cancelUrl")
    mode: CheckoutMode = CheckoutMode.PAYMENT


class AppCheckoutRequest(_CamelModel):
    """POST /v1/apps/{app_id}/checkout request body."""

    success_url: HttpUrl = Field(..., alias="successUrl")
    cancel_url: HttpUrl = Field(..., alias="cancelUrl")


class SubscriptionCheckoutRequest(_CamelModel):
    """POST /v1/subscriptions/checkout request body."""

    plan: SubscriptionTier
    success_url: HttpUrl = Field(..., alias="successUrl")
    cancel_url: HttpUrl = Field(..., alias="cancelUrl")


class CheckoutResponse(_CamelModel):
    """Checkout session created - redirect the browser to `url`."""

    session_id: str = Field(..., serialization_alias="sessionId")
    url: str


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAck(BaseModel):
    """Webhook acknowledged (processed, duplicate or ignored)."""

    received: bool = True


class ErrorResponse(BaseModel):
    """Error body used by the webhook endpoint."""

    error: str


# ============================================================================
# Entitlement Models
# ============================================================================


class EntitlementListResponse(BaseModel):
    """GET /v1/entitlements response."""

    user_id: UUID
    product_ids: list[UUID]
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    current_period_end: datetime | None = None


class EntitlementCheckResponse(BaseModel):
    """GET /v1/entitlements/{app_id} response."""

    app_id: UUID
    owned: bool


class PurchaseHistoryItem(BaseModel):
    """Single completed purchase."""

    transaction_id: UUID
    app_id: UUID | None
    app_title: str | None
    plan_tier: SubscriptionTier | None
    amount_minor: int
    currency: str
    status: TransactionStatus
    created_at: datetime
    completed_at: datetime | None


class PurchaseHistoryResponse(BaseModel):
    """GET /v1/purchases response."""

    purchases: list[PurchaseHistoryItem]
    total_count: int


class SubscriptionResponse(BaseModel):
    """GET /v1/subscription response."""

    tier: SubscriptionTier
    status: str
    processor_subscription_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None


class MonthlyRevenue(BaseModel):
    """Revenue for one calendar month."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    revenue_minor: int


class DeveloperRevenueResponse(BaseModel):
    """GET /v1/developer/revenue response."""

    total_revenue_minor: int
    total_transactions: int
    revenue_share: float
    currency: str
    monthly: list[MonthlyRevenue]


class PaymentConfigResponse(BaseModel):
    """GET /v1/payments/config response."""

    enabled: bool
    sandbox: bool
    publishable_key: str | None
    has_webhook_secret: bool
    warnings: list[str]


# ============================================================================
# Moderation Models
# ============================================================================


class RejectAppRequest(BaseModel):
    """POST /v1/admin/apps/{app_id}/reject request body."""

    reason: str = Field(..., min_length=1, max_length=2000)


class ModerationResponse(BaseModel):
    """Result of a moderation action."""

    app_id: UUID
    status: AppStatus
    notified: bool


class PendingAppItem(BaseModel):
    """App awaiting moderation."""

    app_id: UUID
    title: str
    developer_id: UUID
    pricing_type: PricingType
    price_minor: int
    created_at: datetime


class PendingAppsResponse(BaseModel):
    """GET /v1/admin/apps/pending response."""

    apps: list[PendingAppItem]


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
