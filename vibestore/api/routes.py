"""
API Routes - FastAPI endpoints for checkout, webhooks and entitlements.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.api.dependencies import (
    get_current_user,
    get_optional_payment_provider,
    get_payment_provider,
)
from vibestore.config import settings
from vibestore.db.session import get_read_db, get_write_db
from vibestore.exceptions import (
    AppNotFoundError,
    CheckoutRecordError,
    EntitlementGrantError,
    InvalidProductError,
    PaymentProviderError,
    ProductNotFoundError,
    StoreError,
    WebhookVerificationError,
)
from vibestore.models.api import (
    AppCheckoutRequest,
    CheckoutRequest,
    CheckoutResponse,
    DeveloperRevenueResponse,
    EntitlementCheckResponse,
    EntitlementListResponse,
    ErrorResponse,
    HealthResponse,
    PaymentConfigResponse,
    PurchaseHistoryResponse,
    SubscriptionCheckoutRequest,
    SubscriptionResponse,
    WebhookAck,
)
from vibestore.models.domain import AuthenticatedUser
from vibestore.services.checkout import CheckoutService
from vibestore.services.entitlements import EntitlementService
from vibestore.services.payment_provider import PaymentProvider
from vibestore.services.revenue import RevenueService
from vibestore.services.webhook import WebhookIngestor

logger = get_logger(__name__)

router = APIRouter()


def _checkout_http_error(exc: StoreError) -> HTTPException:
    """Translate checkout failures into HTTP errors."""
    if isinstance(exc, (AppNotFoundError, ProductNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidProductError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (PaymentProviderError, CheckoutRecordError)):
        # Nothing was charged and no pending row exists: safe to retry
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "5"},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# Checkout Initiator
# ============================================================================


@router.post("/v1/checkout", response_model=CheckoutResponse, response_model_by_alias=True)
async def create_checkout(
    request: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    provider: PaymentProvider = Depends(get_payment_provider),
    db: AsyncSession = Depends(get_write_db),
) -> CheckoutResponse:
    """
    Open a checkout session for a price reference.

    The browser is redirected to the returned URL; ownership is only granted
    once the processor's webhook arrives.
    """
    service = CheckoutService(db, provider)
    try:
        return await service.create_checkout(user, request)
    except StoreError as exc:
        raise _checkout_http_error(exc) from exc


@router.post(
    "/v1/apps/{app_id}/checkout",
    response_model=CheckoutResponse,
    response_model_by_alias=True,
)
async def create_app_checkout(
    app_id: UUID,
    request: AppCheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    provider: PaymentProvider = Depends(get_payment_provider),
    db: AsyncSession = Depends(get_write_db),
) -> CheckoutResponse:
    """Open a one-time checkout for an approved paid app."""
    service = CheckoutService(db, provider)
    try:
        return await service.create_app_checkout(
            user, app_id, str(request.success_url), str(request.cancel_url)
        )
    except StoreError as exc:
        raise _checkout_http_error(exc) from exc


@router.post(
    "/v1/subscriptions/checkout",
    response_model=CheckoutResponse,
    response_model_by_alias=True,
)
async def create_subscription_checkout(
    request: SubscriptionCheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    provider: PaymentProvider = Depends(get_payment_provider),
    db: AsyncSession = Depends(get_write_db),
) -> CheckoutResponse:
    """Open a subscription checkout for the Pro or Enterprise plan."""
    service = CheckoutService(db, provider)
    try:
        return await service.create_subscription_checkout(
            user, request.plan, str(request.success_url), str(request.cancel_url)
        )
    except StoreError as exc:
        raise _checkout_http_error(exc) from exc


# ============================================================================
# Webhook Ingestor
# ============================================================================


@router.post(
    "/webhook",
    response_model=WebhookAck,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
@router.post(
    "/v1/webhooks/stripe",
    response_model=WebhookAck,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def stripe_webhook(
    request: Request,
    provider: PaymentProvider | None = Depends(get_optional_payment_provider),
    db: AsyncSession = Depends(get_write_db),
) -> WebhookAck | JSONResponse:
    """
    Handle Stripe webhook events.

    200 for processed, duplicate and ignored events; 400 for bad signatures
    (never retried usefully); 500 when a verified payment could not be
    recorded, so Stripe retries the delivery.
    """
    if provider is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Payment provider not configured"},
        )

    # Read raw webhook payload - the signature covers the exact bytes
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    ingestor = WebhookIngestor(db, provider)
    try:
        outcome = await ingestor.ingest(payload, signature)
    except WebhookVerificationError as exc:
        logger.warning("stripe_webhook_rejected", error=exc.message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": exc.message}
        )
    except EntitlementGrantError as exc:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": f"Entitlement grant failed for {exc.processor_reference}"},
        )
    except (PaymentProviderError, SQLAlchemyError) as exc:
        logger.error(
            "stripe_webhook_processing_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    logger.info("stripe_webhook_acknowledged", outcome=outcome.value)
    return WebhookAck()


# ============================================================================
# Entitlement reads
# ============================================================================


@router.get("/v1/entitlements", response_model=EntitlementListResponse)
async def list_entitlements(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> EntitlementListResponse:
    """Everything the signed-in user owns, for loading the entitlement cache."""
    service = EntitlementService(db)
    product_ids = await service.list_owned_app_ids(user.user_id)
    tier, period_end = await service.get_subscription_tier(user.user_id)
    return EntitlementListResponse(
        user_id=user.user_id,
        product_ids=product_ids,
        subscription_tier=tier,
        current_period_end=period_end,
    )


@router.get("/v1/entitlements/{app_id}", response_model=EntitlementCheckResponse)
async def check_entitlement(
    app_id: UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> EntitlementCheckResponse:
    """
    Durable point check for one app.

    Reads the primary so a purchase confirmed by a webhook moments ago is
    visible to the return-from-checkout poll.
    """
    service = EntitlementService(db)
    owned = await service.has_entitlement(user.user_id, app_id)
    return EntitlementCheckResponse(app_id=app_id, owned=owned)


@router.get("/v1/purchases", response_model=PurchaseHistoryResponse)
async def list_purchases(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> PurchaseHistoryResponse:
    """Completed purchases, newest first."""
    service = EntitlementService(db)
    purchases, total = await service.list_purchases(user.user_id, limit=limit, offset=offset)
    return PurchaseHistoryResponse(purchases=purchases, total_count=total)


@router.get("/v1/subscription", response_model=SubscriptionResponse | None)
async def get_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> SubscriptionResponse | None:
    """Current paid subscription, or null on the free tier."""
    state = await EntitlementService(db).get_subscription(user.user_id)
    if state is None:
        return None
    return SubscriptionResponse(
        tier=state.tier,
        status=state.status,
        processor_subscription_id=state.processor_subscription_id,
        current_period_start=state.current_period_start,
        current_period_end=state.current_period_end,
    )


@router.get("/v1/developer/revenue", response_model=DeveloperRevenueResponse)
async def get_developer_revenue(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> DeveloperRevenueResponse:
    """Revenue from the signed-in developer's apps, at the developer share."""
    return await RevenueService(db).developer_revenue(user.user_id)


@router.get("/v1/payments/config", response_model=PaymentConfigResponse)
async def get_payment_config() -> PaymentConfigResponse:
    """Which payment settings are present; the publishable key is public."""
    return PaymentConfigResponse(
        enabled=settings.payments_enabled,
        sandbox=settings.payments_sandbox_mode,
        publishable_key=settings.stripe_publishable_key or None,
        has_webhook_secret=bool(settings.stripe_webhook_secret),
        warnings=settings.payment_config_warnings(),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
