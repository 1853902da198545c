"""
Checkout Service - opens processor checkout sessions.

Either the processor session exists and its pending transaction row is
committed, or no row exists and the session is expired. There is no
idempotency here: every call opens a new session.
"""

import time
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.config import Settings, settings
from vibestore.db.models import Transaction
from vibestore.exceptions import (
    CheckoutRecordError,
    CheckoutTimeoutError,
    InvalidProductError,
    PaymentProviderError,
)
from vibestore.models.api import (
    CheckoutMode,
    CheckoutRequest,
    CheckoutResponse,
    SubscriptionTier,
    TransactionStatus,
)
from vibestore.models.domain import (
    AppProduct,
    AuthenticatedUser,
    CheckoutIntent,
    Product,
    SubscriptionPlan,
)
from vibestore.observability.metrics import metrics
from vibestore.observability.tracing import trace_operation
from vibestore.services.catalog import CatalogService, get_plan
from vibestore.services.payment_provider import CheckoutSession, PaymentProvider

logger = get_logger(__name__)


def mode_for(product: Product) -> CheckoutMode:
    """Apps are one-off payments; plans are recurring."""
    if isinstance(product, SubscriptionPlan):
        return CheckoutMode.SUBSCRIPTION
    return CheckoutMode.PAYMENT


class CheckoutService:
    """Creates checkout sessions and their pending ledger rows."""

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        config: Settings | None = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.config = config or settings
        self.catalog = CatalogService(session, self.config)

    async def create_app_checkout(
        self, user: AuthenticatedUser, app_id: UUID, success_url: str, cancel_url: str
    ) -> CheckoutResponse:
        """Open a one-time payment checkout for an approved, priced app."""
        product = await self.catalog.get_purchasable_app(app_id)
        return await self.checkout_product(user, product, success_url, cancel_url)

    async def create_subscription_checkout(
        self, user: AuthenticatedUser, tier: SubscriptionTier, success_url: str, cancel_url: str
    ) -> CheckoutResponse:
        """Open a subscription checkout for a paid plan."""
        plan = get_plan(tier, self.config)
        return await self.checkout_product(user, plan, success_url, cancel_url)

    async def create_checkout(
        self, user: AuthenticatedUser, request: CheckoutRequest
    ) -> CheckoutResponse:
        """
        Open a checkout from a raw price reference.

        Raises:
            ProductNotFoundError: If the price reference matches nothing
            InvalidProductError: If the requested mode does not fit the product
        """
        product = await self.catalog.resolve_price_ref(request.price_ref)
        expected = mode_for(product)
        if request.mode != expected:
            raise InvalidProductError(
                request.price_ref, f"requires mode {expected.value}, got {request.mode.value}"
            )
        return await self.checkout_product(
            user, product, str(request.success_url), str(request.cancel_url)
        )

    async def checkout_product(
        self, user: AuthenticatedUser, product: Product, success_url: str, cancel_url: str
    ) -> CheckoutResponse:
        """
        Open a checkout session for a resolved product and record it as pending.

        Raises:
            InvalidProductError: If the product is free or zero-priced
            PaymentProviderError: If the processor fails or times out
            CheckoutRecordError: If the pending row could not be stored
        """
        intent = self._build_intent(user, product, success_url, cancel_url)
        mode = intent.mode.value
        started = time.perf_counter()

        try:
            with trace_operation("checkout_session_create", mode=mode, user_id=user.user_id):
                checkout = await self.provider.create_checkout_session(intent)
        except CheckoutTimeoutError as exc:
            metrics.record_checkout(mode, "timeout", time.perf_counter() - started)
            logger.error(
                "checkout_payment_failed",
                user_id=str(user.user_id),
                mode=mode,
                reason="timeout",
                error=str(exc),
            )
            raise
        except PaymentProviderError as exc:
            metrics.record_checkout(mode, "provider_error", time.perf_counter() - started)
            logger.error(
                "checkout_payment_failed",
                user_id=str(user.user_id),
                mode=mode,
                reason="provider_error",
                error=str(exc),
            )
            raise

        try:
            await self._record_pending(intent, checkout)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            metrics.record_checkout(mode, "record_failed", time.perf_counter() - started)
            logger.error(
                "checkout_record_failed",
                user_id=str(user.user_id),
                session_id=checkout.session_id,
                error=str(exc),
            )
            await self._expire_quietly(checkout.session_id)
            raise CheckoutRecordError(checkout.session_id, str(exc)) from exc

        metrics.record_checkout(mode, "created", time.perf_counter() - started)
        logger.info(
            "checkout_session_created",
            user_id=str(user.user_id),
            session_id=checkout.session_id,
            mode=mode,
            app_id=str(intent.app_id) if intent.app_id else None,
            plan=intent.plan_tier.value if intent.plan_tier else None,
            amount_minor=intent.amount_minor,
        )
        return CheckoutResponse(session_id=checkout.session_id, url=checkout.url)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _build_intent(
        self, user: AuthenticatedUser, product: Product, success_url: str, cancel_url: str
    ) -> CheckoutIntent:
        if isinstance(product, AppProduct):
            if product.is_free or product.price_minor <= 0:
                raise InvalidProductError(str(product.app_id), "free products need no checkout")
            return CheckoutIntent(
                user_id=user.user_id,
                price_ref=None,
                amount_minor=product.price_minor,
                currency=product.currency,
                product_name=product.title,
                mode=CheckoutMode.PAYMENT,
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=user.email,
                app_id=product.app_id,
            )

        if product.price_minor <= 0:
            raise InvalidProductError(product.tier.value, "plan has no price")
        return CheckoutIntent(
            user_id=user.user_id,
            price_ref=product.price_ref,
            amount_minor=product.price_minor,
            currency=product.currency,
            product_name=f"Vibe Store {product.tier.value.capitalize()}",
            mode=CheckoutMode.SUBSCRIPTION,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=user.email,
            plan_tier=product.tier,
        )

    async def _record_pending(self, intent: CheckoutIntent, checkout: CheckoutSession) -> None:
        transaction = Transaction(
            user_id=intent.user_id,
            app_id=intent.app_id,
            plan_tier=intent.plan_tier.value if intent.plan_tier else None,
            amount_minor=checkout.amount_minor or intent.amount_minor,
            currency=(checkout.currency or intent.currency).upper(),
            mode=intent.mode.value,
            processor_reference=checkout.session_id,
            status=TransactionStatus.PENDING.value,
        )
        self.session.add(transaction)
        await self.session.commit()

    async def _expire_quietly(self, session_id: str) -> None:
        """Best-effort expiry of a session that has no ledger row."""
        try:
            await self.provider.expire_checkout_session(session_id)
        except PaymentProviderError as exc:
            logger.warning("checkout_session_expire_failed", session_id=session_id, error=str(exc))
