"""
Webhook Ingestor - turns verified Stripe events into durable entitlements.

Nothing is written before the signature is verified. Handled event types:

- checkout.session.completed / async_payment_succeeded: grant the app or
  overwrite the subscription tier
- checkout.session.async_payment_failed / expired: pending transaction -> failed
- customer.subscription.updated / deleted: refresh or revert the tier

Everything else is acknowledged and ignored.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.config import Settings, settings
from vibestore.models.api import CheckoutMode, SubscriptionTier
from vibestore.models.domain import ENDED_SUBSCRIPTION_STATUSES, AppGrant, SubscriptionChange
from vibestore.observability.logging import log_context
from vibestore.observability.metrics import metrics
from vibestore.observability.tracing import add_span_attributes, trace_operation
from vibestore.services.catalog import tier_for_price_ref, tier_from_plan_id
from vibestore.services.entitlements import EntitlementService
from vibestore.services.notifications import NotificationService
from vibestore.services.payment_provider import (
    CheckoutSessionData,
    PaymentProvider,
    SubscriptionData,
    WebhookEvent,
)

logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    """How a delivery was handled. All outcomes are acknowledged with 200."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


def _parse_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


class WebhookIngestor:
    """Verifies webhook deliveries and applies them exactly once."""

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        config: Settings | None = None,
        notifications: NotificationService | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or settings
        self.entitlements = EntitlementService(session)
        self.notifications = notifications or NotificationService(session)
        self._handlers: dict[str, Callable[[WebhookEvent], Awaitable[WebhookOutcome]]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "checkout.session.async_payment_succeeded": self._on_checkout_completed,
            "checkout.session.async_payment_failed": self._on_checkout_failed,
            "checkout.session.expired": self._on_checkout_failed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_changed,
        }

    async def ingest(self, payload: bytes, signature: str) -> WebhookOutcome:
        """
        Verify a raw delivery and apply it.

        Raises:
            WebhookVerificationError: Bad signature or payload (no side effects)
            EntitlementGrantError: Verified payment that could not be recorded
        """
        event = await self.provider.verify_webhook(payload, signature)
        return await self.handle(event)

    async def handle(self, event: WebhookEvent) -> WebhookOutcome:
        """Dispatch a verified event to its handler."""
        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.info(
                "stripe_webhook_ignored", event_id=event.event_id, event_type=event.event_type
            )
            metrics.record_webhook(event.event_type, WebhookOutcome.IGNORED.value)
            return WebhookOutcome.IGNORED

        with log_context(event_id=event.event_id, event_type=event.event_type):
            logger.info("stripe_webhook_received")
            try:
                with trace_operation(
                    "webhook_ingest", event_id=event.event_id, event_type=event.event_type
                ) as span:
                    outcome = await handler(event)
                    add_span_attributes(span, outcome=outcome.value)
            except Exception:
                metrics.record_webhook(event.event_type, "error")
                raise

        metrics.record_webhook(event.event_type, outcome.value)
        return outcome

    # ========================================================================
    # Checkout session events
    # ========================================================================

    async def _on_checkout_completed(self, event: WebhookEvent) -> WebhookOutcome:
        session = event.checkout_session
        if session is None:
            return WebhookOutcome.IGNORED

        if not session.is_paid:
            # Delayed payment methods complete later via async_payment_succeeded
            logger.info(
                "checkout_payment_pending",
                session_id=session.session_id,
                payment_status=session.payment_status,
            )
            return WebhookOutcome.IGNORED

        user_id = _parse_uuid(session.metadata_user_id)
        if user_id is None:
            logger.error(
                "stripe_webhook_missing_metadata",
                session_id=session.session_id,
                field="user_id",
            )
            return WebhookOutcome.IGNORED

        if session.mode == CheckoutMode.SUBSCRIPTION.value or session.metadata_plan_id:
            return await self._grant_subscription(event, session, user_id)

        app_id = _parse_uuid(session.metadata_app_id)
        if app_id is None:
            logger.error(
                "stripe_webhook_missing_metadata",
                session_id=session.session_id,
                field="app_id",
            )
            return WebhookOutcome.IGNORED

        return await self._grant_app(event, session, user_id, app_id)

    async def _grant_app(
        self,
        event: WebhookEvent,
        session: CheckoutSessionData,
        user_id: UUID,
        app_id: UUID,
    ) -> WebhookOutcome:
        grant = AppGrant(
            event_id=event.event_id,
            event_type=event.event_type,
            user_id=user_id,
            app_id=app_id,
            processor_reference=session.session_id,
            amount_minor=session.amount_total or 0,
            currency=session.currency or self.config.default_currency,
            payment_intent_id=session.payment_intent_id,
            event_created_at=event.created_at,
        )
        result = await self.entitlements.grant_app(grant)
        if result.duplicate_event:
            return WebhookOutcome.DUPLICATE

        if result.entitlement_created:
            metrics.record_grant("app", grant.amount_minor, grant.currency)
            await self.notifications.purchase_completed(user_id, app_id)

        return WebhookOutcome.PROCESSED

    async def _grant_subscription(
        self, event: WebhookEvent, session: CheckoutSessionData, user_id: UUID
    ) -> WebhookOutcome:
        tier = await self._resolve_checkout_tier(session)
        if tier is None:
            logger.error("subscription_tier_unresolved", session_id=session.session_id)
            return WebhookOutcome.IGNORED

        change = SubscriptionChange(
            event_id=event.event_id,
            event_type=event.event_type,
            user_id=user_id,
            tier=tier,
            status="active",
            processor_subscription_id=session.subscription_id,
            processor_reference=session.session_id,
            current_period_start=event.created_at,
            current_period_end=event.created_at
            + timedelta(days=self.config.subscription_period_days),
            event_created_at=event.created_at,
            amount_minor=session.amount_total or 0,
            currency=session.currency or self.config.default_currency,
        )
        result = await self.entitlements.apply_subscription(change)
        if result.duplicate_event:
            return WebhookOutcome.DUPLICATE

        if result.entitlement_created:
            metrics.record_grant("subscription", change.amount_minor, change.currency)
            await self.notifications.subscription_activated(user_id, tier)

        return WebhookOutcome.PROCESSED

    async def _resolve_checkout_tier(self, session: CheckoutSessionData) -> SubscriptionTier | None:
        """Tier from the purchased line items, else from plan_id metadata."""
        for price_ref in await self.provider.list_price_refs(session.session_id):
            tier = tier_for_price_ref(price_ref, self.config)
            if tier is not None:
                return tier
        return tier_from_plan_id(session.metadata_plan_id)

    async def _on_checkout_failed(self, event: WebhookEvent) -> WebhookOutcome:
        session = event.checkout_session
        if session is None:
            return WebhookOutcome.IGNORED

        logger.warning(
            "checkout_payment_failed",
            session_id=session.session_id,
            reason=event.event_type.rsplit(".", 1)[-1],
        )
        result = await self.entitlements.fail_checkout(
            event.event_id, event.event_type, session.session_id
        )
        return WebhookOutcome.DUPLICATE if result.duplicate_event else WebhookOutcome.PROCESSED

    # ========================================================================
    # Subscription lifecycle events
    # ========================================================================

    async def _on_subscription_changed(self, event: WebhookEvent) -> WebhookOutcome:
        subscription = event.subscription
        if subscription is None:
            return WebhookOutcome.IGNORED

        ended = (
            event.event_type == "customer.subscription.deleted"
            or subscription.status in ENDED_SUBSCRIPTION_STATUSES
        )
        tier = SubscriptionTier.FREE if ended else self._subscription_tier(subscription)
        if tier is None:
            logger.error(
                "subscription_tier_unresolved",
                processor_subscription_id=subscription.subscription_id,
            )
            return WebhookOutcome.IGNORED

        user_id = _parse_uuid(subscription.metadata_user_id)
        change = SubscriptionChange(
            event_id=event.event_id,
            event_type=event.event_type,
            user_id=user_id,
            tier=tier,
            status="canceled" if ended else subscription.status,
            processor_subscription_id=subscription.subscription_id,
            processor_reference=None,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            event_created_at=event.created_at,
        )
        result = await self.entitlements.apply_subscription(change)
        if result.duplicate_event:
            return WebhookOutcome.DUPLICATE

        if ended and result.entitlement_created and result.user_id is not None:
            await self.notifications.subscription_canceled(result.user_id)

        return WebhookOutcome.PROCESSED

    def _subscription_tier(self, subscription: SubscriptionData) -> SubscriptionTier | None:
        for price_ref in subscription.price_refs:
            tier = tier_for_price_ref(price_ref, self.config)
            if tier is not None:
                return tier
        return tier_from_plan_id(subscription.metadata_plan_id)
