"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - Stripe payloads are parsed into typed models here and
nowhere else.
"""

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

import stripe
from structlog import get_logger

from vibestore.exceptions import (
    CheckoutTimeoutError,
    PaymentProviderError,
    WebhookVerificationError,
)
from vibestore.models.api import CheckoutMode
from vibestore.models.domain import CheckoutIntent
from vibestore.services.payment_provider import (
    CheckoutSession,
    CheckoutSessionData,
    SubscriptionData,
    WebhookEvent,
)

logger = get_logger(__name__)


# ============================================================================
# Payload helpers
# ============================================================================


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC)


def _object_id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def build_checkout_metadata(intent: CheckoutIntent) -> dict[str, str]:
    """Metadata that lets the webhook attribute the payment to a user and product."""
    metadata = {"user_id": str(intent.user_id)}
    if intent.app_id is not None:
        metadata["app_id"] = str(intent.app_id)
    if intent.plan_tier is not None:
        metadata["plan_id"] = intent.plan_tier.value
    return metadata


def build_checkout_params(intent: CheckoutIntent) -> dict[str, Any]:
    """Translate a checkout intent into stripe.checkout.Session.create arguments."""
    metadata = build_checkout_metadata(intent)

    if intent.price_ref:
        line_item: dict[str, Any] = {"price": intent.price_ref, "quantity": 1}
    else:
        line_item = {
            "price_data": {
                "currency": intent.currency.lower(),
                "unit_amount": intent.amount_minor,
                "product_data": {"name": intent.product_name},
            },
            "quantity": 1,
        }

    params: dict[str, Any] = {
        "mode": intent.mode.value,
        "line_items": [line_item],
        "success_url": intent.success_url,
        "cancel_url": intent.cancel_url,
        "client_reference_id": str(intent.user_id),
        "metadata": metadata,
    }
    if intent.customer_email:
        params["customer_email"] = intent.customer_email

    # Metadata is copied onto the child object so later events carry it too
    if intent.mode == CheckoutMode.SUBSCRIPTION:
        params["subscription_data"] = {"metadata": metadata}
    else:
        params["payment_intent_data"] = {"metadata": metadata}

    return params


def _parse_checkout_session(obj: dict[str, Any]) -> CheckoutSessionData:
    metadata = obj.get("metadata") or {}
    currency = obj.get("currency")
    customer_details = obj.get("customer_details") or {}
    return CheckoutSessionData(
        session_id=obj["id"],
        mode=obj.get("mode") or CheckoutMode.PAYMENT.value,
        payment_status=obj.get("payment_status") or "unpaid",
        amount_total=obj.get("amount_total"),
        currency=currency.upper() if currency else None,
        payment_intent_id=_object_id(obj.get("payment_intent")),
        subscription_id=_object_id(obj.get("subscription")),
        customer_email=obj.get("customer_email") or customer_details.get("email"),
        # camelCase keys are what the storefront's original checkout function sent
        metadata_user_id=(
            metadata.get("user_id") or metadata.get("userId") or obj.get("client_reference_id")
        ),
        metadata_app_id=metadata.get("app_id") or metadata.get("appId"),
        metadata_plan_id=metadata.get("plan_id") or metadata.get("planId"),
    )


def _parse_subscription(obj: dict[str, Any]) -> SubscriptionData:
    metadata = obj.get("metadata") or {}
    items = (obj.get("items") or {}).get("data") or []
    price_refs = tuple(item["price"]["id"] for item in items if item.get("price"))

    # Newer API versions moved the billing period onto the subscription items
    first_item = items[0] if items else {}
    period_start = obj.get("current_period_start") or first_item.get("current_period_start")
    period_end = obj.get("current_period_end") or first_item.get("current_period_end")

    return SubscriptionData(
        subscription_id=obj["id"],
        status=obj.get("status") or "active",
        price_refs=price_refs,
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        metadata_user_id=metadata.get("user_id") or metadata.get("userId"),
        metadata_plan_id=metadata.get("plan_id") or metadata.get("planId"),
    )


def parse_event(data: dict[str, Any]) -> WebhookEvent:
    """
    Parse a verified Stripe event body into a WebhookEvent.

    Raises:
        WebhookVerificationError: If required fields are missing
    """
    try:
        event_type: str = data["type"]
        obj = data["data"]["object"]

        checkout_session = None
        subscription = None
        if event_type.startswith("checkout.session."):
            checkout_session = _parse_checkout_session(obj)
        elif event_type.startswith("customer.subscription."):
            subscription = _parse_subscription(obj)

        return WebhookEvent(
            event_id=data["id"],
            event_type=event_type,
            created_at=_timestamp(data["created"]) or datetime.now(UTC),
            checkout_session=checkout_session,
            subscription=subscription,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise WebhookVerificationError(f"Malformed event payload: {exc}") from exc


def verify_and_parse(
    payload: bytes, signature: str, webhook_secret: str, tolerance: int
) -> WebhookEvent:
    """
    Check the Stripe-Signature header against the raw body, then parse it.

    Raises:
        WebhookVerificationError: On a missing or invalid signature or a malformed body
    """
    if not signature:
        logger.warning("stripe_webhook_signature_missing")
        raise WebhookVerificationError("Missing Stripe-Signature header")

    try:
        payload_text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookVerificationError("Payload is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(
            payload_text, signature, webhook_secret, tolerance
        )
    except stripe.SignatureVerificationError as exc:
        logger.error("stripe_webhook_verification_failed", error=str(exc))
        raise WebhookVerificationError("Invalid Stripe webhook signature") from exc

    try:
        data = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        logger.error("stripe_webhook_parsing_failed", error=str(exc))
        raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

    if not isinstance(data, dict):
        raise WebhookVerificationError("Malformed event payload: expected an object")

    event = parse_event(data)
    logger.info("stripe_webhook_verified", event_id=event.event_id, event_type=event.event_type)
    return event


# ============================================================================
# Provider
# ============================================================================


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol on Stripe Checkout. The SDK is
    synchronous, so calls run in a worker thread under a timeout.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = 15.0,
        webhook_tolerance_seconds: int = 300,
    ) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            timeout_seconds: Upper bound for checkout session creation
            webhook_tolerance_seconds: Maximum accepted age of a signed webhook
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self.webhook_tolerance_seconds = webhook_tolerance_seconds
        stripe.api_key = api_key

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        """
        Create a Stripe Checkout session.

        Raises:
            PaymentProviderError: If Stripe API call fails
            CheckoutTimeoutError: If Stripe does not answer within timeout_seconds
        """
        params = build_checkout_params(intent)

        try:
            logger.info(
                "creating_stripe_checkout_session",
                user_id=str(intent.user_id),
                mode=intent.mode.value,
                amount_minor=intent.amount_minor,
                currency=intent.currency,
            )

            session = await asyncio.wait_for(
                asyncio.to_thread(stripe.checkout.Session.create, **params),
                timeout=self.timeout_seconds,
            )

            logger.info("stripe_checkout_session_created", session_id=session.id)

            return CheckoutSession(
                session_id=session.id,
                url=session.url or "",
                amount_minor=session.amount_total,
                currency=session.currency.upper() if session.currency else None,
            )

        except TimeoutError as exc:
            logger.error(
                "stripe_checkout_session_timeout",
                user_id=str(intent.user_id),
                timeout_seconds=self.timeout_seconds,
            )
            raise CheckoutTimeoutError(self.timeout_seconds) from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

    async def expire_checkout_session(self, session_id: str) -> None:
        """
        Expire an open Stripe Checkout session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            await asyncio.wait_for(
                asyncio.to_thread(stripe.checkout.Session.expire, session_id),
                timeout=self.timeout_seconds,
            )
            logger.info("stripe_checkout_session_expired", session_id=session_id)
        except TimeoutError as exc:
            raise CheckoutTimeoutError(self.timeout_seconds) from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_expire_failed",
                session_id=session_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to expire checkout session: {exc}") from exc

    async def list_price_refs(self, session_id: str) -> list[str]:
        """
        List the Stripe price ids bought in a checkout session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            line_items = await asyncio.wait_for(
                asyncio.to_thread(stripe.checkout.Session.list_line_items, session_id, limit=10),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as exc:
            raise CheckoutTimeoutError(self.timeout_seconds) from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_line_items_failed",
                session_id=session_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to list line items: {exc}") from exc

        return [item.price.id for item in line_items.data if item.price is not None]

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        return verify_and_parse(
            payload, signature, self.webhook_secret, self.webhook_tolerance_seconds
        )
