"""
Sandbox Payment Provider - simulated checkout for development.

Only selected when PAYMENTS_SANDBOX_MODE is set. Sessions are never
charged: the "checkout URL" is the success URL itself, and entitlements
still only appear once a signed webhook is delivered.
"""

from urllib.parse import urlencode, urlsplit, urlunsplit
from uuid import uuid4

from structlog import get_logger

from vibestore.models.domain import CheckoutIntent
from vibestore.services.payment_provider import CheckoutSession, WebhookEvent
from vibestore.services.stripe_provider import verify_and_parse

logger = get_logger(__name__)


def _append_query(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = parts.query + ("&" if parts.query else "") + urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class SandboxProvider:
    """PaymentProvider that fabricates checkout sessions locally."""

    def __init__(self, webhook_secret: str, webhook_tolerance_seconds: int = 300) -> None:
        self.webhook_secret = webhook_secret
        self.webhook_tolerance_seconds = webhook_tolerance_seconds
        self.expired: set[str] = set()

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        session_id = f"cs_sandbox_{uuid4().hex}"
        logger.warning(
            "sandbox_checkout_session_created",
            session_id=session_id,
            user_id=str(intent.user_id),
            amount_minor=intent.amount_minor,
        )
        return CheckoutSession(
            session_id=session_id,
            url=_append_query(intent.success_url, session_id=session_id),
            amount_minor=intent.amount_minor,
            currency=intent.currency,
        )

    async def expire_checkout_session(self, session_id: str) -> None:
        self.expired.add(session_id)

    async def list_price_refs(self, session_id: str) -> list[str]:
        # No line items are kept; tier resolution falls back to plan_id metadata
        return []

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        return verify_and_parse(
            payload, signature, self.webhook_secret, self.webhook_tolerance_seconds
        )
