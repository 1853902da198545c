"""
Catalog Service - resolves what can be bought.

Apps live in the database; subscription plans come from configuration.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vibestore.config import Settings, settings
from vibestore.db.models import App
from vibestore.exceptions import AppNotFoundError, InvalidProductError, ProductNotFoundError
from vibestore.models.api import AppStatus, PricingType, SubscriptionTier
from vibestore.models.domain import AppProduct, Product, SubscriptionPlan

logger = get_logger(__name__)

# Monthly plan prices in minor units
PLAN_PRICES_MINOR: dict[SubscriptionTier, int] = {
    SubscriptionTier.PRO: 999,
    SubscriptionTier.ENTERPRISE: 2999,
}


def get_plans(config: Settings | None = None) -> dict[SubscriptionTier, SubscriptionPlan]:
    """Purchasable subscription plans keyed by tier."""
    config = config or settings
    price_refs = {
        SubscriptionTier.PRO: config.stripe_price_pro,
        SubscriptionTier.ENTERPRISE: config.stripe_price_enterprise,
    }
    return {
        tier: SubscriptionPlan(
            tier=tier,
            price_ref=price_refs[tier],
            price_minor=PLAN_PRICES_MINOR[tier],
            currency=config.default_currency,
        )
        for tier in (SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE)
    }


def get_plan(tier: SubscriptionTier, config: Settings | None = None) -> SubscriptionPlan:
    """
    Look up the plan for a tier.

    Raises:
        InvalidProductError: For the free tier
    """
    plans = get_plans(config)
    if tier not in plans:
        raise InvalidProductError(tier.value, "the free tier cannot be purchased")
    return plans[tier]


def tier_for_price_ref(price_ref: str, config: Settings | None = None) -> SubscriptionTier | None:
    """
    Map a processor price id to a subscription tier.

    Configured price ids match exactly. Otherwise the tier name embedded in
    the price id is used, matched case-sensitively, which is how plan prices
    have been named in the Stripe dashboard.
    """
    for plan in get_plans(config).values():
        if plan.price_ref == price_ref:
            return plan.tier

    if "enterprise" in price_ref:
        return SubscriptionTier.ENTERPRISE
    if "pro" in price_ref:
        return SubscriptionTier.PRO
    return None


def tier_from_plan_id(plan_id: str | None) -> SubscriptionTier | None:
    """Parse a plan_id metadata value; the free tier is never a valid plan."""
    if not plan_id:
        return None
    try:
        tier = SubscriptionTier(plan_id.lower())
    except ValueError:
        return None
    return None if tier == SubscriptionTier.FREE else tier


class CatalogService:
    """Looks up products and checks they can be sold."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def get_app(self, app_id: UUID) -> AppProduct:
        """
        Load an app as a product.

        Raises:
            AppNotFoundError: If the app doesn't exist
        """
        app = await self._find_app(app_id)
        if app is None:
            raise AppNotFoundError(app_id)
        return self._to_product(app)

    async def get_purchasable_app(self, app_id: UUID) -> AppProduct:
        """
        Load an app that can be checked out.

        Raises:
            AppNotFoundError: If the app doesn't exist
            InvalidProductError: If the app is unapproved, free or zero-priced
        """
        app = await self._find_app(app_id)
        if app is None:
            raise AppNotFoundError(app_id)

        if app.status != AppStatus.APPROVED.value:
            raise InvalidProductError(str(app_id), f"app is {app.status}")

        product = self._to_product(app)
        if product.is_free or product.price_minor <= 0:
            raise InvalidProductError(str(app_id), "free products need no checkout")

        return product

    async def resolve_price_ref(self, price_ref: str) -> Product:
        """
        Resolve a checkout price reference to a product.

        A configured plan price id resolves to that plan; an app id resolves
        to the app.

        Raises:
            ProductNotFoundError: If the reference matches nothing
            InvalidProductError: If the product cannot be sold
        """
        for plan in get_plans(self.config).values():
            if plan.price_ref == price_ref:
                return plan

        try:
            app_id = UUID(price_ref)
        except ValueError:
            logger.warning("price_ref_unknown", price_ref=price_ref)
            raise ProductNotFoundError(price_ref) from None

        try:
            return await self.get_purchasable_app(app_id)
        except AppNotFoundError:
            raise ProductNotFoundError(price_ref) from None

    async def _find_app(self, app_id: UUID) -> App | None:
        stmt = select(App).where(App.id == app_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _to_product(app: App) -> AppProduct:
        return AppProduct(
            app_id=app.id,
            title=app.title,
            pricing_type=PricingType(app.pricing_type),
            price_minor=app.price_minor,
            currency=app.currency,
            developer_id=app.developer_id,
        )
