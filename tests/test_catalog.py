"""
Tests for the product catalog.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from tests.conftest import create_mock_app, make_result
from vibestore.exceptions import AppNotFoundError, InvalidProductError, ProductNotFoundError
from vibestore.models.api import PricingType, SubscriptionTier
from vibestore.models.domain import SubscriptionPlan
from vibestore.services.catalog import (
    CatalogService,
    get_plan,
    get_plans,
    tier_for_price_ref,
    tier_from_plan_id,
)


class TestPlans:
    def test_paid_plans_only(self):
        plans = get_plans()
        assert set(plans) == {SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE}
        assert plans[SubscriptionTier.PRO].price_minor == 999
        assert plans[SubscriptionTier.ENTERPRISE].price_ref == "price_enterprise_monthly"

    def test_free_plan_lookup_fails(self):
        with pytest.raises(InvalidProductError):
            get_plan(SubscriptionTier.FREE)


class TestTierResolution:
    @pytest.mark.parametrize(
        "price_ref,tier",
        [
            ("price_pro_monthly", SubscriptionTier.PRO),
            ("price_enterprise_monthly", SubscriptionTier.ENTERPRISE),
            ("price_pro_yearly", SubscriptionTier.PRO),
            ("price_1PRO_yearly", None),
            ("price_Enterprise_2026", None),
            ("price_unrelated", None),
        ],
    )
    def test_tier_for_price_ref(self, price_ref, tier):
        assert tier_for_price_ref(price_ref) == tier

    @pytest.mark.parametrize(
        "plan_id,tier",
        [
            ("pro", SubscriptionTier.PRO),
            ("ENTERPRISE", SubscriptionTier.ENTERPRISE),
            ("free", None),
            ("gold", None),
            (None, None),
            ("", None),
        ],
    )
    def test_tier_from_plan_id(self, plan_id, tier):
        assert tier_from_plan_id(plan_id) == tier


class TestCatalogService:
    async def test_get_app(self, db_session, app_id):
        db_session.execute = AsyncMock(return_value=make_result(scalar=create_mock_app(app_id)))

        product = await CatalogService(db_session).get_app(app_id)

        assert product.app_id == app_id
        assert product.pricing_type == PricingType.ONE_TIME

    async def test_get_app_missing(self, db_session):
        with pytest.raises(AppNotFoundError):
            await CatalogService(db_session).get_app(uuid4())

    async def test_unapproved_app_can_still_be_read(self, db_session, app_id):
        db_session.execute = AsyncMock(
            return_value=make_result(scalar=create_mock_app(app_id, status="pending"))
        )
        assert (await CatalogService(db_session).get_app(app_id)).app_id == app_id

    async def test_resolve_plan_price_ref(self, db_session):
        product = await CatalogService(db_session).resolve_price_ref("price_pro_monthly")

        assert isinstance(product, SubscriptionPlan)
        db_session.execute.assert_not_awaited()

    async def test_resolve_app_id(self, db_session, app_id):
        db_session.execute = AsyncMock(return_value=make_result(scalar=create_mock_app(app_id)))

        product = await CatalogService(db_session).resolve_price_ref(str(app_id))

        assert product.app_id == app_id

    async def test_resolve_unknown(self, db_session):
        with pytest.raises(ProductNotFoundError):
            await CatalogService(db_session).resolve_price_ref("price_x")
