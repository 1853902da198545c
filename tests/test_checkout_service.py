"""
Tests for CheckoutService.

The processor session and the pending transaction row either both exist
or neither does.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from tests.conftest import FakePaymentProvider, create_mock_app, make_result
from vibestore.db.models import Transaction
from vibestore.exceptions import (
    AppNotFoundError,
    CheckoutRecordError,
    CheckoutTimeoutError,
    InvalidProductError,
    PaymentProviderError,
    ProductNotFoundError,
)
from vibestore.models.api import CheckoutMode, CheckoutRequest, SubscriptionTier
from vibestore.models.domain import AppProduct, SubscriptionPlan
from vibestore.services.checkout import CheckoutService, mode_for

SUCCESS_URL = "https://vibestore.example/payment/success"
CANCEL_URL = "https://vibestore.example/store"


def use_app_row(db_session, app_row):
    db_session.execute = AsyncMock(return_value=make_result(scalar=app_row))


class TestModeFor:
    def test_app_is_one_time_payment(self, paid_app):
        assert mode_for(paid_app) == CheckoutMode.PAYMENT

    def test_plan_is_subscription(self):
        plan = SubscriptionPlan(
            tier=SubscriptionTier.PRO, price_ref="price_pro_monthly", price_minor=999
        )
        assert mode_for(plan) == CheckoutMode.SUBSCRIPTION


class TestCreateAppCheckout:
    """Tests for create_app_checkout."""

    async def test_opens_session_and_records_pending_row(self, db_session, user, app_id):
        provider = FakePaymentProvider()
        use_app_row(db_session, create_mock_app(app_id=app_id, price_minor=499))
        service = CheckoutService(db_session, provider)

        response = await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)

        assert response.session_id == "cs_test_1"
        assert response.url.startswith("https://checkout.stripe.com/")

        intent = provider.intents[0]
        assert intent.app_id == app_id
        assert intent.user_id == user.user_id
        assert intent.amount_minor == 499
        assert intent.mode == CheckoutMode.PAYMENT
        assert intent.customer_email == "buyer@example.com"

        row = db_session.add.call_args[0][0]
        assert isinstance(row, Transaction)
        assert row.status == "pending"
        assert row.processor_reference == "cs_test_1"
        assert row.user_id == user.user_id
        assert row.app_id == app_id
        db_session.commit.assert_awaited_once()

    async def test_each_call_opens_a_new_session(self, db_session, user, app_id):
        """No idempotency at checkout: the webhook side dedupes."""
        provider = FakePaymentProvider()
        use_app_row(db_session, create_mock_app(app_id=app_id))
        service = CheckoutService(db_session, provider)

        first = await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)
        second = await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)

        assert first.session_id != second.session_id
        assert db_session.add.call_count == 2

    async def test_missing_app(self, db_session, user):
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(AppNotFoundError):
            await service.create_app_checkout(user, uuid4(), SUCCESS_URL, CANCEL_URL)

    async def test_free_app_never_reaches_provider(self, db_session, user, app_id):
        provider = FakePaymentProvider()
        use_app_row(
            db_session, create_mock_app(app_id=app_id, pricing_type="free", price_minor=0)
        )
        service = CheckoutService(db_session, provider)

        with pytest.raises(InvalidProductError):
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)
        assert provider.intents == []
        db_session.add.assert_not_called()

    async def test_zero_priced_paid_app_rejected(self, db_session, user, app_id):
        use_app_row(db_session, create_mock_app(app_id=app_id, price_minor=0))
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(InvalidProductError):
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)

    @pytest.mark.parametrize("status", ["pending", "rejected"])
    async def test_unapproved_app_rejected(self, db_session, user, app_id, status):
        use_app_row(db_session, create_mock_app(app_id=app_id, status=status))
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(InvalidProductError) as exc_info:
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)
        assert status in exc_info.value.reason


class TestCheckoutFailures:
    """Processor and ledger failures."""

    async def test_provider_error_writes_nothing(self, db_session, user, app_id):
        provider = FakePaymentProvider(error=PaymentProviderError("card_declined"))
        use_app_row(db_session, create_mock_app(app_id=app_id))
        service = CheckoutService(db_session, provider)

        with pytest.raises(PaymentProviderError):
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)
        db_session.add.assert_not_called()
        db_session.commit.assert_not_awaited()

    async def test_timeout_writes_nothing(self, db_session, user, app_id):
        provider = FakePaymentProvider(error=CheckoutTimeoutError(15.0))
        use_app_row(db_session, create_mock_app(app_id=app_id))
        service = CheckoutService(db_session, provider)

        with pytest.raises(CheckoutTimeoutError):
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)
        db_session.add.assert_not_called()

    async def test_record_failure_expires_orphan_session(self, db_session, user, app_id):
        provider = FakePaymentProvider()
        use_app_row(db_session, create_mock_app(app_id=app_id))
        db_session.commit = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception()))
        service = CheckoutService(db_session, provider)

        with pytest.raises(CheckoutRecordError) as exc_info:
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)

        assert exc_info.value.processor_reference == "cs_test_1"
        assert provider.expired == ["cs_test_1"]
        db_session.rollback.assert_awaited_once()

    async def test_expire_failure_still_reports_record_error(self, db_session, user, app_id):
        provider = FakePaymentProvider()
        provider.expire_checkout_session = AsyncMock(side_effect=PaymentProviderError("gone"))
        use_app_row(db_session, create_mock_app(app_id=app_id))
        db_session.commit = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception()))
        service = CheckoutService(db_session, provider)

        with pytest.raises(CheckoutRecordError):
            await service.create_app_checkout(user, app_id, SUCCESS_URL, CANCEL_URL)


class TestSubscriptionCheckout:
    """Tests for create_subscription_checkout."""

    async def test_pro_plan_uses_configured_price(self, db_session, user):
        provider = FakePaymentProvider()
        service = CheckoutService(db_session, provider)

        await service.create_subscription_checkout(
            user, SubscriptionTier.PRO, SUCCESS_URL, CANCEL_URL
        )

        intent = provider.intents[0]
        assert intent.mode == CheckoutMode.SUBSCRIPTION
        assert intent.price_ref == "price_pro_monthly"
        assert intent.plan_tier == SubscriptionTier.PRO
        assert intent.app_id is None
        assert db_session.add.call_args[0][0].plan_tier == "pro"

    async def test_free_tier_cannot_be_bought(self, db_session, user):
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(InvalidProductError):
            await service.create_subscription_checkout(
                user, SubscriptionTier.FREE, SUCCESS_URL, CANCEL_URL
            )


class TestCreateCheckoutFromPriceRef:
    """Tests for create_checkout with a raw price reference."""

    def make_request(self, price_ref, mode=CheckoutMode.PAYMENT):
        return CheckoutRequest(
            priceRef=price_ref, successUrl=SUCCESS_URL, cancelUrl=CANCEL_URL, mode=mode
        )

    async def test_plan_price_ref(self, db_session, user):
        provider = FakePaymentProvider()
        service = CheckoutService(db_session, provider)

        await service.create_checkout(
            user, self.make_request("price_enterprise_monthly", CheckoutMode.SUBSCRIPTION)
        )

        assert provider.intents[0].plan_tier == SubscriptionTier.ENTERPRISE

    async def test_app_id_price_ref(self, db_session, user, app_id):
        provider = FakePaymentProvider()
        use_app_row(db_session, create_mock_app(app_id=app_id))
        service = CheckoutService(db_session, provider)

        await service.create_checkout(user, self.make_request(str(app_id)))

        assert provider.intents[0].app_id == app_id

    async def test_mode_mismatch_rejected(self, db_session, user):
        provider = FakePaymentProvider()
        service = CheckoutService(db_session, provider)

        with pytest.raises(InvalidProductError):
            await service.create_checkout(
                user, self.make_request("price_pro_monthly", CheckoutMode.PAYMENT)
            )
        assert provider.intents == []

    async def test_unknown_price_ref(self, db_session, user):
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(ProductNotFoundError):
            await service.create_checkout(user, self.make_request("price_nonexistent"))

    async def test_unknown_app_id_is_product_not_found(self, db_session, user):
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(ProductNotFoundError):
            await service.create_checkout(user, self.make_request(str(uuid4())))


class TestCheckoutProduct:
    async def test_free_product_rejected_directly(self, db_session, user, free_app: AppProduct):
        service = CheckoutService(db_session, FakePaymentProvider())

        with pytest.raises(InvalidProductError):
            await service.checkout_product(user, free_app, SUCCESS_URL, CANCEL_URL)
