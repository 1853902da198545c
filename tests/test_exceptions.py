"""
Tests for exception classes.

Covers all exception types and their string representations.
"""

from uuid import uuid4

import pytest

from vibestore.client.errors import AlreadyOwnedError, NotSignedInError, StoreClientError
from vibestore.exceptions import (
    AppNotFoundError,
    AuthenticationError,
    AuthorizationError,
    CheckoutRecordError,
    CheckoutTimeoutError,
    DataIntegrityError,
    EntitlementGrantError,
    InvalidProductError,
    InvalidStatusTransitionError,
    PaymentProviderError,
    PaymentsNotConfiguredError,
    ProductNotFoundError,
    StoreError,
    WebhookVerificationError,
)


class TestStoreError:
    """Tests for base StoreError."""

    def test_store_error_is_exception(self):
        assert issubclass(StoreError, Exception)

    @pytest.mark.parametrize(
        "exc",
        [
            PaymentProviderError("x"),
            CheckoutTimeoutError(15.0),
            CheckoutRecordError("cs_1", "x"),
            PaymentsNotConfiguredError(),
            WebhookVerificationError("x"),
            ProductNotFoundError("price_x"),
            InvalidProductError("price_x", "free"),
            EntitlementGrantError("cs_1", "x"),
            DataIntegrityError("x"),
            AppNotFoundError(uuid4()),
            InvalidStatusTransitionError(uuid4(), "approved", "rejected"),
            AuthenticationError("x"),
            AuthorizationError("admin"),
        ],
    )
    def test_every_error_is_store_error(self, exc):
        assert isinstance(exc, StoreError)


class TestPaymentFailures:
    """User was not charged: retriable."""

    def test_provider_error_message(self):
        exc = PaymentProviderError("card_declined")
        assert exc.message == "card_declined"
        assert str(exc) == "Payment provider error: card_declined"
        assert exc.retriable is True

    def test_timeout_is_provider_error(self):
        exc = CheckoutTimeoutError(15.0)
        assert isinstance(exc, PaymentProviderError)
        assert exc.timeout_seconds == 15.0
        assert "15.0" in str(exc)

    def test_record_error_keeps_reference(self):
        exc = CheckoutRecordError("cs_test_1", "connection reset")
        assert exc.processor_reference == "cs_test_1"
        assert exc.retriable is True
        assert "cs_test_1" in str(exc)


class TestGrantFailure:
    """User was charged but nothing was recorded: never a payment error."""

    def test_grant_error_is_not_payment_error(self):
        assert not issubclass(EntitlementGrantError, PaymentProviderError)

    def test_attributes(self):
        exc = EntitlementGrantError("cs_test_1", "deadlock detected")
        assert exc.processor_reference == "cs_test_1"
        assert exc.message == "deadlock detected"
        assert str(exc) == "Entitlement grant failed for cs_test_1: deadlock detected"


class TestProductErrors:
    def test_invalid_product(self):
        exc = InvalidProductError("app-1", "free products need no checkout")
        assert exc.reason == "free products need no checkout"
        assert "app-1" in str(exc)

    def test_status_transition(self):
        app_id = uuid4()
        exc = InvalidStatusTransitionError(app_id, "rejected", "approved")
        assert str(exc) == f"App {app_id} cannot move from rejected to approved"


class TestClientErrors:
    def test_defaults(self):
        exc = StoreClientError("boom")
        assert exc.status_code is None
        assert exc.retriable is False

    def test_not_signed_in(self):
        assert isinstance(NotSignedInError(), StoreClientError)

    def test_already_owned(self):
        exc = AlreadyOwnedError("app-1")
        assert exc.product_id == "app-1"
        assert "app-1" in str(exc)
