"""
Tests for the Stripe gateway client with the SDK session service patched.
"""

import asyncio
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from conftest import WEBHOOK_SECRET, sign_payload
from storefront.errors import PaymentSessionError, UntrustedEventError
from storefront.models import PaymentLineItem
from storefront.payments import StripeGateway


LINE_ITEMS = [
    PaymentLineItem(name="Phone Stand", unit_amount=1999, quantity=2),
    PaymentLineItem(name="Novel", unit_amount=500, quantity=1),
]


def _create(gateway):
    return asyncio.run(gateway.create_session(
        LINE_ITEMS,
        success_url="https://shop.example.com/success",
        cancel_url="https://shop.example.com/cancel",
        metadata={"orderId": "17"},
    ))


@pytest.fixture
def gateway():
    return StripeGateway(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)


class TestCreateSession:

    def test_sends_checkout_session_params(self, gateway):
        created = SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1")
        with patch.object(gateway.sessions, "create_async", new=AsyncMock(return_value=created)) as create:
            session = _create(gateway)

        assert (session.id, session.url) == ("cs_1", "https://checkout.stripe.test/cs_1")
        [params] = create.call_args.args
        assert params["mode"] == "payment"
        assert params["payment_method_types"] == ["card"]
        assert params["metadata"] == {"orderId": "17"}
        assert params["success_url"] == "https://shop.example.com/success"
        assert params["cancel_url"] == "https://shop.example.com/cancel"
        assert params["line_items"][0] == {
            "price_data": {
                "currency": "usd",
                "product_data": {"name": "Phone Stand"},
                "unit_amount": 1999,
            },
            "quantity": 2,
        }
        assert params["line_items"][1]["quantity"] == 1

    def test_rejected_request(self, gateway):
        error = stripe.InvalidRequestError("Invalid amount", "line_items")
        with patch.object(gateway.sessions, "create_async", new=AsyncMock(side_effect=error)):
            with pytest.raises(PaymentSessionError) as exc_info:
                _create(gateway)
        assert exc_info.value.detail == "Payment gateway rejected the session."

    def test_network_failure(self, gateway):
        error = stripe.APIConnectionError("connection refused")
        with patch.object(gateway.sessions, "create_async", new=AsyncMock(side_effect=error)):
            with pytest.raises(PaymentSessionError) as exc_info:
                _create(gateway)
        assert exc_info.value.detail == "Payment gateway unreachable."

    def test_response_without_url(self, gateway):
        created = SimpleNamespace(id="cs_1", url=None)
        with patch.object(gateway.sessions, "create_async", new=AsyncMock(return_value=created)):
            with pytest.raises(PaymentSessionError):
                _create(gateway)

    def test_missing_secret_key_fails_without_client(self):
        unconfigured = StripeGateway(secret_key="", webhook_secret=WEBHOOK_SECRET)
        assert unconfigured.sessions is None
        with pytest.raises(PaymentSessionError) as exc_info:
            _create(unconfigured)
        assert exc_info.value.detail == "Payment gateway not configured."


class TestConstructEvent:

    def test_uses_webhook_secret(self):
        gateway = StripeGateway(secret_key="", webhook_secret=WEBHOOK_SECRET)
        payload = b'{"type": "checkout.session.completed"}'
        assert gateway.construct_event(payload, sign_payload(payload))["type"] == "checkout.session.completed"
        with pytest.raises(UntrustedEventError):
            gateway.construct_event(payload, sign_payload(payload, secret="whsec_other"))

    def test_uses_configured_tolerance(self):
        gateway = StripeGateway(secret_key="", webhook_secret=WEBHOOK_SECRET, tolerance_seconds=60)
        payload = b'{"type": "ping"}'
        old = sign_payload(payload, timestamp=int(time.time()) - 120)
        with pytest.raises(UntrustedEventError):
            gateway.construct_event(payload, old)
