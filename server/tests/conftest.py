"""
Shared fixtures: a fresh in-memory store, a fake payment gateway and a
TestClient wired to both through dependency overrides.
"""

import hashlib
import hmac
import json
import os
import time
from typing import Any, Dict, List, Optional

# Rate limits would trip across the suite; disable before the app is imported
os.environ["STOREFRONT_LIMITS_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from storefront.auth import get_settings
from storefront.errors import PaymentSessionError
from storefront.main import app
from storefront.models import PaymentLineItem, PaymentSession
from storefront.payments import PaymentGateway, get_gateway, verify_signature
from storefront.settings import Settings
from storefront.storage import MemoryStore, get_store


JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"
WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(PaymentGateway):
    """Records session requests; can be told to fail."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret
        self.sessions: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    async def create_session(self, line_items: List[PaymentLineItem], success_url: str, cancel_url: str, metadata: Dict[str, str]) -> PaymentSession:
        if self.fail_with is not None:
            raise self.fail_with
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        })
        return PaymentSession(id=session_id, url=f"https://pay.example.com/{session_id}")

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        return verify_signature(payload, signature_header, self.webhook_secret)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def payment_event(order_id, event_type: str = "checkout.session.completed", event_id: str = "evt_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": "cs_test_1", "metadata": {"orderId": str(order_id)}}},
    }).encode()


@pytest.fixture
def test_settings():
    return Settings(
        jwt_secret=JWT_SECRET,
        stripe_webhook_secret=WEBHOOK_SECRET,
        admin_usernames_raw="admin",
        success_url="https://shop.example.com/success",
        cancel_url="https://shop.example.com/cancel",
        pending_order_ttl_minutes=60,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(store, gateway, test_settings):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_settings] = lambda: test_settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def register(client: TestClient, username: str, password: str = "secret123", email: Optional[str] = None) -> Dict[str, str]:
    """Sign up and return Authorization headers for the new user."""
    response = client.post(
        "/api/signup",
        json={"username": username, "email": email or f"{username}@example.com", "password": password},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return register(client, "admin")


@pytest.fixture
def user_headers(client):
    return register(client, "alice")


@pytest.fixture
def make_product(client, admin_headers):
    """Create a product through the admin API and return its JSON."""
    def _make(title: str = "Widget", price: str = "10.00", **extra) -> Dict[str, Any]:
        response = client.post(
            "/api/admin/products",
            json={"title": title, "price": price, **extra},
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()
    return _make


CONTACT = {
    "name": "Alice Example",
    "email": "alice@example.com",
    "phone": "+15551234567",
    "address": "1 Main St",
    "landmark": "Near the park",
}
