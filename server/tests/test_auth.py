"""
Tests for signup, login and session token handling.
"""

import pytest
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from conftest import JWT_SECRET, register
from storefront.auth import issue_token, validate_token, hash_password, verify_password
from storefront.errors import InvalidTokenError
from storefront.models import UserRecord


def _user(is_admin=False):
    return UserRecord(id=7, username="bob", email="bob@example.com", password_hash="x", is_admin=is_admin)


class TestSignupAndLogin:
    """Account endpoints."""

    def test_signup_returns_token_and_user(self, client):
        response = client.post(
            "/api/signup",
            json={"username": "bob", "email": "Bob@Example.com", "password": "secret123"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["token"]
        assert data["user"]["username"] == "bob"
        assert data["user"]["email"] == "bob@example.com"
        assert data["user"]["is_admin"] is False
        assert "password_hash" not in data["user"]

    def test_signup_never_stores_raw_password(self, client, store):
        register(client, "bob", password="secret123")
        user = store._users[1]
        assert user.password_hash != "secret123"
        assert verify_password("secret123", user.password_hash)

    def test_duplicate_username_rejected(self, client):
        register(client, "bob")
        response = client.post(
            "/api/signup",
            json={"username": "bob", "email": "other@example.com", "password": "secret123"},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_identity"

    def test_duplicate_email_rejected(self, client):
        register(client, "bob", email="shared@example.com")
        response = client.post(
            "/api/signup",
            json={"username": "carol", "email": "SHARED@example.com", "password": "secret123"},
        )
        assert response.status_code == 409

    def test_signup_validates_input(self, client):
        response = client.post("/api/signup", json={"username": "bob", "email": "not-an-email", "password": "secret123"})
        assert response.status_code == 422

    def test_configured_admin_username_gets_admin_flag(self, client):
        response = client.post(
            "/api/signup",
            json={"username": "admin", "email": "admin@example.com", "password": "secret123"},
        )
        assert response.json()["user"]["is_admin"] is True

    def test_login_success(self, client):
        register(client, "bob", password="secret123")
        response = client.post("/api/login", json={"username": "bob", "password": "secret123"})
        assert response.status_code == 200
        assert response.json()["token"]

    def test_login_failures_are_indistinguishable(self, client):
        register(client, "bob", password="secret123")
        wrong_password = client.post("/api/login", json={"username": "bob", "password": "nope-nope"})
        unknown_user = client.post("/api/login", json={"username": "nobody", "password": "secret123"})
        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json()


class TestBearerAuth:
    """Authenticated endpoints and the bearer dependency."""

    def test_missing_token(self, client):
        response = client.get("/api/cart")
        assert response.status_code == 401
        assert "Missing bearer token" in response.json()["detail"]
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token(self, client):
        response = client.get("/api/cart", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    def test_token_signed_with_other_secret(self, client):
        token = issue_token(_user(), "some-other-secret-that-is-long-enough!!", 3600)
        response = client.get("/api/cart", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = issue_token(_user(), JWT_SECRET, 3600, now=issued)
        response = client.get("/api/cart", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert "expired" in response.json()["detail"].lower()

    def test_valid_token(self, client, user_headers):
        response = client.get("/api/cart", headers=user_headers)
        assert response.status_code == 200


class TestTokenValidation:
    """validate_token depends only on (token, secret, now)."""

    def test_round_trip_claims(self):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        token = issue_token(_user(is_admin=True), JWT_SECRET, 60, now=now)
        claims = validate_token(token, JWT_SECRET, now=now + timedelta(seconds=30))
        assert claims.user_id == 7
        assert claims.username == "bob"
        assert claims.is_admin is True
        assert claims.expires_at == now + timedelta(seconds=60)

    def test_expiry_boundary(self):
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        token = issue_token(_user(), JWT_SECRET, 60, now=now)
        validate_token(token, JWT_SECRET, now=now + timedelta(seconds=59))
        with pytest.raises(InvalidTokenError):
            validate_token(token, JWT_SECRET, now=now + timedelta(seconds=60))

    def test_wrong_secret(self):
        token = issue_token(_user(), JWT_SECRET, 60)
        with pytest.raises(InvalidTokenError):
            validate_token(token, JWT_SECRET + "-rotated")

    def test_missing_claims(self):
        import jwt
        token = jwt.encode({"sub": "7", "exp": 4102444800}, JWT_SECRET, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            validate_token(token, JWT_SECRET)

    def test_password_hash_is_salted(self):
        first, second = hash_password("secret123"), hash_password("secret123")
        assert first != second
        assert verify_password("secret123", first)
        assert not verify_password("secret124", first)
        assert not verify_password("secret123", "not-a-hash")


class TestSettingsParsing:
    """Test settings module parsing."""

    def test_parse_admin_usernames_from_env(self):
        with patch.dict(os.environ, {"STOREFRONT_ADMIN_USERNAMES_RAW": "root, ops ,"}, clear=False):
            from storefront.settings import Settings
            settings = Settings()
            assert settings.admin_usernames == ["root", "ops"]

    def test_parse_allowed_origins_from_env(self):
        with patch.dict(os.environ, {"STOREFRONT_ALLOWED_ORIGINS_RAW": "https://shop.example.com,https://other.com"}, clear=False):
            from storefront.settings import Settings
            settings = Settings()
            assert settings.allowed_origins == ["https://shop.example.com", "https://other.com"]

    def test_empty_admin_usernames_default(self):
        with patch.dict(os.environ, {}, clear=True):
            from storefront.settings import Settings
            settings = Settings(_env_file=None)
            assert settings.admin_usernames == []
            assert settings.token_ttl_seconds == 7 * 24 * 3600


class TestHealth:

    def test_health_no_auth_required(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert response.headers["X-Request-Id"]

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"
