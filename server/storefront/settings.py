"""
Terra Storefront Settings

Configuration management using pydantic settings.
Loads from environment variables with STOREFRONT_ prefix.
"""

import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field
from typing import List


class Settings(BaseSettings):
    """
    Server configuration settings.

    Environment variables:
    - STOREFRONT_JWT_SECRET: Secret used to sign session tokens
    - STOREFRONT_TOKEN_TTL_SECONDS: Session token lifetime (default: 7 days)
    - STOREFRONT_ADMIN_USERNAMES_RAW: Comma-separated usernames that sign up as admins
    - STOREFRONT_ALLOWED_ORIGINS_RAW: Comma-separated list of allowed CORS origins
    - STOREFRONT_STRIPE_SECRET_KEY: Payment gateway API key
    - STOREFRONT_STRIPE_WEBHOOK_SECRET: Secret used to verify webhook signatures
    - STOREFRONT_SUCCESS_URL / STOREFRONT_CANCEL_URL: Hosted checkout redirect targets
    - STOREFRONT_PENDING_ORDER_TTL_MINUTES: Age after which a pending order is stale
    - STOREFRONT_AUTH_RATE_LIMIT: slowapi limit for signup/login (default: 20/minute)
    - STOREFRONT_LIMITS_ENABLED: Enable rate limiting (default: true)
    - STOREFRONT_DEBUG: Enable debug mode (default: false)
    - DATABASE_URL: PostgreSQL connection string
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        extra="ignore",
    )

    # Session tokens
    jwt_secret: str = "change_this_secret"
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 7 * 24 * 3600

    # Raw string fields for comma-separated values
    admin_usernames_raw: str = ""
    allowed_origins_raw: str = ""

    # Payment gateway
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_base: str = "https://api.stripe.com"
    stripe_timeout_seconds: float = 10.0
    webhook_tolerance_seconds: int = 300
    currency: str = "usd"
    success_url: str = "https://example.com/success"
    cancel_url: str = "https://example.com/cancel"

    # Orders left pending longer than this show up in the stale order listing
    pending_order_ttl_minutes: int = 60

    # Rate limiting
    auth_rate_limit: str = "20/minute"
    limits_enabled: bool = True

    # Debug mode
    debug: bool = False

    @computed_field
    @property
    def admin_usernames(self) -> List[str]:
        """Parse comma-separated admin usernames into list."""
        if not self.admin_usernames_raw:
            return []
        return [v.strip() for v in self.admin_usernames_raw.split(",") if v.strip()]

    @computed_field
    @property
    def allowed_origins(self) -> List[str]:
        """Parse comma-separated allowed origins into list."""
        if not self.allowed_origins_raw:
            return []
        return [v.strip() for v in self.allowed_origins_raw.split(",") if v.strip()]


# Database URL (read separately since it doesn't have the STOREFRONT_ prefix)
DATABASE_URL = os.environ.get("DATABASE_URL", "")

# Global settings instance
settings = Settings()
