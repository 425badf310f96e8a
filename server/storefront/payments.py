"""
Hosted payment gateway client.

Creates Stripe Checkout Sessions and verifies webhook deliveries with the
official ``stripe`` SDK. Async session calls go through the SDK's httpx
transport.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import stripe

from .errors import PaymentSessionError, UntrustedEventError
from .models import PaymentLineItem, PaymentSession
from .settings import Settings, settings

logger = logging.getLogger(__name__)


def verify_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance_seconds: int = 300,
) -> Dict[str, Any]:
    """
    Authenticate a webhook payload and return the decoded event.

    Signature and timestamp checks are done by ``stripe.WebhookSignature``.
    Raises UntrustedEventError if the secret or header is missing, the
    signature does not verify, the timestamp is too old, or the payload is
    not a JSON object.
    """
    if not secret:
        raise UntrustedEventError("Webhook secret not configured.")
    if not signature_header:
        raise UntrustedEventError("Missing signature header.")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise UntrustedEventError("Payload is not valid UTF-8.")

    try:
        stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance_seconds)
    except stripe.SignatureVerificationError as e:
        raise UntrustedEventError() from e

    try:
        event = json.loads(body)
    except ValueError:
        raise UntrustedEventError("Payload is not valid JSON.")
    if not isinstance(event, dict):
        raise UntrustedEventError("Payload is not a JSON object.")
    return event


class PaymentGateway(ABC):
    """External service hosting the payment page and reporting completion."""

    @abstractmethod
    async def create_session(
        self,
        line_items: List[PaymentLineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> PaymentSession:
        """Create a hosted payment session. Raises PaymentSessionError."""

    @abstractmethod
    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Authenticate a webhook delivery. Raises UntrustedEventError."""

    async def close(self) -> None:
        return None


class StripeGateway(PaymentGateway):
    """Stripe Checkout through a ``stripe.StripeClient``."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        currency: str = "usd",
        api_base: str = "https://api.stripe.com",
        timeout: float = 10.0,
        tolerance_seconds: int = 300,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.tolerance_seconds = tolerance_seconds
        self.http_client: Optional[stripe.HTTPXClient] = None
        self.sessions = None
        # Without a key the client cannot be built; create_session reports it
        if secret_key:
            self.http_client = stripe.HTTPXClient(timeout=timeout)
            client = stripe.StripeClient(
                secret_key,
                base_addresses={"api": api_base},
                http_client=self.http_client,
            )
            self.sessions = client.checkout.sessions

    @classmethod
    def from_settings(cls, config: Settings) -> "StripeGateway":
        return cls(
            secret_key=config.stripe_secret_key,
            webhook_secret=config.stripe_webhook_secret,
            currency=config.currency,
            api_base=config.stripe_api_base,
            timeout=config.stripe_timeout_seconds,
            tolerance_seconds=config.webhook_tolerance_seconds,
        )

    def session_params(
        self,
        line_items: List[PaymentLineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        return {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": item.name},
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
        }

    async def create_session(
        self,
        line_items: List[PaymentLineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> PaymentSession:
        if self.sessions is None:
            raise PaymentSessionError("Payment gateway not configured.")

        params = self.session_params(line_items, success_url, cancel_url, metadata)
        try:
            session = await self.sessions.create_async(params)
        except stripe.APIConnectionError as e:
            logger.error("Payment gateway request failed: %s", e.user_message)
            raise PaymentSessionError("Payment gateway unreachable.") from e
        except stripe.StripeError as e:
            logger.error(
                "Payment gateway rejected session: status=%s message=%s",
                e.http_status, e.user_message,
            )
            raise PaymentSessionError("Payment gateway rejected the session.") from e

        url = getattr(session, "url", None)
        session_id = getattr(session, "id", None)
        if not url or not session_id:
            raise PaymentSessionError("Payment gateway returned no session URL.")
        return PaymentSession(id=session_id, url=url)

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        return verify_signature(
            payload,
            signature_header,
            self.webhook_secret,
            tolerance_seconds=self.tolerance_seconds,
        )

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.close_async()


# Process-wide gateway (set during app startup)
_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway.from_settings(settings)
    return _gateway


def set_gateway(gateway: Optional[PaymentGateway]) -> None:
    global _gateway
    _gateway = gateway
