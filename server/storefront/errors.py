"""
Storefront error taxonomy.

Each error carries the HTTP status it maps to and a short machine-readable
code. The FastAPI handler in main.py renders them as
``{"detail": ..., "error": ...}``.
"""

from typing import Optional

from fastapi import status


class StorefrontError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    default_detail: str = "Internal server error."

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "error": self.code}


class ValidationError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_detail = "Invalid request."


class AuthError(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "auth_error"
    default_detail = "Missing bearer token."


class InvalidTokenError(AuthError):
    code = "invalid_token"
    default_detail = "Invalid or expired token."


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    default_detail = "Invalid credentials."


class ForbiddenError(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_detail = "Admin access required."


class NotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Not found."


class DuplicateIdentityError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_identity"
    default_detail = "Username or email already registered."


class EmptyCartError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "empty_cart"
    default_detail = "Cart is empty."


class OrderPersistenceError(StorefrontError):
    """The order transaction failed; nothing was written."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "order_persistence_failed"
    default_detail = "Could not create order."


class PaymentSessionError(StorefrontError):
    """The order exists (pending) but the gateway session could not be created."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_session_failed"
    default_detail = "Could not start payment."

    def __init__(self, detail: Optional[str] = None, order_id: Optional[int] = None):
        super().__init__(detail)
        self.order_id = order_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.order_id is not None:
            body["order_id"] = self.order_id
        return body


class UntrustedEventError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "untrusted_event"
    default_detail = "Webhook signature verification failed."


class OrderStateError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    code = "order_state_conflict"
    default_detail = "Order status does not allow this change."
