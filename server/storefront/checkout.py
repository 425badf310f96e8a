"""
Checkout and payment confirmation.

Checkout turns a snapshot of the user's cart into a pending order and
opens a hosted payment session for it. The gateway later reports the
outcome through a signed webhook event, which is applied idempotently.

Ordering in initiate_checkout:
1. read the cart (the snapshot)
2. total it with Decimal arithmetic
3. write order + lines and consume the snapshotted cart lines in one transaction
4. ask the gateway for a session; on failure the order stays pending
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from .auth import UserContext
from .errors import EmptyCartError, OrderPersistenceError, PaymentSessionError
from .models import (
    CartItem, CheckoutResponse, ConfirmationOutcome, ContactDetails,
    OrderStatus, PaymentLineItem,
)
from .payments import PaymentGateway
from .settings import Settings
from .storage import Store

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# Order ids are Postgres INTEGER (int4) keys
MAX_ORDER_ID = 2 ** 31 - 1

# Event types that mean the customer's money has cleared
COMPLETED_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}
# Event types that end a pending checkout without payment
FAILED_EVENTS = {
    "checkout.session.expired",
    "checkout.session.async_payment_failed",
}


def compute_total(snapshot: List[CartItem]) -> Decimal:
    """Exact sum of unit price x quantity, quantized to cents."""
    total = sum((item.price * item.quantity for item in snapshot), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (e.g. dollars) to integer minor units (cents)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def initiate_checkout(
    store: Store,
    gateway: PaymentGateway,
    user: UserContext,
    contact: ContactDetails,
    config: Settings,
) -> CheckoutResponse:
    """
    Snapshot the cart into a pending order and start a payment session.

    Raises EmptyCartError (nothing written), OrderPersistenceError (nothing
    written) or PaymentSessionError (order left pending, carries its id).
    """
    snapshot = await store.get_cart(user.user_id)
    if not snapshot:
        raise EmptyCartError()

    total = compute_total(snapshot)

    try:
        order = await store.place_order(user.user_id, contact, snapshot, total)
    except Exception as e:
        logger.exception("Order transaction failed for user %s", user.user_id)
        raise OrderPersistenceError() from e

    logger.info(
        "Order %s created for user %s: %d line(s), total %s",
        order.id, user.user_id, len(order.items), order.total,
    )

    line_items = [
        PaymentLineItem(name=line.title, unit_amount=to_minor_units(line.price), quantity=line.quantity)
        for line in order.items
    ]
    try:
        session = await gateway.create_session(
            line_items,
            success_url=config.success_url,
            cancel_url=config.cancel_url,
            metadata={"orderId": str(order.id)},
        )
    except PaymentSessionError as e:
        logger.warning("Payment session failed for order %s; order left pending", order.id)
        raise PaymentSessionError(e.detail, order_id=order.id) from e
    except Exception as e:
        logger.exception("Payment gateway error for order %s; order left pending", order.id)
        raise PaymentSessionError(order_id=order.id) from e

    return CheckoutResponse(url=session.url, session_id=session.id, order=order)


def _extract_order_id(event: Dict[str, Any]) -> Optional[int]:
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if obj is None:
        obj = event.get("object")
    if not isinstance(obj, dict):
        return None
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        return None
    try:
        return int(metadata.get("orderId"))
    except (TypeError, ValueError):
        return None


async def confirm_payment(
    store: Store,
    gateway: PaymentGateway,
    payload: bytes,
    signature_header: Optional[str],
) -> ConfirmationOutcome:
    """
    Authenticate a gateway event and apply it to the referenced order.

    Raises UntrustedEventError before touching any state if the signature
    does not verify. Everything else is acknowledged: replays, unknown
    orders and unrelated event types are logged and reported through the
    returned outcome.
    """
    event = gateway.construct_event(payload, signature_header)
    event_type = event.get("type")

    if event_type not in COMPLETED_EVENTS and event_type not in FAILED_EVENTS:
        logger.debug("Ignoring gateway event type %s", event_type)
        return ConfirmationOutcome.IGNORED

    order_id = _extract_order_id(event)
    if order_id is None:
        logger.warning("Gateway event %s carries no order reference", event.get("id"))
        return ConfirmationOutcome.IGNORED
    if not 1 <= order_id <= MAX_ORDER_ID:
        logger.warning("Gateway event %s references unknown order %s", event_type, order_id)
        return ConfirmationOutcome.UNKNOWN_ORDER

    if event_type in COMPLETED_EVENTS:
        # A cleared payment wins over failed/cancelled
        updated = await store.transition_order_status(
            order_id,
            OrderStatus.PAID,
            allowed_from=(OrderStatus.PENDING, OrderStatus.FAILED, OrderStatus.CANCELLED),
        )
        if updated is not None:
            logger.info("Order %s marked paid", order_id)
            return ConfirmationOutcome.PAID
    else:
        updated = await store.transition_order_status(
            order_id,
            OrderStatus.FAILED,
            allowed_from=(OrderStatus.PENDING,),
        )
        if updated is not None:
            logger.info("Order %s marked failed (%s)", order_id, event_type)
            return ConfirmationOutcome.FAILED

    order = await store.get_order(order_id)
    if order is None:
        logger.warning("Gateway event %s references unknown order %s", event_type, order_id)
        return ConfirmationOutcome.UNKNOWN_ORDER
    if order.status == OrderStatus.PAID:
        logger.info("Order %s already paid; replay of %s absorbed", order_id, event_type)
        return ConfirmationOutcome.ALREADY_PAID
    logger.info("Order %s in status %s; %s not applied", order_id, order.status.value, event_type)
    return ConfirmationOutcome.IGNORED
