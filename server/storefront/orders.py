"""Order listing and operator actions on orders stuck in pending."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .auth import UserContext
from .errors import NotFoundError, OrderStateError
from .models import Order, OrderStatus
from .storage import Store

logger = logging.getLogger(__name__)


async def list_user_orders(store: Store, user: UserContext) -> List[Order]:
    return await store.list_orders(user_id=user.user_id)


async def list_all_orders(store: Store) -> List[Order]:
    return await store.list_orders()


async def list_stale_orders(
    store: Store,
    older_than_minutes: int,
    now: Optional[datetime] = None,
) -> List[Order]:
    """Pending orders created more than ``older_than_minutes`` ago, oldest first."""
    now = now or datetime.now(timezone.utc)
    return await store.list_pending_orders(now - timedelta(minutes=older_than_minutes))


async def cancel_order(store: Store, admin: UserContext, order_id: int) -> Order:
    """Move a pending order to cancelled. Any other status is left alone."""
    order = await store.transition_order_status(
        order_id,
        OrderStatus.CANCELLED,
        allowed_from=(OrderStatus.PENDING,),
    )
    if order is not None:
        logger.info("Order %s cancelled by %s", order_id, admin.username)
        return order

    existing = await store.get_order(order_id)
    if existing is None:
        raise NotFoundError("Order not found.")
    raise OrderStateError(f"Order is {existing.status.value}; only pending orders can be cancelled.")
