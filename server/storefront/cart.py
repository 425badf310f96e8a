"""
Per-user cart operations.

Lines are keyed by (user, product); adding an existing product increments
its quantity. Listing joins live catalog data, so displayed prices follow
the catalog until checkout snapshots them.
"""

from .auth import UserContext
from .models import CartView
from .storage import Store


async def add(store: Store, user: UserContext, product_id: int, quantity: int = 1) -> CartView:
    await store.add_to_cart(user.user_id, product_id, quantity)
    return await list_cart(store, user)


async def set_quantity(store: Store, user: UserContext, product_id: int, quantity: int) -> CartView:
    # Zero or less removes the line; a missing line is a no-op
    await store.set_cart_quantity(user.user_id, product_id, quantity)
    return await list_cart(store, user)


async def remove(store: Store, user: UserContext, product_id: int) -> CartView:
    await store.remove_from_cart(user.user_id, product_id)
    return await list_cart(store, user)


async def list_cart(store: Store, user: UserContext) -> CartView:
    return CartView(items=await store.get_cart(user.user_id))
