"""
Admin API endpoints for catalog management and order oversight.

All endpoints require a session token whose admin flag is set.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from .auth import UserContext, get_settings, require_admin
from .models import Order, Product, ProductCreate, ProductUpdate
from .settings import Settings
from .storage import Store, get_store
from . import catalog, orders


router = APIRouter(prefix="/api/admin", tags=["admin"])


class DeleteResponse(BaseModel):
    success: bool = True


# --- Products ---


@router.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductCreate,
    admin: UserContext = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Create a catalog product. Price must be non-negative."""
    return await catalog.create_product(store, admin, body)


@router.put("/products/{product_id}", response_model=Product)
async def update_product(
    product_id: int,
    body: ProductUpdate,
    admin: UserContext = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Update a product. Omitted fields keep their current value."""
    return await catalog.update_product(store, admin, product_id, body)


@router.delete("/products/{product_id}", response_model=DeleteResponse)
async def delete_product(
    product_id: int,
    admin: UserContext = Depends(require_admin),
    store: Store = Depends(get_store),
):
    await catalog.delete_product(store, admin, product_id)
    return DeleteResponse()


# --- Orders ---


@router.get("/orders", response_model=List[Order])
async def list_orders(
    admin: UserContext = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """All orders, newest first, with their lines and the owner's username."""
    return await orders.list_all_orders(store)


@router.get("/orders/stale", response_model=List[Order])
async def list_stale_orders(
    older_than_minutes: Optional[int] = Query(None, ge=0),
    admin: UserContext = Depends(require_admin),
    store: Store = Depends(get_store),
    config: Settings = Depends(get_settings),
):
    """
    Orders still pending after ``older_than_minutes``.

    Defaults to STOREFRONT_PENDING_ORDER_TTL_MINUTES. These are checkouts
    whose payment session failed or was abandoned; nothing retries them
    automatically.
    """
    if older_than_minutes is None:
        older_than_minutes = config.pending_order_ttl_minutes
    return await orders.list_stale_orders(store, older_than_minutes)


@router.post("/orders/{order_id}/cancel", response_model=Order)
async def cancel_order(
    order_id: int,
    admin: UserContext = Depends(require_admin),
    store: Store = Depends(get_store),
):
    """Cancel a pending order. Paid, failed or cancelled orders return 409."""
    return await orders.cancel_order(store, admin, order_id)
