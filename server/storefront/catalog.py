"""Product catalog reads and admin-gated mutations."""

import logging
from typing import List

from .auth import UserContext
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import Product, ProductCreate, ProductUpdate
from .storage import Store

logger = logging.getLogger(__name__)

# Columns that may be changed but never set to null
REQUIRED_FIELDS = ("title", "price")


def _require_admin(user: UserContext) -> None:
    if not user.is_admin:
        raise ForbiddenError()


async def list_products(store: Store) -> List[Product]:
    return await store.list_products()


async def get_product(store: Store, product_id: int) -> Product:
    product = await store.get_product(product_id)
    if product is None:
        raise NotFoundError("Product not found.")
    return product


async def create_product(store: Store, user: UserContext, data: ProductCreate) -> Product:
    _require_admin(user)
    product = await store.create_product(data)
    logger.info("Product %s created by %s", product.id, user.username)
    return product


async def update_product(store: Store, user: UserContext, product_id: int, data: ProductUpdate) -> Product:
    _require_admin(user)
    for field in REQUIRED_FIELDS:
        if field in data.model_fields_set and getattr(data, field) is None:
            raise ValidationError(f"{field} cannot be cleared.")
    product = await store.update_product(product_id, data)
    if product is None:
        raise NotFoundError("Product not found.")
    logger.info("Product %s updated by %s", product_id, user.username)
    return product


async def delete_product(store: Store, user: UserContext, product_id: int) -> None:
    _require_admin(user)
    if not await store.delete_product(product_id):
        raise NotFoundError("Product not found.")
    logger.info("Product %s deleted by %s", product_id, user.username)
