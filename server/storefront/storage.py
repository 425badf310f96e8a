"""Store interface and the in-process store used when no database is configured."""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Dict, Iterable, List, Optional, Tuple
import asyncio
import logging

from .errors import DuplicateIdentityError, NotFoundError
from .models import (
    CartItem, ContactDetails, Order, OrderLine, OrderStatus, Product,
    ProductCreate, ProductUpdate, UserRecord,
)


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Store(ABC):
    """
    Persistence operations used by the accounts, catalog, cart and checkout
    modules.

    Implementations must make ``place_order`` atomic: the order row, all of
    its lines and the consumption of the snapshotted cart lines become
    visible together or not at all.
    """

    # --- Users ---

    @abstractmethod
    async def create_user(self, username: str, email: str, password_hash: str, is_admin: bool = False) -> UserRecord:
        """Insert a user. Raises DuplicateIdentityError if username or email is taken."""

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[UserRecord]: ...

    # --- Catalog ---

    @abstractmethod
    async def list_products(self) -> List[Product]: ...

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    async def create_product(self, data: ProductCreate) -> Product: ...

    @abstractmethod
    async def update_product(self, product_id: int, data: ProductUpdate) -> Optional[Product]: ...

    @abstractmethod
    async def delete_product(self, product_id: int) -> bool: ...

    # --- Cart ---

    @abstractmethod
    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> None:
        """Upsert a cart line, incrementing an existing quantity. Raises NotFoundError for unknown products."""

    @abstractmethod
    async def set_cart_quantity(self, user_id: int, product_id: int, quantity: int) -> None:
        """Overwrite a line's quantity; zero or less deletes it. Missing lines are left alone."""

    @abstractmethod
    async def remove_from_cart(self, user_id: int, product_id: int) -> None: ...

    @abstractmethod
    async def get_cart(self, user_id: int) -> List[CartItem]:
        """Cart lines joined with live catalog title, price and image."""

    # --- Orders ---

    @abstractmethod
    async def place_order(
        self,
        user_id: int,
        contact: ContactDetails,
        snapshot: List[CartItem],
        total: Decimal,
    ) -> Order:
        """Atomically write a pending order with one line per snapshot row and consume those cart lines."""

    @abstractmethod
    async def get_order(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    async def list_orders(self, user_id: Optional[int] = None) -> List[Order]:
        """Orders newest first, optionally restricted to one user."""

    @abstractmethod
    async def list_pending_orders(self, created_before: datetime) -> List[Order]: ...

    @abstractmethod
    async def transition_order_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        allowed_from: Iterable[OrderStatus],
    ) -> Optional[Order]:
        """
        Set ``new_status`` if the order's current status is in ``allowed_from``.

        Returns the updated order, or None if the order does not exist or its
        status did not allow the transition.
        """

    async def close(self) -> None:
        return None


class MemoryStore(Store):
    """
    In-memory store guarded by a single asyncio lock.

    Order placement stages every write on copies of the affected tables and
    swaps them in only after the last write succeeds.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._user_ids = count(1)
        self._product_ids = count(1)
        self._order_ids = count(1)
        self._users: Dict[int, UserRecord] = {}
        self._products: Dict[int, Product] = {}
        # (user_id, product_id) -> quantity
        self._cart: Dict[Tuple[int, int], int] = {}
        self._orders: Dict[int, Order] = {}
        self._order_lines: Dict[int, List[OrderLine]] = {}

    # --- Users ---

    async def create_user(self, username: str, email: str, password_hash: str, is_admin: bool = False) -> UserRecord:
        email = email.lower()
        async with self._lock:
            for user in self._users.values():
                if user.username == username or user.email == email:
                    raise DuplicateIdentityError()
            user = UserRecord(
                id=next(self._user_ids),
                username=username,
                email=email,
                password_hash=password_hash,
                is_admin=is_admin,
                created_at=_now(),
            )
            self._users[user.id] = user
            return user

    async def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        for user in self._users.values():
            if user.username == username:
                return user
        return None

    # --- Catalog ---

    async def list_products(self) -> List[Product]:
        return [self._products[pid] for pid in sorted(self._products)]

    async def get_product(self, product_id: int) -> Optional[Product]:
        return self._products.get(product_id)

    async def create_product(self, data: ProductCreate) -> Product:
        async with self._lock:
            product = Product(id=next(self._product_ids), created_at=_now(), **data.model_dump())
            self._products[product.id] = product
            return product

    async def update_product(self, product_id: int, data: ProductUpdate) -> Optional[Product]:
        async with self._lock:
            current = self._products.get(product_id)
            if current is None:
                return None
            updated = current.model_copy(update=data.model_dump(exclude_unset=True))
            self._products[product_id] = updated
            return updated

    async def delete_product(self, product_id: int) -> bool:
        async with self._lock:
            if self._products.pop(product_id, None) is None:
                return False
            for key in [k for k in self._cart if k[1] == product_id]:
                del self._cart[key]
            return True

    # --- Cart ---

    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> None:
        async with self._lock:
            if product_id not in self._products:
                raise NotFoundError("Product not found.")
            key = (user_id, product_id)
            self._cart[key] = self._cart.get(key, 0) + quantity

    async def set_cart_quantity(self, user_id: int, product_id: int, quantity: int) -> None:
        async with self._lock:
            key = (user_id, product_id)
            if key not in self._cart:
                return
            if quantity <= 0:
                del self._cart[key]
            else:
                self._cart[key] = quantity

    async def remove_from_cart(self, user_id: int, product_id: int) -> None:
        async with self._lock:
            self._cart.pop((user_id, product_id), None)

    async def get_cart(self, user_id: int) -> List[CartItem]:
        items = []
        for (uid, pid), quantity in sorted(self._cart.items()):
            if uid != user_id:
                continue
            product = self._products.get(pid)
            if product is None:
                continue
            items.append(CartItem(
                product_id=pid,
                title=product.title,
                price=product.price,
                quantity=quantity,
                image=product.image,
            ))
        return items

    # --- Orders ---

    def _insert_order_line(self, staged: Dict[int, List[OrderLine]], order_id: int, item: CartItem) -> None:
        staged.setdefault(order_id, []).append(OrderLine(
            product_id=item.product_id,
            title=item.title,
            quantity=item.quantity,
            price=item.price,
        ))

    async def place_order(
        self,
        user_id: int,
        contact: ContactDetails,
        snapshot: List[CartItem],
        total: Decimal,
    ) -> Order:
        async with self._lock:
            orders = dict(self._orders)
            order_lines = dict(self._order_lines)
            cart = dict(self._cart)

            created_at = _now()
            order = Order(
                id=next(self._order_ids),
                user_id=user_id,
                total=total,
                status=OrderStatus.PENDING,
                created_at=created_at,
                updated_at=created_at,
                **contact.model_dump(),
            )
            orders[order.id] = order
            for item in snapshot:
                self._insert_order_line(order_lines, order.id, item)

            for item in snapshot:
                key = (user_id, item.product_id)
                remaining = cart.get(key, 0) - item.quantity
                if remaining > 0:
                    cart[key] = remaining
                else:
                    cart.pop(key, None)

            self._orders, self._order_lines, self._cart = orders, order_lines, cart
            return self._hydrate(order)

    def _hydrate(self, order: Order) -> Order:
        user = self._users.get(order.user_id)
        return order.model_copy(update={
            "items": list(self._order_lines.get(order.id, [])),
            "username": user.username if user else None,
        })

    async def get_order(self, order_id: int) -> Optional[Order]:
        order = self._orders.get(order_id)
        return self._hydrate(order) if order else None

    async def list_orders(self, user_id: Optional[int] = None) -> List[Order]:
        orders = [o for o in self._orders.values() if user_id is None or o.user_id == user_id]
        orders.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        return [self._hydrate(o) for o in orders]

    async def list_pending_orders(self, created_before: datetime) -> List[Order]:
        orders = [
            o for o in self._orders.values()
            if o.status == OrderStatus.PENDING and o.created_at < created_before
        ]
        orders.sort(key=lambda o: (o.created_at, o.id))
        return [self._hydrate(o) for o in orders]

    async def transition_order_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        allowed_from: Iterable[OrderStatus],
    ) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status not in set(allowed_from):
                return None
            order = order.model_copy(update={"status": new_status, "updated_at": _now()})
            self._orders[order_id] = order
            return self._hydrate(order)


# Process-wide store (set during app startup)
_store: Optional[Store] = None


def get_store() -> Store:
    """Return the configured store, falling back to an in-memory one."""
    global _store
    if _store is None:
        logger.info("No store configured, using in-memory store")
        _store = MemoryStore()
    return _store


def set_store(store: Optional[Store]) -> None:
    global _store
    _store = store
