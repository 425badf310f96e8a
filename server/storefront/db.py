"""
Relational store backed by Postgres.
Uses asyncpg for async Postgres access.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from contextlib import asynccontextmanager
import logging

import asyncpg  # pyright: ignore[reportMissingImports]

from .errors import DuplicateIdentityError, NotFoundError
from .models import (
    CartItem, ContactDetails, Order, OrderLine, OrderStatus, Product,
    ProductCreate, ProductUpdate, UserRecord,
)
from .storage import Store


logger = logging.getLogger(__name__)

# Connection pool (initialized on startup)
_pool: Any = None


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    is_admin BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS products (
    id SERIAL PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    price NUMERIC(12, 2) NOT NULL CHECK (price >= 0),
    image TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS cart (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
    quantity INTEGER NOT NULL CHECK (quantity >= 1),
    PRIMARY KEY (user_id, product_id)
);

CREATE TABLE IF NOT EXISTS orders (
    id SERIAL PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id),
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT NOT NULL,
    address TEXT NOT NULL,
    landmark TEXT,
    total NUMERIC(12, 2) NOT NULL CHECK (total >= 0),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'paid', 'failed', 'cancelled')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id);
CREATE INDEX IF NOT EXISTS idx_orders_status_created ON orders(status, created_at);

CREATE TABLE IF NOT EXISTS order_items (
    id SERIAL PRIMARY KEY,
    order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
    product_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity >= 1),
    price NUMERIC(12, 2) NOT NULL CHECK (price >= 0)
);

CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id);

-- Order lines keep their product id after the product is deleted
ALTER TABLE order_items DROP CONSTRAINT IF EXISTS order_items_product_id_fkey;
"""


async def init_pool(dsn: str) -> None:
    """Initialize the database connection pool and apply the schema. Call during app startup."""
    global _pool
    _pool = await asyncpg.create_pool(
        dsn,
        min_size=2,
        max_size=10,
    )
    async with _pool.acquire() as conn:
        await conn.execute(SCHEMA)


async def close_pool() -> None:
    """Close the database connection pool. Call during app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


@asynccontextmanager
async def get_connection():
    """Get a database connection from the pool."""
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    async with _pool.acquire() as conn:
        yield conn


# --- Row mapping ---


def _user_from_row(row) -> UserRecord:
    return UserRecord(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        password_hash=row["password_hash"],
        is_admin=row["is_admin"],
        created_at=row["created_at"],
    )


def _product_from_row(row) -> Product:
    return Product(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        price=row["price"],
        image=row["image"],
        created_at=row["created_at"],
    )


def _order_from_row(row, items: List[OrderLine]) -> Order:
    return Order(
        id=row["id"],
        user_id=row["user_id"],
        username=row.get("username"),
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        address=row["address"],
        landmark=row["landmark"],
        total=row["total"],
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        items=items,
    )


ORDER_COLUMNS = """
    o.id, o.user_id, u.username, o.name, o.email, o.phone, o.address,
    o.landmark, o.total, o.status, o.created_at, o.updated_at
"""


async def _fetch_orders(conn, where: str, *params) -> List[Order]:
    rows = await conn.fetch(
        f"""
        SELECT {ORDER_COLUMNS}
        FROM orders o
        LEFT JOIN users u ON o.user_id = u.id
        {where}
        """,
        *params,
    )
    if not rows:
        return []

    order_ids = [row["id"] for row in rows]
    item_rows = await conn.fetch(
        """
        SELECT order_id, product_id, title, quantity, price
        FROM order_items
        WHERE order_id = ANY($1::int[])
        ORDER BY id
        """,
        order_ids,
    )
    items: Dict[int, List[OrderLine]] = {}
    for item in item_rows:
        items.setdefault(item["order_id"], []).append(OrderLine(
            product_id=item["product_id"],
            title=item["title"],
            quantity=item["quantity"],
            price=item["price"],
        ))
    return [_order_from_row(dict(row), items.get(row["id"], [])) for row in rows]


class PostgresStore(Store):
    """Store implementation over the module-level asyncpg pool."""

    # --- Users ---

    async def create_user(self, username: str, email: str, password_hash: str, is_admin: bool = False) -> UserRecord:
        async with get_connection() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO users (username, email, password_hash, is_admin, created_at)
                    VALUES ($1, $2, $3, $4, NOW())
                    RETURNING id, username, email, password_hash, is_admin, created_at
                    """,
                    username,
                    email.lower(),
                    password_hash,
                    is_admin,
                )
            except asyncpg.UniqueViolationError as e:
                raise DuplicateIdentityError() from e
            return _user_from_row(row)

    async def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, username, email, password_hash, is_admin, created_at
                FROM users
                WHERE username = $1
                """,
                username,
            )
            return _user_from_row(row) if row else None

    # --- Catalog ---

    async def list_products(self) -> List[Product]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, title, description, price, image, created_at FROM products ORDER BY id ASC"
            )
            return [_product_from_row(row) for row in rows]

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, title, description, price, image, created_at FROM products WHERE id = $1",
                product_id,
            )
            return _product_from_row(row) if row else None

    async def create_product(self, data: ProductCreate) -> Product:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO products (title, description, price, image, created_at)
                VALUES ($1, $2, $3, $4, NOW())
                RETURNING id, title, description, price, image, created_at
                """,
                data.title,
                data.description,
                data.price,
                data.image,
            )
            return _product_from_row(row)

    async def update_product(self, product_id: int, data: ProductUpdate) -> Optional[Product]:
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            return await self.get_product(product_id)

        assignments = []
        params: List[Any] = [product_id]
        # Column names come from the ProductUpdate model, never from the request
        for column, value in fields.items():
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        async with get_connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE products
                SET {", ".join(assignments)}
                WHERE id = $1
                RETURNING id, title, description, price, image, created_at
                """,
                *params,
            )
            return _product_from_row(row) if row else None

    async def delete_product(self, product_id: int) -> bool:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "DELETE FROM products WHERE id = $1 RETURNING id",
                product_id,
            )
            return row is not None

    # --- Cart ---

    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> None:
        async with get_connection() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO cart (user_id, product_id, quantity)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (user_id, product_id)
                    DO UPDATE SET quantity = cart.quantity + EXCLUDED.quantity
                    """,
                    user_id,
                    product_id,
                    quantity,
                )
            except asyncpg.ForeignKeyViolationError as e:
                raise NotFoundError("Product not found.") from e

    async def set_cart_quantity(self, user_id: int, product_id: int, quantity: int) -> None:
        async with get_connection() as conn:
            if quantity <= 0:
                await conn.execute(
                    "DELETE FROM cart WHERE user_id = $1 AND product_id = $2",
                    user_id,
                    product_id,
                )
            else:
                await conn.execute(
                    "UPDATE cart SET quantity = $3 WHERE user_id = $1 AND product_id = $2",
                    user_id,
                    product_id,
                    quantity,
                )

    async def remove_from_cart(self, user_id: int, product_id: int) -> None:
        async with get_connection() as conn:
            await conn.execute(
                "DELETE FROM cart WHERE user_id = $1 AND product_id = $2",
                user_id,
                product_id,
            )

    async def get_cart(self, user_id: int) -> List[CartItem]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT c.product_id, c.quantity, p.title, p.price, p.image
                FROM cart c
                JOIN products p ON c.product_id = p.id
                WHERE c.user_id = $1
                ORDER BY c.product_id
                """,
                user_id,
            )
            return [
                CartItem(
                    product_id=row["product_id"],
                    title=row["title"],
                    price=row["price"],
                    quantity=row["quantity"],
                    image=row["image"],
                )
                for row in rows
            ]

    # --- Orders ---

    async def place_order(
        self,
        user_id: int,
        contact: ContactDetails,
        snapshot: List[CartItem],
        total: Decimal,
    ) -> Order:
        async with get_connection() as conn:
            async with conn.transaction():
                order_id = await conn.fetchval(
                    """
                    INSERT INTO orders (
                        user_id, name, email, phone, address, landmark,
                        total, status, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, 'pending', NOW(), NOW())
                    RETURNING id
                    """,
                    user_id,
                    contact.name,
                    contact.email,
                    contact.phone,
                    contact.address,
                    contact.landmark,
                    total,
                )
                await conn.executemany(
                    """
                    INSERT INTO order_items (order_id, product_id, title, quantity, price)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    [(order_id, item.product_id, item.title, item.quantity, item.price) for item in snapshot],
                )
                # Consume only what was snapshotted; quantity added since stays in the cart
                consumed = [(user_id, item.product_id, item.quantity) for item in snapshot]
                await conn.executemany(
                    "DELETE FROM cart WHERE user_id = $1 AND product_id = $2 AND quantity <= $3",
                    consumed,
                )
                await conn.executemany(
                    """
                    UPDATE cart SET quantity = quantity - $3
                    WHERE user_id = $1 AND product_id = $2 AND quantity > $3
                    """,
                    consumed,
                )
                orders = await _fetch_orders(conn, "WHERE o.id = $1", order_id)
            return orders[0]

    async def get_order(self, order_id: int) -> Optional[Order]:
        async with get_connection() as conn:
            orders = await _fetch_orders(conn, "WHERE o.id = $1", order_id)
            return orders[0] if orders else None

    async def list_orders(self, user_id: Optional[int] = None) -> List[Order]:
        async with get_connection() as conn:
            if user_id is None:
                return await _fetch_orders(conn, "ORDER BY o.created_at DESC, o.id DESC")
            return await _fetch_orders(
                conn,
                "WHERE o.user_id = $1 ORDER BY o.created_at DESC, o.id DESC",
                user_id,
            )

    async def list_pending_orders(self, created_before: datetime) -> List[Order]:
        async with get_connection() as conn:
            return await _fetch_orders(
                conn,
                "WHERE o.status = 'pending' AND o.created_at < $1 ORDER BY o.created_at ASC, o.id ASC",
                created_before,
            )

    async def transition_order_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        allowed_from: Iterable[OrderStatus],
    ) -> Optional[Order]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE orders
                SET status = $2, updated_at = NOW()
                WHERE id = $1
                  AND status = ANY($3::text[])
                RETURNING id
                """,
                order_id,
                new_status.value,
                [status.value for status in allowed_from],
            )
            if row is None:
                return None
            orders = await _fetch_orders(conn, "WHERE o.id = $1", order_id)
            return orders[0]

    async def close(self) -> None:
        await close_pool()
