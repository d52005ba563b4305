"""
Async Postgres: orders (one JSONB document per order, line items inside) + admin_users (permissions).
Every order change runs in a single transaction: lock the order row, run the workflow check, write back.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

import asyncpg
from pydantic import BaseModel, Field

from purchase_tracker.config import settings
from purchase_tracker.status import Permissions, Status
from purchase_tracker.workflow import (
    Comment,
    NotFoundError,
    Observation,
    Order,
    StatusChange,
    StatusExtra,
    add_comment,
    apply_item_status,
    apply_order_status,
    assign_responsible,
    cancel_whole_order,
    clear_observation,
    delete_comment,
    derive_status,
    set_observation,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool: asyncpg.Pool | None = None


class AdminUser(BaseModel):
    email: str
    name: str = ""
    allowed_statuses: list[Status] = Field(default_factory=list)
    can_manage_users: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("CREATE SEQUENCE IF NOT EXISTS order_number_seq;")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_id VARCHAR(32) PRIMARY KEY,
                requester_email VARCHAR(255),
                document JSONB NOT NULL,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_requester_email
            ON orders(requester_email);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS admin_users (
                email VARCHAR(255) PRIMARY KEY,
                name VARCHAR(255) NOT NULL DEFAULT '',
                allowed_statuses TEXT[] NOT NULL DEFAULT '{}',
                can_manage_users BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)


def _load(row: asyncpg.Record) -> Order:
    return Order.model_validate_json(row["document"])


async def create_order(pool: asyncpg.Pool, order: Order) -> Order:
    """Assign the next sequential id (0001, 0002, ...) and store the order with all its items."""
    async with pool.acquire() as conn:
        async with conn.transaction():
            seq = await conn.fetchval("SELECT nextval('order_number_seq');")
            now = datetime.now(timezone.utc)
            order = order.model_copy(update={
                "id": str(seq).zfill(settings.order_id_width),
                "status": Status.PENDING,
                "created_at": now,
                "updated_at": now,
            })
            await conn.execute(
                """
                INSERT INTO orders (order_id, requester_email, document, created_at, updated_at)
                VALUES ($1, $2, $3::jsonb, $4, $4);
                """,
                order.id,
                order.requester_email,
                order.model_dump_json(),
                now,
            )
    logger.info("Created order_id=%s with %d item(s)", order.id, len(order.line_items))
    return order


async def get_order(pool: asyncpg.Pool, order_id: str) -> Order:
    row = await pool.fetchrow("SELECT document FROM orders WHERE order_id = $1;", order_id)
    if row is None:
        raise NotFoundError("order", order_id)
    return _load(row)


async def fetch_orders(pool: asyncpg.Pool, requester_email: str | None = None) -> list[Order]:
    """Newest first."""
    if requester_email is None:
        rows = await pool.fetch("SELECT document FROM orders ORDER BY created_at DESC;")
    else:
        rows = await pool.fetch(
            "SELECT document FROM orders WHERE requester_email = $1 ORDER BY created_at DESC;",
            requester_email,
        )
    return [_load(r) for r in rows]


async def list_orders(
    pool: asyncpg.Pool,
    status: Status | None = None,
    requester_email: str | None = None,
    id_contains: str | None = None,
) -> list[Order]:
    """Status filter applies to the derived order status, so it runs here and not in SQL."""
    orders = await fetch_orders(pool, requester_email)
    if id_contains:
        orders = [o for o in orders if id_contains.strip() in o.id]
    if status is None:
        return orders
    return [o for o in orders if derive_status(o) == status]


async def mutate_order(pool: asyncpg.Pool, order_id: str, fn: Callable[[Order], T]) -> T:
    """
    Read-check-write under a row lock. `fn` mutates the order in place; if it raises,
    the transaction rolls back and nothing is written.
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            row = await conn.fetchrow(
                "SELECT document FROM orders WHERE order_id = $1 FOR UPDATE;",
                order_id,
            )
            if row is None:
                raise NotFoundError("order", order_id)
            order = _load(row)
            result = fn(order)
            await conn.execute(
                "UPDATE orders SET document = $1::jsonb, updated_at = NOW() WHERE order_id = $2;",
                order.model_dump_json(),
                order_id,
            )
    return result


async def update_item_status(
    pool: asyncpg.Pool,
    order_id: str,
    item_id: str,
    status: Status,
    extra: StatusExtra | None,
    actor: Permissions,
) -> StatusChange:
    change = await mutate_order(
        pool, order_id, lambda o: apply_item_status(o, item_id, status, extra, actor).unwrap(),
    )
    logger.info("Order %s item %s -> %s by %s", order_id, item_id, status, actor.email)
    return change


async def update_order_status(
    pool: asyncpg.Pool,
    order_id: str,
    status: Status,
    extra: StatusExtra | None,
    actor: Permissions,
) -> StatusChange:
    change = await mutate_order(
        pool, order_id, lambda o: apply_order_status(o, status, extra, actor).unwrap(),
    )
    logger.info("Order %s (all items) -> %s by %s", order_id, status, actor.email)
    return change


async def cancel_order(pool: asyncpg.Pool, order_id: str, reason: str, actor: Permissions) -> StatusChange:
    change = await mutate_order(
        pool, order_id, lambda o: cancel_whole_order(o, reason, actor).unwrap(),
    )
    logger.info("Order %s canceled completely by %s", order_id, actor.email)
    return change


async def delete_order(pool: asyncpg.Pool, order_id: str) -> Order:
    """Permanent removal, no status semantics. Returns the deleted order."""
    row = await pool.fetchrow("DELETE FROM orders WHERE order_id = $1 RETURNING document;", order_id)
    if row is None:
        raise NotFoundError("order", order_id)
    logger.info("Deleted order_id=%s", order_id)
    return _load(row)


async def set_responsible(pool: asyncpg.Pool, order_id: str, responsible: str | None, actor: Permissions) -> Order:
    def fn(order: Order) -> Order:
        assign_responsible(order, responsible, actor)
        return order
    return await mutate_order(pool, order_id, fn)


async def save_observation(pool: asyncpg.Pool, order_id: str, text: str, actor: Permissions) -> Observation:
    return await mutate_order(pool, order_id, lambda o: set_observation(o, text, actor))


async def remove_observation(pool: asyncpg.Pool, order_id: str) -> None:
    await mutate_order(pool, order_id, clear_observation)


async def create_comment(pool: asyncpg.Pool, order_id: str, text: str, actor: Permissions) -> Comment:
    return await mutate_order(pool, order_id, lambda o: add_comment(o, text, actor))


async def remove_comment(pool: asyncpg.Pool, order_id: str, comment_id: str, actor: Permissions) -> Comment:
    return await mutate_order(pool, order_id, lambda o: delete_comment(o, comment_id, actor))


def _admin_from_row(row: asyncpg.Record) -> AdminUser:
    return AdminUser(
        email=row["email"],
        name=row["name"],
        allowed_statuses=list(row["allowed_statuses"] or []),
        can_manage_users=row["can_manage_users"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def get_admin_user(pool: asyncpg.Pool, email: str) -> AdminUser | None:
    row = await pool.fetchrow("SELECT * FROM admin_users WHERE email = $1;", email)
    return _admin_from_row(row) if row is not None else None


async def list_admin_users(pool: asyncpg.Pool) -> list[AdminUser]:
    rows = await pool.fetch("SELECT * FROM admin_users ORDER BY created_at DESC;")
    return [_admin_from_row(r) for r in rows]


async def upsert_admin_user(pool: asyncpg.Pool, user: AdminUser) -> AdminUser:
    row = await pool.fetchrow(
        """
        INSERT INTO admin_users (email, name, allowed_statuses, can_manage_users, updated_at)
        VALUES ($1, $2, $3, $4, NOW())
        ON CONFLICT (email) DO UPDATE
        SET name = EXCLUDED.name,
            allowed_statuses = EXCLUDED.allowed_statuses,
            can_manage_users = EXCLUDED.can_manage_users,
            updated_at = NOW()
        RETURNING *;
        """,
        user.email,
        user.name,
        [s.value for s in user.allowed_statuses],
        user.can_manage_users,
    )
    logger.info("Saved admin user %s (statuses=%s)", user.email, ",".join(s.value for s in user.allowed_statuses))
    return _admin_from_row(row)


async def delete_admin_user(pool: asyncpg.Pool, email: str) -> None:
    result = await pool.execute("DELETE FROM admin_users WHERE email = $1;", email)
    if result.endswith(" 0"):
        raise NotFoundError("admin user", email)
    logger.info("Deleted admin user %s", email)
