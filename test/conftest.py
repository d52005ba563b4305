"""
Shared fixtures: an in-memory stand-in for the Postgres/Redis layer so routes run without services.
The workflow code underneath is the real one.
"""
from datetime import datetime, timezone

import pytest

from purchase_tracker import db, storage
from purchase_tracker.config import settings
from purchase_tracker.routes import orders as orders_routes
from purchase_tracker.status import Permissions, Status
from purchase_tracker.workflow import LineItem, NotFoundError, Order

PRIMARY = "boss@example.com"
REVIEWER = "reviewer@example.com"
BUYER = "buyer@example.com"
REQUESTER = "requester@example.com"


def make_order(*statuses: Status, order_id: str = "0001", **kwargs) -> Order:
    items = [
        LineItem(id=f"item{i}", name=f"Product {i}", quantity=i, status=s)
        for i, s in enumerate(statuses, 1)
    ]
    defaults = {
        "requester_name": "Ana Souza",
        "requester_email": REQUESTER,
        "department": "Kitchen",
        "destination_department": "Kitchen",
        "whatsapp": "+5579991234567",
    }
    defaults.update(kwargs)
    return Order(id=order_id, line_items=items, **defaults)


class FakeStore:
    def __init__(self) -> None:
        self.orders: dict[str, Order] = {}
        self.admins: dict[str, db.AdminUser] = {}
        self.seq = 0
        self.idempotency: dict[str, str] = {}
        self.deleted_blobs: list[str] = []

    def put(self, order: Order) -> Order:
        self.orders[order.id] = order.model_copy(deep=True)
        return order


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    s = FakeStore()

    async def get_pool():
        return None

    async def create_order(pool, order):
        s.seq += 1
        now = datetime.now(timezone.utc)
        order = order.model_copy(update={"id": str(s.seq).zfill(4), "created_at": now, "updated_at": now})
        return s.put(order)

    async def get_order(pool, order_id):
        if order_id not in s.orders:
            raise NotFoundError("order", order_id)
        return s.orders[order_id].model_copy(deep=True)

    async def fetch_orders(pool, requester_email=None):
        found = [o.model_copy(deep=True) for o in s.orders.values()]
        if requester_email is not None:
            found = [o for o in found if o.requester_email == requester_email]
        return sorted(found, key=lambda o: o.id, reverse=True)

    async def mutate_order(pool, order_id, fn):
        if order_id not in s.orders:
            raise NotFoundError("order", order_id)
        order = s.orders[order_id].model_copy(deep=True)
        result = fn(order)
        s.orders[order_id] = order
        return result

    async def delete_order(pool, order_id):
        if order_id not in s.orders:
            raise NotFoundError("order", order_id)
        return s.orders.pop(order_id)

    async def get_admin_user(pool, email):
        return s.admins.get(email)

    async def list_admin_users(pool):
        return list(s.admins.values())

    async def upsert_admin_user(pool, user):
        s.admins[user.email] = user
        return user

    async def delete_admin_user(pool, email):
        if s.admins.pop(email, None) is None:
            raise NotFoundError("admin user", email)

    for name, fn in {
        "get_pool": get_pool,
        "create_order": create_order,
        "get_order": get_order,
        "fetch_orders": fetch_orders,
        "mutate_order": mutate_order,
        "delete_order": delete_order,
        "get_admin_user": get_admin_user,
        "list_admin_users": list_admin_users,
        "upsert_admin_user": upsert_admin_user,
        "delete_admin_user": delete_admin_user,
    }.items():
        monkeypatch.setattr(db, name, fn)

    async def check_idempotency(key, value="1", ttl_seconds=None):
        if key in s.idempotency:
            return s.idempotency[key]
        s.idempotency[key] = value
        return None

    async def remember_result(key, value, ttl_seconds=None):
        s.idempotency[key] = value

    async def release_idempotency(key):
        s.idempotency.pop(key, None)

    monkeypatch.setattr(orders_routes, "check_idempotency", check_idempotency)
    monkeypatch.setattr(orders_routes, "remember_result", remember_result)
    monkeypatch.setattr(orders_routes, "release_idempotency", release_idempotency)

    async def delete_attachment(path):
        s.deleted_blobs.append(path)

    monkeypatch.setattr(storage, "delete_attachment", delete_attachment)

    monkeypatch.setattr(settings, "primary_admin_emails", [PRIMARY])
    monkeypatch.setattr(settings, "admin_whatsapp", "+5579991820085")

    s.admins[REVIEWER] = db.AdminUser(email=REVIEWER, name="Rita", allowed_statuses=[Status.IN_REVIEW])
    s.admins[BUYER] = db.AdminUser(
        email=BUYER,
        name="Bruno",
        allowed_statuses=[Status.IN_PROGRESS, Status.DELIVERED, Status.CANCELED],
        can_manage_users=True,
    )
    return s


@pytest.fixture
def primary() -> Permissions:
    return Permissions.primary(email=PRIMARY, name="Boss")


@pytest.fixture
def reviewer() -> Permissions:
    return Permissions.restricted([Status.IN_REVIEW], email=REVIEWER, name="Rita")


@pytest.fixture
def nobody() -> Permissions:
    return Permissions(email=REQUESTER)
