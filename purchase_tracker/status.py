"""
Purchase request status workflow. The transition graph enforces business rules;
per-user allow-lists decide who may set which status.
"""
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class Status(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    IN_PROGRESS = "in_progress"
    CANCELED = "canceled"
    DELIVERED = "delivered"

    def __str__(self) -> str:
        return self.value


class WorkflowError(Exception):
    """Base for precondition violations. Never transient, never retried."""


class InvalidStateError(WorkflowError, ValueError):
    """Raised when a status value is outside the workflow's five states."""
    def __init__(self, value: object = None):
        self.value = value
        super().__init__(f"unknown status: {value!r}")


# Current status -> statuses reachable in one administrative action
TRANSITION_GRAPH: MappingProxyType[Status, frozenset[Status]] = MappingProxyType({
    Status.PENDING: frozenset({Status.IN_REVIEW, Status.CANCELED}),
    Status.IN_REVIEW: frozenset({Status.IN_PROGRESS, Status.PENDING, Status.CANCELED}),
    Status.IN_PROGRESS: frozenset({Status.DELIVERED, Status.CANCELED}),
    Status.CANCELED: frozenset(),  # terminal
    Status.DELIVERED: frozenset(),  # terminal
})

TERMINAL_STATUSES = frozenset(s for s, nxt in TRANSITION_GRAPH.items() if not nxt)

STATUS_LABELS: dict[Status, str] = {
    Status.PENDING: "Pending",
    Status.IN_REVIEW: "In Review",
    Status.IN_PROGRESS: "In Progress",
    Status.CANCELED: "Canceled/Denied",
    Status.DELIVERED: "Delivered",
}

STATUS_EMOJIS: dict[Status, str] = {
    Status.PENDING: "⏳",
    Status.IN_REVIEW: "✓",
    Status.IN_PROGRESS: "⚡",
    Status.CANCELED: "✗",
    Status.DELIVERED: "✓",
}


def parse_status(value: object) -> Status:
    """Coerce a wire value to Status; never guesses."""
    if isinstance(value, Status):
        return value
    try:
        return Status(value)
    except ValueError:
        raise InvalidStateError(value) from None


@dataclass(frozen=True)
class Permissions:
    """What an acting user may do. Resolved by the caller, never looked up here."""
    email: str = ""
    name: str = ""
    is_primary_admin: bool = False
    allowed_statuses: frozenset[Status] = field(default_factory=frozenset)
    can_manage_users: bool = False
    is_admin: bool = False  # has an admin account at all, even with an empty allow-list

    @classmethod
    def primary(cls, email: str = "", name: str = "") -> "Permissions":
        return cls(
            email=email,
            name=name,
            is_primary_admin=True,
            allowed_statuses=frozenset(Status),
            can_manage_users=True,
            is_admin=True,
        )

    @classmethod
    def restricted(
        cls,
        allowed: Iterable[object] = (),
        email: str = "",
        name: str = "",
        can_manage_users: bool = False,
    ) -> "Permissions":
        return cls(
            email=email,
            name=name,
            allowed_statuses=frozenset(parse_status(s) for s in allowed),
            can_manage_users=can_manage_users,
            is_admin=True,
        )


def can_set_status(user: Permissions, status: Status) -> bool:
    """Graph-agnostic: could this user ever set `status` on anything."""
    return user.is_primary_admin or status in user.allowed_statuses


def can_transition(user: Permissions, from_status: Status, to_status: Status) -> bool:
    """True if the graph allows from -> to and the user may set `to_status`."""
    from_status, to_status = parse_status(from_status), parse_status(to_status)
    if to_status not in TRANSITION_GRAPH[from_status]:
        return False
    return can_set_status(user, to_status)


def allowed_next_statuses(user: Permissions, from_status: Status) -> frozenset[Status]:
    from_status = parse_status(from_status)
    return frozenset(s for s in TRANSITION_GRAPH[from_status] if can_set_status(user, s))


def derive_order_status(item_statuses: Iterable[Status], stored: Status | None = None) -> Status:
    """
    Reduce line item statuses to one order-level status.
    With no items the stored order status is authoritative (pending if unset).
    Depends only on the multiset of statuses, never on their order.
    """
    statuses = [parse_status(s) for s in item_statuses]
    if not statuses:
        return Status.PENDING if stored is None else parse_status(stored)

    distinct = set(statuses)
    if len(distinct) == 1:
        return statuses[0]

    active = distinct - {Status.CANCELED}
    if not active:
        return Status.CANCELED
    # A delivered item next to unfinished ones means the order is still being fulfilled
    if Status.DELIVERED in active or Status.IN_PROGRESS in active:
        return Status.IN_PROGRESS
    if Status.IN_REVIEW in active:
        return Status.IN_REVIEW
    return Status.PENDING
