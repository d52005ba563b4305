"""
Order aggregate and the operations that change it.
Every operation checks first and mutates only on success, so a failed call leaves
the order untouched. Callers run these inside a transactional read-modify-write.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from purchase_tracker.status import (
    InvalidStateError,
    Permissions,
    Status,
    WorkflowError,
    can_transition,
    derive_order_status,
    parse_status,
)

UNKNOWN_ACTOR_NAME = "unidentified user"
UNKNOWN_ACTOR_EMAIL = "unknown@unidentified"


class NotFoundError(WorkflowError):
    """Referenced order, line item or comment does not exist."""
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key!r} not found")


class ForbiddenError(WorkflowError):
    """Proposed change fails the legality check."""
    def __init__(self, reason: str, current_status: Status | None = None, target_status: Status | None = None):
        self.reason = reason
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(reason)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Attachment(BaseModel):
    """Uploaded file metadata. Passed through untouched by the workflow."""
    file_name: str
    file_type: str
    file_size: int
    download_url: str
    storage_path: str | None = None
    uploaded_at: datetime | None = None


class LineItem(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    quantity: float = 1
    unit: str = "UN"
    spec: str = ""
    reason: str = ""
    status: Status = Status.PENDING
    attachments: list[Attachment] = Field(default_factory=list)
    expected_delivery: date | None = None  # meaningful in in_progress
    cancel_reason: str | None = None  # meaningful in canceled
    canceled_at: datetime | None = None
    last_modified_by: str | None = None
    last_modified_by_email: str | None = None
    last_modified_at: datetime | None = None


class Comment(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    text: str
    author: str
    author_email: str
    created_at: datetime = Field(default_factory=_now)


class Observation(BaseModel):
    text: str
    author: str
    created_at: datetime = Field(default_factory=_now)


class Order(BaseModel):
    id: str
    requester_name: str
    requester_email: str | None = None
    department: str = ""
    destination_department: str = ""
    whatsapp: str = ""
    line_items: list[LineItem] = Field(default_factory=list)
    # Authoritative only for legacy orders without line items
    status: Status = Status.PENDING
    responsible: str | None = None
    observation: Observation | None = None
    comments: list[Comment] = Field(default_factory=list)
    cancel_reason: str | None = None
    canceled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_modified_by: str | None = None
    last_modified_by_email: str | None = None
    last_modified_at: datetime | None = None

    def find_item(self, item_id: str) -> LineItem | None:
        for item in self.line_items:
            if item.id == item_id:
                return item
        return None

    @property
    def effective_status(self) -> Status:
        return derive_status(self)


class StatusExtra(BaseModel):
    """Payload merged onto items with a status change. Only fields that are set are applied."""
    expected_delivery: date | None = None
    cancel_reason: str | None = None


@dataclass(frozen=True)
class StatusChange:
    """Everything needed to tell the requester about a change."""
    order: Order
    new_status: Status
    extra: StatusExtra
    item: LineItem | None = None
    kind: Literal["item", "order", "cancel"] = "item"


@dataclass(frozen=True)
class TransitionResult:
    change: StatusChange | None = None
    error: WorkflowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> StatusChange:
        if self.error is not None:
            raise self.error
        if self.change is None:
            raise ValueError("transition result carries neither a change nor an error")
        return self.change


def derive_status(order: Order) -> Status:
    return derive_order_status((i.status for i in order.line_items), order.status)


def actor_name(actor: Permissions) -> str:
    return actor.name or actor.email or UNKNOWN_ACTOR_NAME


def _stamp(target: LineItem | Order, actor: Permissions, at: datetime) -> None:
    target.last_modified_by = actor_name(actor)
    target.last_modified_by_email = actor.email or UNKNOWN_ACTOR_EMAIL
    target.last_modified_at = at


def _merge_extra(item: LineItem, extra: StatusExtra) -> None:
    for key, value in extra.model_dump(exclude_none=True).items():
        setattr(item, key, value)


def apply_item_status(
    order: Order,
    item_id: str,
    new_status: Status | str,
    extra: StatusExtra | None,
    actor: Permissions,
) -> TransitionResult:
    """Move one line item along the graph."""
    try:
        target = parse_status(new_status)
    except InvalidStateError as e:
        return TransitionResult(error=e)
    item = order.find_item(item_id)
    if item is None:
        return TransitionResult(error=NotFoundError("line item", item_id))
    if not can_transition(actor, item.status, target):
        return TransitionResult(error=ForbiddenError(
            f"cannot move item from {item.status} to {target}", item.status, target,
        ))

    extra = extra or StatusExtra()
    now = _now()
    item.status = target
    _merge_extra(item, extra)
    _stamp(item, actor, now)
    _stamp(order, actor, now)
    order.updated_at = now
    return TransitionResult(change=StatusChange(order=order, new_status=target, extra=extra, item=item, kind="item"))


def apply_order_status(
    order: Order,
    new_status: Status | str,
    extra: StatusExtra | None,
    actor: Permissions,
) -> TransitionResult:
    """
    Bulk override: checked once against the derived order status, then forced onto
    every item regardless of each item's own status. An already canceled item can
    therefore be moved to in_progress this way; kept for compatibility.
    """
    try:
        target = parse_status(new_status)
    except InvalidStateError as e:
        return TransitionResult(error=e)
    current = derive_status(order)
    if not can_transition(actor, current, target):
        return TransitionResult(error=ForbiddenError(
            f"cannot move order from {current} to {target}", current, target,
        ))

    extra = extra or StatusExtra()
    now = _now()
    for item in order.line_items:
        item.status = target
        _merge_extra(item, extra)
        _stamp(item, actor, now)
    order.status = target
    if extra.cancel_reason is not None:
        order.cancel_reason = extra.cancel_reason
    _stamp(order, actor, now)
    order.updated_at = now
    return TransitionResult(change=StatusChange(order=order, new_status=target, extra=extra, kind="order"))


def cancel_whole_order(order: Order, reason: str, actor: Permissions) -> TransitionResult:
    """
    Cancel every item whatever its status, bypassing the graph. Restricting this to
    primary admins is the caller's job.
    """
    now = _now()
    for item in order.line_items:
        item.status = Status.CANCELED
        item.cancel_reason = reason
        item.canceled_at = now
        _stamp(item, actor, now)
    order.status = Status.CANCELED
    order.cancel_reason = reason
    order.canceled_at = now
    _stamp(order, actor, now)
    order.updated_at = now
    return TransitionResult(change=StatusChange(
        order=order,
        new_status=Status.CANCELED,
        extra=StatusExtra(cancel_reason=reason),
        kind="cancel",
    ))


def assign_responsible(order: Order, responsible: str | None, actor: Permissions) -> None:
    now = _now()
    order.responsible = responsible or None
    _stamp(order, actor, now)
    order.updated_at = now


def set_observation(order: Order, text: str, actor: Permissions) -> Observation:
    order.observation = Observation(text=text, author=actor_name(actor))
    order.updated_at = order.observation.created_at
    return order.observation


def clear_observation(order: Order) -> None:
    order.observation = None
    order.updated_at = _now()


def add_comment(order: Order, text: str, actor: Permissions) -> Comment:
    comment = Comment(
        text=text,
        author=actor_name(actor),
        author_email=actor.email or UNKNOWN_ACTOR_EMAIL,
    )
    order.comments.append(comment)
    order.updated_at = comment.created_at
    return comment


def delete_comment(order: Order, comment_id: str, actor: Permissions) -> Comment:
    """Only the author or a primary admin may delete a comment."""
    for idx, comment in enumerate(order.comments):
        if comment.id == comment_id:
            break
    else:
        raise NotFoundError("comment", comment_id)
    if not (actor.is_primary_admin or (actor.email and comment.author_email == actor.email)):
        raise ForbiddenError("only the author or a primary admin may delete this comment")
    del order.comments[idx]
    order.updated_at = _now()
    return comment
