import logging
from datetime import date

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from purchase_tracker import db, storage
from purchase_tracker.auth import get_actor, get_optional_actor, require_admin, require_primary_admin
from purchase_tracker.metrics import (
    duplicate_submissions_total,
    orders_canceled_total,
    orders_deleted_total,
    orders_submitted_total,
    status_changes_total,
)
from purchase_tracker.notifications import (
    Notification,
    format_phone_number,
    notify_order_created,
    notify_status_change,
    validate_phone_number,
)
from purchase_tracker.redis_client import check_idempotency, release_idempotency, remember_result
from purchase_tracker.status import Permissions, Status, allowed_next_statuses
from purchase_tracker.workflow import Attachment, LineItem, Order, StatusExtra, derive_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

OTHER_DEPARTMENT = "Other"
_PENDING_MARKER = "pending"


class LineItemIn(BaseModel):
    name: str = Field(..., min_length=1, description="Product requested")
    quantity: float = Field(default=1, gt=0)
    unit: str = Field(default="UN", description="Unit of measure")
    spec: str = Field(default="", description="Specifications")
    reason: str = Field(default="", description="Why it is needed")
    attachments: list[Attachment] = Field(default_factory=list, description="Metadata from POST /attachments")


class SubmitOrderBody(BaseModel):
    requester_name: str = Field(..., min_length=1)
    department: str = Field(..., description="Requester's department")
    destination_department: str = Field(..., description="Department the purchase is for")
    destination_other: str | None = Field(default=None, description="Used when destination_department is 'Other'")
    whatsapp: str = Field(..., description="Requester's phone for status updates")
    line_items: list[LineItemIn] = Field(..., min_length=1)


class StatusChangeBody(BaseModel):
    status: Status
    expected_delivery: date | None = Field(default=None, description="Set with in_progress")
    cancel_reason: str | None = Field(default=None, description="Set with canceled")

    def extra(self) -> StatusExtra:
        return StatusExtra(expected_delivery=self.expected_delivery, cancel_reason=self.cancel_reason)


class CancelBody(BaseModel):
    reason: str = ""


class ResponsibleBody(BaseModel):
    responsible: str | None = None


class TextBody(BaseModel):
    text: str = Field(..., min_length=1)


def _notification_json(n: Notification | None) -> dict | None:
    if n is None:
        return None
    return {"phone": n.phone, "text": n.text, "link": n.link}


def order_view(order: Order, actor: Permissions | None) -> dict:
    """Order document plus derived status and, for the actor, what each status may move to."""
    body = order.model_dump(mode="json")
    body["effective_status"] = derive_status(order).value
    if actor is not None:
        body["allowed_next_statuses"] = sorted(s.value for s in allowed_next_statuses(actor, derive_status(order)))
        for item_json, item in zip(body["line_items"], order.line_items):
            item_json["allowed_next_statuses"] = sorted(s.value for s in allowed_next_statuses(actor, item.status))
    return body


@router.post("")
async def submit_order(
    body: SubmitOrderBody,
    idempotency_key: str | None = Header(default=None),
    actor: Permissions | None = Depends(get_optional_actor),
) -> JSONResponse:
    """
    Create an order with all its line items in one go. Sending the same Idempotency-Key
    twice -> 200 with the first order's id; new submission -> 201.
    """
    if not validate_phone_number(body.whatsapp):
        return JSONResponse(status_code=422, content={"status": "invalid", "detail": "invalid WhatsApp number"})

    key = f"idempotency:order:{idempotency_key}" if idempotency_key else None
    if key is not None:
        previous = await check_idempotency(key, _PENDING_MARKER)
        if previous is not None:
            duplicate_submissions_total.inc()
            order_id = None if previous == _PENDING_MARKER else previous
            return JSONResponse(status_code=200, content={"status": "already_submitted", "order_id": order_id})

    destination = body.destination_department
    if destination == OTHER_DEPARTMENT and body.destination_other:
        destination = body.destination_other

    draft = Order(
        id="",
        requester_name=body.requester_name,
        requester_email=actor.email if actor else None,
        department=body.department,
        destination_department=destination,
        whatsapp=format_phone_number(body.whatsapp),
        line_items=[LineItem(**item.model_dump()) for item in body.line_items],
    )
    try:
        pool = await db.get_pool()
        order = await db.create_order(pool, draft)
    except Exception:
        if key is not None:
            await release_idempotency(key)
        raise
    if key is not None:
        await remember_result(key, order.id)

    orders_submitted_total.inc()
    return JSONResponse(
        status_code=201,
        content={
            "status": "created",
            "order": order_view(order, actor),
            "notification": _notification_json(notify_order_created(order)),
        },
    )


@router.get("")
async def list_orders(
    status: Status | None = None,
    order_id: str | None = Query(None, alias="id", description="Partial order id match"),
    actor: Permissions = Depends(get_actor),
) -> JSONResponse:
    """Admins see every order; requesters only their own."""
    pool = await db.get_pool()
    requester = None if actor.is_admin else actor.email
    orders = await db.list_orders(pool, status=status, requester_email=requester, id_contains=order_id)
    return JSONResponse(status_code=200, content={"orders": [order_view(o, actor) for o in orders]})


@router.get("/{order_id}")
async def get_order(order_id: str, actor: Permissions = Depends(get_actor)) -> JSONResponse:
    pool = await db.get_pool()
    order = await db.get_order(pool, order_id)
    if not actor.is_admin and order.requester_email != actor.email:
        return JSONResponse(status_code=404, content={"status": "not_found", "detail": f"order {order_id!r} not found"})
    return JSONResponse(status_code=200, content=order_view(order, actor))


@router.post("/{order_id}/items/{item_id}/status")
async def change_item_status(
    order_id: str,
    item_id: str,
    body: StatusChangeBody,
    actor: Permissions = Depends(get_actor),
) -> JSONResponse:
    pool = await db.get_pool()
    change = await db.update_item_status(pool, order_id, item_id, body.status, body.extra(), actor)
    status_changes_total.labels(scope="item", status=change.new_status.value).inc()
    return JSONResponse(
        status_code=200,
        content={
            "status": "ok",
            "order": order_view(change.order, actor),
            "notification": _notification_json(notify_status_change(change)),
        },
    )


@router.post("/{order_id}/status")
async def change_order_status(
    order_id: str,
    body: StatusChangeBody,
    actor: Permissions = Depends(get_actor),
) -> JSONResponse:
    """Sets every line item to the new status; checked once against the order's derived status."""
    pool = await db.get_pool()
    change = await db.update_order_status(pool, order_id, body.status, body.extra(), actor)
    status_changes_total.labels(scope="order", status=change.new_status.value).inc()
    return JSONResponse(
        status_code=200,
        content={
            "status": "ok",
            "order": order_view(change.order, actor),
            "notification": _notification_json(notify_status_change(change)),
        },
    )


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelBody,
    actor: Permissions = Depends(require_primary_admin),
) -> JSONResponse:
    pool = await db.get_pool()
    change = await db.cancel_order(pool, order_id, body.reason, actor)
    orders_canceled_total.inc()
    return JSONResponse(
        status_code=200,
        content={
            "status": "canceled",
            "order": order_view(change.order, actor),
            "notification": _notification_json(notify_status_change(change)),
        },
    )


@router.delete("/{order_id}")
async def delete_order(order_id: str, actor: Permissions = Depends(require_primary_admin)) -> JSONResponse:
    pool = await db.get_pool()
    order = await db.delete_order(pool, order_id)
    orders_deleted_total.inc()
    for item in order.line_items:
        for attachment in item.attachments:
            if not attachment.storage_path:
                continue
            try:
                await storage.delete_attachment(attachment.storage_path)
            except Exception:
                logger.exception("Order %s deleted but attachment %s was not removed", order_id, attachment.storage_path)
    return JSONResponse(status_code=200, content={"status": "deleted", "order_id": order_id})


@router.put("/{order_id}/responsible")
async def set_responsible(
    order_id: str,
    body: ResponsibleBody,
    actor: Permissions = Depends(require_admin),
) -> JSONResponse:
    pool = await db.get_pool()
    order = await db.set_responsible(pool, order_id, body.responsible, actor)
    return JSONResponse(status_code=200, content={"status": "ok", "responsible": order.responsible})


@router.put("/{order_id}/observation")
async def put_observation(
    order_id: str,
    body: TextBody,
    actor: Permissions = Depends(require_admin),
) -> JSONResponse:
    pool = await db.get_pool()
    observation = await db.save_observation(pool, order_id, body.text, actor)
    return JSONResponse(status_code=200, content={"status": "ok", "observation": observation.model_dump(mode="json")})


@router.delete("/{order_id}/observation")
async def delete_observation(order_id: str, actor: Permissions = Depends(require_admin)) -> JSONResponse:
    pool = await db.get_pool()
    await db.remove_observation(pool, order_id)
    return JSONResponse(status_code=200, content={"status": "ok"})


@router.post("/{order_id}/comments")
async def post_comment(
    order_id: str,
    body: TextBody,
    actor: Permissions = Depends(require_admin),
) -> JSONResponse:
    pool = await db.get_pool()
    comment = await db.create_comment(pool, order_id, body.text, actor)
    return JSONResponse(status_code=201, content={"status": "ok", "comment": comment.model_dump(mode="json")})


@router.delete("/{order_id}/comments/{comment_id}")
async def delete_comment(
    order_id: str,
    comment_id: str,
    actor: Permissions = Depends(require_admin),
) -> JSONResponse:
    pool = await db.get_pool()
    await db.remove_comment(pool, order_id, comment_id, actor)
    return JSONResponse(status_code=200, content={"status": "ok"})
