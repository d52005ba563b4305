"""
Requester/admin message text and click-to-chat links.
Nothing is sent from the server: the caller gets a link the browser can open.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime
from urllib.parse import quote

from purchase_tracker.config import settings
from purchase_tracker.status import STATUS_EMOJIS, STATUS_LABELS, Status
from purchase_tracker.workflow import LineItem, Order, StatusChange

_NON_DIGITS = re.compile(r"\D")

_ITEM_WORDING = {
    Status.PENDING: "This item is waiting for review.",
    Status.IN_REVIEW: "This item is being reviewed by our team.",
    Status.IN_PROGRESS: "This item was approved and is in progress!",
    Status.CANCELED: "Unfortunately this item was canceled.",
    Status.DELIVERED: "The item is available for pickup at the warehouse.",
}

_ORDER_WORDING = {
    Status.PENDING: "Your order is waiting for review.",
    Status.IN_REVIEW: "Your order is being reviewed by our team.",
    Status.IN_PROGRESS: "Your order was approved and is in progress!",
    Status.CANCELED: "Unfortunately your order was canceled.",
    Status.DELIVERED: "Your order was delivered successfully!",
}


@dataclass(frozen=True)
class Notification:
    phone: str
    text: str
    link: str


def validate_phone_number(phone: str) -> bool:
    return len(_NON_DIGITS.sub("", phone or "")) >= 10


def format_phone_number(phone: str) -> str:
    """Normalize Brazilian numbers to +55...; anything else is returned as typed."""
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 11 and not digits.startswith("55"):
        return "+55" + digits
    if len(digits) == 13 and digits.startswith("55"):
        return "+" + digits
    return phone


def format_date_br(value: date | datetime | str | None) -> str:
    """DD/MM/YYYY. Strings that are not ISO dates come back unchanged."""
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y")


def deep_link(phone: str, text: str) -> str:
    digits = _NON_DIGITS.sub("", phone or "")
    return f"{settings.whatsapp_base_url.rstrip('/')}/{digits}?text={quote(text, safe='')}"


def build_notification(phone: str, text: str) -> Notification:
    return Notification(phone=phone, text=text, link=deep_link(phone, text))


def _status_line(status: Status) -> str:
    return f"{STATUS_EMOJIS[status]} {STATUS_LABELS[status]}"


def _item_lines(index: int, item: LineItem) -> str:
    text = f"{index}. *{item.name}*\n   Quantity: {item.quantity:g} {item.unit or 'UN'}\n"
    if item.spec:
        text += f"   Specs: {item.spec}\n"
    if item.reason:
        text += f"   Reason: {item.reason}\n"
    return text


def compose_order_created(order: Order) -> str:
    """Message for the purchasing desk about a new submission."""
    text = "❗ *NEW ORDER RECEIVED!*\n\n"
    text += f"*Order ID:* {order.id}\n\n"
    text += f"*Requester:* {order.requester_name}\n"
    text += f"*Department:* {order.department}\n"
    text += f"*WhatsApp:* {order.whatsapp}\n"
    text += f"*Destination:* {order.destination_department}\n\n"
    n = len(order.line_items)
    if n:
        text += f"*{n} item{'s' if n > 1 else ''} requested:*\n\n"
        for i, item in enumerate(order.line_items, 1):
            text += _item_lines(i, item) + "\n"
    text += "⚡ Open the admin dashboard to manage this order."
    return text


def _status_details(change: StatusChange) -> str:
    text = ""
    if change.new_status == Status.IN_PROGRESS and change.extra.expected_delivery:
        text += f"\n*Expected delivery:* {format_date_br(change.extra.expected_delivery)}"
    if change.new_status == Status.CANCELED and change.extra.cancel_reason:
        text += f"\n*Reason:* {change.extra.cancel_reason}"
    return text


def compose_item_status(change: StatusChange, item: LineItem) -> str:
    order, status = change.order, change.new_status
    text = f"❗ *Item Update*\n\nHello {order.requester_name}!\n\n*Order ID:* {order.id}\n\n"
    text += f"*Item:* {item.name}\n"
    text += f"*Status:* {_status_line(status)}\n\n{_ITEM_WORDING[status]}"
    text += _status_details(change)

    others = [i for i in order.line_items if i.id != item.id]
    if others:
        text += "\n\n⚠ *Other items in this order:*\n"
        for other in others:
            text += f"• {other.name}: {_status_line(other.status)}\n"
    return text


def compose_order_status(change: StatusChange) -> str:
    order, status = change.order, change.new_status
    text = f"❗ *Order Update*\n\nHello {order.requester_name}!\n\n*Order ID:* {order.id}\n\n"
    n = len(order.line_items)
    if n:
        text += f"*Order with {n} item{'s' if n > 1 else ''}*\n"
    text += f"*Overall status:* {_status_line(status)}\n\n{_ORDER_WORDING[status]}"
    text += _status_details(change)

    if n:
        text += "\n\n📦 *Items:*\n"
        for i, item in enumerate(order.line_items, 1):
            text += f"\n{i}. *{item.name}*"
            text += f"\n   • Quantity: {item.quantity:g} {item.unit or 'UN'}"
            text += f"\n   • Status: {_status_line(item.status)}"
        text += f"\n\n⚠ *Note:* all {n} items of this order were set to the overall status."
    return text


def compose_order_canceled(order: Order) -> str:
    text = f"✗ *ORDER CANCELED*\n\n*Order ID:* {order.id}\n\n"
    text += f"Hello {order.requester_name}!\n\n"
    text += "Unfortunately your order was canceled completely.\n"
    if order.cancel_reason:
        text += f"\n*Reason:* {order.cancel_reason}\n"
    return text


def notify_status_change(change: StatusChange) -> Notification:
    """Build the requester notification for any status change."""
    if change.kind == "cancel":
        text = compose_order_canceled(change.order)
    elif change.kind == "order":
        text = compose_order_status(change)
    elif change.item is not None:
        text = compose_item_status(change, change.item)
    else:
        raise ValueError(f"item status change without an item on order {change.order.id}")
    return build_notification(change.order.whatsapp, text)


def notify_order_created(order: Order) -> Notification | None:
    """Purchasing desk notification; None when no desk number is configured."""
    if not settings.admin_whatsapp:
        return None
    return build_notification(settings.admin_whatsapp, compose_order_created(order))
