from datetime import date
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import make_order
from purchase_tracker.config import settings
from purchase_tracker.notifications import (
    deep_link,
    format_date_br,
    format_phone_number,
    notify_order_created,
    notify_status_change,
    validate_phone_number,
)
from purchase_tracker.status import Status
from purchase_tracker.workflow import (
    StatusChange,
    StatusExtra,
    apply_item_status,
    apply_order_status,
    cancel_whole_order,
)


@pytest.mark.parametrize("phone, ok", [
    ("(79) 99182-0085", True),
    ("79991820085", True),
    ("99182-0085", False),
    ("", False),
])
def test_validate_phone_number(phone, ok):
    assert validate_phone_number(phone) is ok


@pytest.mark.parametrize("phone, expected", [
    ("(79) 99182-0085", "+5579991820085"),
    ("5579991820085", "+5579991820085"),
    ("+44 20 7946 0958", "+44 20 7946 0958"),
])
def test_format_phone_number(phone, expected):
    assert format_phone_number(phone) == expected


def test_format_date_br():
    assert format_date_br(date(2026, 3, 9)) == "09/03/2026"
    assert format_date_br("2026-03-09") == "09/03/2026"
    assert format_date_br("next week") == "next week"
    assert format_date_br(None) == ""


def test_deep_link_encodes_text(monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_base_url", "https://wa.me/")
    link = deep_link("+55 (79) 99182-0085", "Hello *there*\nline two & more")
    parsed = urlparse(link)
    assert parsed.netloc == "wa.me"
    assert parsed.path == "/5579991820085"
    assert parse_qs(parsed.query)["text"] == ["Hello *there*\nline two & more"]


def test_item_notification_lists_other_items(primary):
    order = make_order(Status.IN_REVIEW, Status.PENDING)
    change = apply_item_status(
        order, "item1", Status.IN_PROGRESS, StatusExtra(expected_delivery=date(2026, 11, 3)), primary,
    ).unwrap()

    n = notify_status_change(change)

    assert n.phone == order.whatsapp
    assert "*Item:* Product 1" in n.text
    assert "In Progress" in n.text
    assert "03/11/2026" in n.text
    assert "• Product 2: ⏳ Pending" in n.text
    assert n.link.startswith(settings.whatsapp_base_url)


def test_order_notification_includes_reason(primary):
    order = make_order(Status.PENDING, Status.PENDING)
    change = apply_order_status(order, Status.CANCELED, StatusExtra(cancel_reason="duplicate request"), primary).unwrap()
    text = notify_status_change(change).text
    assert "*Order with 2 items*" in text
    assert "*Reason:* duplicate request" in text
    assert "all 2 items" in text


def test_cancel_notification(primary):
    order = make_order(Status.DELIVERED)
    text = notify_status_change(cancel_whole_order(order, "supplier closed", primary).unwrap()).text
    assert text.startswith("✗ *ORDER CANCELED*")
    assert "supplier closed" in text


def test_order_created_goes_to_purchasing_desk(monkeypatch):
    order = make_order(Status.PENDING, Status.PENDING)
    monkeypatch.setattr(settings, "admin_whatsapp", "")
    assert notify_order_created(order) is None

    monkeypatch.setattr(settings, "admin_whatsapp", "+5579991820085")
    n = notify_order_created(order)
    assert n.phone == "+5579991820085"
    assert "*Order ID:* 0001" in n.text
    assert "*2 items requested:*" in n.text
    assert "1. *Product 1*" in n.text


def test_item_change_without_item_is_rejected():
    order = make_order(Status.PENDING)
    change = StatusChange(order=order, new_status=Status.IN_REVIEW, extra=StatusExtra(), kind="item")
    with pytest.raises(ValueError):
        notify_status_change(change)
