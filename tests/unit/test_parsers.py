"""Tests for the per-type event parsers"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from orderq.orders.parsers import (
    MerchantDirectory,
    OrderIdMissingError,
    parse_event,
    recover_order_id,
)
from orderq.orders.types import (
    DeliveredEvent,
    EventType,
    OrderedEvent,
    RefundIssuedEvent,
    ReturnRequestedEvent,
    ShippedEvent,
)

ORDER_ID = "123-4567890-1234567"
UTC_TZ = ZoneInfo("UTC")
NOW = datetime(2025, 8, 25, 0, 0, tzinfo=UTC)


def test_ordered_scenario(make_message, ordered_body):
    message = make_message("Ordered: Widget", ordered_body)

    event = parse_event(EventType.ORDERED, message, UTC_TZ, now=NOW)

    assert isinstance(event, OrderedEvent)
    assert event.order_id == ORDER_ID
    assert event.status == "Ordered"
    assert event.order_total == 56.96
    assert [(i.title, i.qty, i.product_id) for i in event.items] == [("Gadget", 2, "B000000001")]
    assert event.event_time == "2025-08-14T10:00:00+00:00"
    assert event.log_time == "2025-08-25T00:00:00+00:00"
    assert event.gmail_message_id == "msg-1"
    assert event.arriving_date == "2025-08-18"
    assert event.currency == "USD"
    assert event.items[0].currency == "USD"
    assert event.manage_link.startswith("https://www.amazon.com/your-orders/order-details")


def test_common_fields(make_message, ordered_body):
    event = parse_event(EventType.ORDERED, make_message("Ordered: Widget", ordered_body), UTC_TZ, now=NOW)

    assert event.buyer_email == "jane@example.com"
    assert event.seller == "Amazon"
    assert event.purchase_channel == "amazon.com"


def test_sold_by_line_overrides_merchant(make_message, ordered_body):
    body = ordered_body + "\nSold by: Acme Goods LLC\n"
    event = parse_event(EventType.ORDERED, make_message("Ordered: Widget", body), UTC_TZ, now=NOW)

    assert event.seller == "Acme Goods LLC"


def test_unknown_sender_uses_domain_as_channel(make_message, ordered_body):
    message = make_message("Ordered: Widget", ordered_body, sender="orders@shop.example.org")
    event = parse_event(EventType.ORDERED, message, UTC_TZ, now=NOW)

    assert event.seller == ""
    assert event.purchase_channel == "example.org"


def test_starred_items_fallback(make_message):
    body = f"Order #{ORDER_ID}\n* Blue Mug\nQuantity: 2\n$8.00\n* Red Mug\nOrder Total: $20.00\n"
    event = parse_event(EventType.ORDERED, make_message("Ordered: Mugs", body), UTC_TZ, now=NOW)

    assert [(i.title, i.qty) for i in event.items] == [("Blue Mug", 2), ("Red Mug", 1)]
    assert event.order_total == 20.0


def test_shipped(make_message, shipped_body):
    event = parse_event(EventType.SHIPPED, make_message("Shipped: Widget", shipped_body), UTC_TZ, now=NOW)

    assert isinstance(event, ShippedEvent)
    assert event.arriving_date == "2025-08-20"
    assert event.tracking_link == f"https://www.amazon.com/progress-tracker/package?orderId={ORDER_ID}"
    assert event.items == []


def test_delivered_date(make_message, delivered_body):
    event = parse_event(EventType.DELIVERED, make_message("Delivered: Widget", delivered_body), UTC_TZ, now=NOW)

    assert isinstance(event, DeliveredEvent)
    assert event.delivered_date == "2025-08-22"


def test_delivered_date_falls_back_to_email_date(make_message):
    message = make_message("Delivered: Widget", f"Order #{ORDER_ID}\nYour package arrived.")
    event = parse_event(EventType.DELIVERED, message, UTC_TZ, now=NOW)

    assert event.delivered_date == "2025-08-14"


def test_return_requested(make_message, return_requested_body):
    message = make_message("Your return request for Gadget", return_requested_body)
    event = parse_event(EventType.RETURN_REQUESTED, message, UTC_TZ, now=NOW)

    assert isinstance(event, ReturnRequestedEvent)
    assert [(i.title, i.qty, i.product_id) for i in event.items] == [("Gadget", 1, "B000000001")]
    assert event.refund_subtotal == 12.99
    assert event.shipping_amount == 0.0
    assert event.total_estimated_refund == 12.99
    assert event.card_last4 == "1234"
    assert event.dropoff_by == "2025-09-01"
    assert event.dropoff_location == "UPS Store, 12 Main St"
    assert event.qr_link == "https://www.amazon.com/returns/qr/abc123"


def test_refund_issued(make_message, refund_body):
    event = parse_event(EventType.REFUND_ISSUED, make_message("Your refund for Gadget", refund_body), UTC_TZ, now=NOW)

    assert isinstance(event, RefundIssuedEvent)
    assert event.refund_total == 12.99
    assert event.refund_subtotal == 12.99
    assert event.items[0].product_id == "B000000001"
    assert event.items[0].title == "Gadget - Black"
    assert event.order_fields()["refund_total"] == 12.99
    assert "refund_subtotal" not in event.order_fields()


def test_html_body_used_when_plain_is_boilerplate(make_message):
    html = (
        "<html><body>"
        f"<p>Order #{ORDER_ID}</p>"
        '<p><a href="https://www.amazon.com/gp/product/B000000001">Gadget</a></p>'
        "<p>Quantity: 2</p>"
        "<p>Order Total: $56.96</p>"
        "</body></html>"
    )
    message = make_message("Ordered: Gadget", "View this email in your browser", html=html)
    event = parse_event(EventType.ORDERED, message, UTC_TZ, now=NOW)

    assert event.order_id == ORDER_ID
    assert [(i.title, i.qty, i.product_id) for i in event.items] == [("Gadget", 2, "B000000001")]
    assert event.order_total == 56.96


class TestTimestamps:
    NEW_YORK = ZoneInfo("America/New_York")

    def test_event_time_utc_log_time_local(self, make_message, ordered_body):
        message = make_message("Ordered: Widget", ordered_body, date=datetime(2025, 8, 14, 23, 30, tzinfo=UTC))
        event = parse_event(EventType.ORDERED, message, self.NEW_YORK, now=NOW)

        assert event.event_time == "2025-08-14T23:30:00+00:00"
        assert event.log_time == "2025-08-24T20:00:00-04:00"

    def test_event_times_sort_across_dst_fall_back(self, make_message, shipped_body):
        # 01:30 EDT, then 01:10 EST forty minutes later
        before = make_message("Shipped: Widget", shipped_body, date=datetime(2025, 11, 2, 5, 30, tzinfo=UTC))
        after = make_message("Shipped: Widget", shipped_body, date=datetime(2025, 11, 2, 6, 10, tzinfo=UTC))

        first = parse_event(EventType.SHIPPED, before, self.NEW_YORK, now=NOW)
        second = parse_event(EventType.SHIPPED, after, self.NEW_YORK, now=NOW)

        assert second.event_time > first.event_time

    def test_delivered_fallback_uses_local_date(self, make_message):
        message = make_message(
            "Delivered: Widget",
            f"Order #{ORDER_ID}\nYour package arrived.",
            date=datetime(2025, 8, 15, 2, 0, tzinfo=UTC),
        )
        event = parse_event(EventType.DELIVERED, message, self.NEW_YORK, now=NOW)

        assert event.delivered_date == "2025-08-14"
        assert event.event_time == "2025-08-15T02:00:00+00:00"


class TestIdentityFailure:
    def test_missing_order_id_raises(self, make_message):
        message = make_message("Ordered: Widget", "[Gadget]\nQuantity: 1\n", message_id="msg-x")

        with pytest.raises(OrderIdMissingError) as exc_info:
            parse_event(EventType.ORDERED, message, UTC_TZ, now=NOW)

        assert exc_info.value.event_type == EventType.ORDERED
        assert exc_info.value.message_id == "msg-x"

    def test_hint_used_when_body_has_no_id(self, make_message):
        message = make_message("Shipped: Widget", "Your package is on the way.")
        event = parse_event(EventType.SHIPPED, message, UTC_TZ, now=NOW, order_id_hint=ORDER_ID)

        assert event.order_id == ORDER_ID

    def test_recover_from_subject(self, make_message):
        message = make_message(f"Shipped: order {ORDER_ID}", "Your package is on the way.")
        assert recover_order_id(message) == ORDER_ID

    def test_recover_from_raw_html(self, make_message):
        html = f'<img src="https://www.amazon.com/t.gif?orderID={ORDER_ID}">'
        message = make_message("Delivered: Widget", "Your package arrived.", html=html)
        assert recover_order_id(message) == ORDER_ID

    def test_other_is_not_parseable(self, make_message):
        with pytest.raises(ValueError):
            parse_event(EventType.OTHER, make_message("Hello", "Hi"), UTC_TZ)


def test_merchant_directory_missing_file(tmp_path):
    directory = MerchantDirectory(tmp_path / "missing.yaml")
    assert directory.lookup("orders@amazon.com") == ("", "amazon.com")


def test_merchant_directory_custom_rules(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("merchants:\n  example.com:\n    seller: Example\n    channel: web\n")

    assert MerchantDirectory(path).lookup("Shop <orders@mail.example.com>") == ("Example", "web")


def test_html_only_table_layout_keeps_items(make_message):
    html = (
        "<html><body><table>"
        f"<tr><td>Order <b>#{ORDER_ID}</b></td></tr>"
        '<tr><td><a href="https://www.amazon.com/gp/product/B000000001">Gadget</a></td></tr>'
        "<tr><td>Quantity: <b>2</b></td></tr>"
        "<tr><td>Order Total: <strong>$56.96</strong></td></tr>"
        "</table></body></html>"
    )
    message = make_message("Ordered: Gadget", "", html=html)
    event = parse_event(EventType.ORDERED, message, UTC_TZ, now=NOW)

    assert [(i.title, i.qty, i.product_id) for i in event.items] == [("Gadget", 2, "B000000001")]
    assert event.order_total == 56.96
