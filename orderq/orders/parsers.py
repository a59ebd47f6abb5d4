"""
Event Parsers - one per classified EventType.

Each parser composes the field extractors into a typed event record. All of
them share the same preamble (body selection, order id, timestamps, buyer,
seller, currency) and then add their type-specific fields.

Entry point: parse_event(event_type, message, tz)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

import yaml

from orderq.config import EXTRACT_MIN_BODY_CHARS, MERCHANT_RULES_PATH
from orderq.observability.logging import get_logger
from orderq.orders.field_extractor import (
    extract_bracketed_items,
    extract_card_last4,
    extract_date,
    extract_first_amount,
    extract_invoice_link,
    extract_line_value,
    extract_manage_link,
    extract_order_id,
    extract_qr_link,
    extract_starred_items,
    extract_tracking_link,
    infer_currency,
)
from orderq.orders.patterns import (
    ARRIVING_LABEL,
    CANCEL_REASON_LABEL,
    DELIVERED_LABEL,
    DROPOFF_BY_LABEL,
    DROPOFF_DATE_LABEL,
    DROPOFF_LOCATION_LABEL,
    ORDER_TOTAL_LABELS,
    REFUND_SUBTOTAL_LABELS,
    REFUND_TOTAL_LABELS,
    SHIPPING_AMOUNT_LABELS,
    SOLD_BY_LABEL,
    TOTAL_ESTIMATED_REFUND_LABELS,
)
from orderq.orders.types import (
    CancelledEvent,
    DeliveredEvent,
    EmailMessage,
    EventType,
    ItemLine,
    OrderedEvent,
    OrderEvent,
    RefundIssuedEvent,
    ReturnDropoffConfirmedEvent,
    ReturnRequestedEvent,
    ShippedEvent,
)
from orderq.utils.email import extract_domain_only, extract_email_address
from orderq.utils.html import html_to_text, is_body_boilerplate

logger = get_logger(__name__)

# Seller names longer than this are template prose, not a name
_MAX_SELLER_CHARS = 80

# Types whose order id the caller may recover from subject/raw HTML
RECOVERABLE_TYPES: frozenset[EventType] = frozenset(
    {EventType.SHIPPED, EventType.DELIVERED, EventType.CANCELLED}
)


class OrderIdMissingError(ValueError):
    """Raised when a parser cannot find the order id of an email."""

    def __init__(self, event_type: EventType, message_id: str = "") -> None:
        self.event_type = event_type
        self.message_id = message_id
        super().__init__(f"order id not found in {event_type.value} email")


# ---------------------------------------------------------------------------
# Merchant directory (merchant_rules.yaml)
# ---------------------------------------------------------------------------


class MerchantDirectory:
    """Sender domain -> seller / purchase channel lookup."""

    def __init__(self, merchant_rules_path: Path | None = None):
        self.merchant_rules = self._load_merchant_rules(merchant_rules_path or MERCHANT_RULES_PATH)
        self.merchants: dict[str, dict[str, str]] = self.merchant_rules.get("merchants") or {}

    def _load_merchant_rules(self, path: Path) -> dict:
        """Load merchant rules from YAML."""
        if not path.exists():
            logger.warning("Merchant rules not found at %s", path)
            return {"merchants": {}}

        with open(path) as f:
            return yaml.safe_load(f) or {"merchants": {}}

    def lookup(self, from_address: str) -> tuple[str, str]:
        """Return (seller, channel); channel falls back to the sender domain."""
        domain = extract_domain_only(from_address)
        rule = self.merchants.get(domain) or {}
        return rule.get("seller", ""), rule.get("channel", domain)


@lru_cache(maxsize=1)
def get_merchant_directory() -> MerchantDirectory:
    return MerchantDirectory()


# ---------------------------------------------------------------------------
# Shared preamble
# ---------------------------------------------------------------------------


def message_text(message: EmailMessage) -> str:
    """Plain body, or the HTML body as text when the plain part is boilerplate."""
    if message.html_body and is_body_boilerplate(message.plain_body, EXTRACT_MIN_BODY_CHARS):
        return html_to_text(message.html_body)
    return message.plain_body


def _resolve_order_id(message: EmailMessage, text: str, order_id_hint: str) -> str:
    order_id = extract_order_id(text)
    if not order_id and message.html_body:
        order_id = extract_order_id(html_to_text(message.html_body))
    return order_id or order_id_hint.strip()


def _common_fields(
    event_type: EventType,
    message: EmailMessage,
    text: str,
    tz: ZoneInfo,
    now: datetime | None,
    order_id_hint: str,
) -> dict[str, Any]:
    order_id = _resolve_order_id(message, text, order_id_hint)
    if not order_id:
        raise OrderIdMissingError(event_type, message.id)

    seller, channel = get_merchant_directory().lookup(message.from_address)
    sold_by = extract_line_value(text, SOLD_BY_LABEL)
    if sold_by and len(sold_by) <= _MAX_SELLER_CHARS:
        seller = sold_by

    log_time = (now or datetime.now(tz)).astimezone(tz)
    return {
        "order_id": order_id,
        # UTC so `at` strings sort in real time order across DST changes
        "event_time": message.date.astimezone(UTC).isoformat(timespec="seconds"),
        "log_time": log_time.isoformat(timespec="seconds"),
        "gmail_message_id": message.id,
        "thread_id": message.thread_id,
        "buyer_email": extract_email_address(message.to_address),
        "seller": seller,
        "purchase_channel": channel,
        "currency": infer_currency(text),
    }


def _with_currency(items: list[ItemLine], currency: str) -> list[ItemLine]:
    for item in items:
        if not item.currency:
            item.currency = currency
    return items


# ---------------------------------------------------------------------------
# Per-type parsers
# ---------------------------------------------------------------------------


def _parse_ordered(common: dict[str, Any], text: str, sent: date) -> OrderedEvent:
    items = extract_bracketed_items(text) or extract_starred_items(text)
    return OrderedEvent(
        **common,
        items=_with_currency(items, common["currency"]),
        order_total=extract_first_amount(text, ORDER_TOTAL_LABELS),
        manage_link=extract_manage_link(text),
        arriving_date=extract_date(text, ARRIVING_LABEL, sent.year),
    )


def _parse_shipped(common: dict[str, Any], text: str, sent: date) -> ShippedEvent:
    return ShippedEvent(
        **common,
        arriving_date=extract_date(text, ARRIVING_LABEL, sent.year),
        tracking_link=extract_tracking_link(text),
    )


def _parse_delivered(common: dict[str, Any], text: str, sent: date) -> DeliveredEvent:
    delivered_date = extract_date(text, DELIVERED_LABEL, sent.year) or sent.isoformat()
    return DeliveredEvent(**common, delivered_date=delivered_date)


def _parse_cancelled(common: dict[str, Any], text: str, sent: date) -> CancelledEvent:
    return CancelledEvent(**common, cancel_reason=extract_line_value(text, CANCEL_REASON_LABEL))


def _parse_return_requested(common: dict[str, Any], text: str, sent: date) -> ReturnRequestedEvent:
    return ReturnRequestedEvent(
        **common,
        items=_with_currency(extract_bracketed_items(text), common["currency"]),
        refund_subtotal=extract_first_amount(text, REFUND_SUBTOTAL_LABELS),
        shipping_amount=extract_first_amount(text, SHIPPING_AMOUNT_LABELS),
        total_estimated_refund=extract_first_amount(text, TOTAL_ESTIMATED_REFUND_LABELS),
        card_last4=extract_card_last4(text),
        dropoff_by=extract_date(text, DROPOFF_BY_LABEL, sent.year),
        dropoff_location=extract_line_value(text, DROPOFF_LOCATION_LABEL),
        qr_link=extract_qr_link(text),
        invoice_link=extract_invoice_link(text),
    )


def _parse_return_dropoff(common: dict[str, Any], text: str, sent: date) -> ReturnDropoffConfirmedEvent:
    return ReturnDropoffConfirmedEvent(
        **common,
        items=_with_currency(extract_bracketed_items(text), common["currency"]),
        dropoff_location=extract_line_value(text, DROPOFF_LOCATION_LABEL),
        dropoff_date=extract_date(text, DROPOFF_DATE_LABEL, sent.year) or sent.isoformat(),
    )


def _parse_refund_issued(common: dict[str, Any], text: str, sent: date) -> RefundIssuedEvent:
    return RefundIssuedEvent(
        **common,
        items=_with_currency(extract_bracketed_items(text), common["currency"]),
        refund_subtotal=extract_first_amount(text, REFUND_SUBTOTAL_LABELS),
        shipping_amount=extract_first_amount(text, SHIPPING_AMOUNT_LABELS),
        refund_total=extract_first_amount(text, REFUND_TOTAL_LABELS),
        card_last4=extract_card_last4(text),
        invoice_link=extract_invoice_link(text),
    )


_Builder = Callable[[dict[str, Any], str, date], OrderEvent]

PARSERS: dict[EventType, _Builder] = {
    EventType.ORDERED: _parse_ordered,
    EventType.SHIPPED: _parse_shipped,
    EventType.DELIVERED: _parse_delivered,
    EventType.CANCELLED: _parse_cancelled,
    EventType.RETURN_REQUESTED: _parse_return_requested,
    EventType.RETURN_DROPOFF_CONFIRMED: _parse_return_dropoff,
    EventType.REFUND_ISSUED: _parse_refund_issued,
}


def parse_event(
    event_type: EventType,
    message: EmailMessage,
    tz: ZoneInfo,
    *,
    now: datetime | None = None,
    order_id_hint: str = "",
) -> OrderEvent:
    """
    Parse a classified message into its typed event.

    Args:
        event_type: Result of classify_subject(); OTHER is not parseable
        message: The email
        tz: Run timezone for log_time, the date-token year and date fallbacks
        now: Clock override for log_time
        order_id_hint: Order id recovered by the caller, used only when the
            body has none

    Raises:
        OrderIdMissingError: No order id in body, HTML or hint
        ValueError: event_type has no parser (OTHER)
    """
    builder = PARSERS.get(event_type)
    if builder is None:
        raise ValueError(f"no parser for event type {event_type.value}")

    text = message_text(message)
    common = _common_fields(event_type, message, text, tz, now, order_id_hint)
    sent = message.date.astimezone(tz).date()
    event = builder(common, text, sent)

    logger.debug(
        "Parsed %s event for order %s (%d items)",
        event_type.value,
        event.order_id,
        len(event.items),
    )
    return event


def recover_order_id(message: EmailMessage) -> str:
    """
    Second-chance order id lookup for RECOVERABLE_TYPES.

    Looks at the subject, then the raw HTML (order links carry
    `orderID=ddd-ddddddd-ddddddd` even when the rendered text does not).
    """
    return extract_order_id(message.subject) or extract_order_id(message.html_body)
