"""
Row models for the order sync tables.

EmailLogEntry is the append-only audit record for every processed message.
The row builders turn a parsed event (plus one of its items) into the flat
field mappings the merge engine folds into ItemEvents / Returns / OrderItems.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from orderq.orders.identity import ITEM_KEY_COLUMN, key_for_item, order_key
from orderq.orders.types import EventType, ItemLine, OrderEvent


class ParseResult(str, Enum):
    """Outcome of processing one message."""

    SUCCESS = "Success"  # Parsed and merged
    PARTIAL = "Partial"  # Logged but nothing (or not everything) could be extracted
    FAILED = "Failed"  # Identity failure or error; retried next run


class EmailLogEntry(BaseModel):
    """One EmailLog row. Never merged, only appended."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    message_id: str = Field(..., description="Gmail message id")
    thread_id: str = ""
    email_date: str = Field(default="", description="Message timestamp in the run timezone")
    detected_type: EventType
    order_id: str = ""
    parse_result: ParseResult
    notes: str = ""
    logged_at: str = ""

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()


def processed_message_ids(rows: Iterable[Mapping[str, Any]]) -> set[str]:
    """
    Message ids a run must skip.

    Every logged message counts as done unless its last outcome was Failed;
    a later non-failed entry for the same id wins over an earlier failure.
    """
    latest: dict[str, str] = {}
    for row in rows:
        message_id = str(row.get("message_id") or "").strip()
        if message_id:
            latest[message_id] = str(row.get("parse_result") or "")
    return {mid for mid, result in latest.items() if result != ParseResult.FAILED.value}


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

# Event fields that describe the email, not an item or a return
_EVENT_META_FIELDS = ("status", "event_time", "log_time", "gmail_message_id", "currency")

# Return economics and logistics carried onto Returns rows
_RETURN_DETAIL_FIELDS = (
    "refund_subtotal",
    "shipping_amount",
    "total_estimated_refund",
    "refund_total",
    "card_last4",
    "dropoff_by",
    "dropoff_location",
    "dropoff_date",
    "qr_link",
    "invoice_link",
)


def _item_fields(item: ItemLine) -> dict[str, Any]:
    return {
        "product_id": item.product_id,
        "title": item.title,
        "qty": item.qty,
        "unit_price": item.unit_price,
        "line_total": item.line_total,
        "image_url": item.image_url,
    }


def lifecycle_fields(event: OrderEvent, key: str) -> dict[str, Any]:
    """Fields an item-less event contributes to an existing item or return row."""
    scalars = event.scalar_fields()
    row = {name: scalars.get(name) for name in _EVENT_META_FIELDS}
    row["order_id"] = order_key(event.order_id)
    row[ITEM_KEY_COLUMN] = key
    return row


def item_event_fields(event: OrderEvent, item: ItemLine) -> dict[str, Any]:
    """ItemEvents row fields for one item of an event."""
    row = lifecycle_fields(event, key_for_item(event.order_id, item))
    row.update(_item_fields(item))
    if item.currency:
        row["currency"] = item.currency
    return row


def return_fields(event: OrderEvent, key: str, item: ItemLine | None = None) -> dict[str, Any]:
    """Returns row fields; `item` is None for order-level and fan-out rows."""
    row = lifecycle_fields(event, key)
    scalars = event.scalar_fields()
    for name in _RETURN_DETAIL_FIELDS:
        if name in scalars:
            row[name] = scalars[name]
    if item is not None:
        row.update(_item_fields(item))
    return row


def order_item_rows(event: OrderEvent) -> list[dict[str, Any]]:
    """OrderItems detail rows: one per listed item, in email order."""
    oid = order_key(event.order_id)
    rows = []
    for position, item in enumerate(event.items, start=1):
        row = {"order_id": oid, ITEM_KEY_COLUMN: key_for_item(event.order_id, item), "position": position}
        row.update(_item_fields(item))
        row["currency"] = item.currency or event.currency
        row["gmail_message_id"] = event.gmail_message_id
        rows.append(row)
    return rows
