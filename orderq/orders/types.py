"""
Module: types
Purpose: Shared domain types for the order/return pipeline.
Dependencies: pydantic (EmailMessage only)

Stable import boundary: these types are used across the classifier,
extractors, parsers, merge engine and service. Keeping them in a leaf module
prevents circular imports between the pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Event / status taxonomy
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Closed set of email classifications.

    Every type except OTHER doubles as an entity status. Extends str so the
    values serialize as raw strings in rows and history JSON.
    """

    ORDERED = "Ordered"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURN_REQUESTED = "ReturnRequested"
    RETURN_DROPOFF_CONFIRMED = "ReturnDropoffConfirmed"
    REFUND_ISSUED = "RefundIssued"
    OTHER = "Other"


# Cancelled sits outside the lifecycle; rank 0 keeps it below every stage.
STATUS_RANK: dict[str, int] = {
    EventType.CANCELLED.value: 0,
    EventType.ORDERED.value: 1,
    EventType.SHIPPED.value: 2,
    EventType.DELIVERED.value: 3,
    EventType.RETURN_REQUESTED.value: 4,
    EventType.RETURN_DROPOFF_CONFIRMED.value: 5,
    EventType.REFUND_ISSUED.value: 6,
}
UNKNOWN_RANK = -1

ITEM_LIFECYCLE_STATUSES: frozenset[str] = frozenset(
    {
        EventType.ORDERED.value,
        EventType.SHIPPED.value,
        EventType.DELIVERED.value,
        EventType.RETURN_REQUESTED.value,
        EventType.RETURN_DROPOFF_CONFIRMED.value,
        EventType.REFUND_ISSUED.value,
    }
)

RETURN_STATUSES: frozenset[str] = frozenset(
    {
        EventType.RETURN_REQUESTED.value,
        EventType.RETURN_DROPOFF_CONFIRMED.value,
        EventType.REFUND_ISSUED.value,
    }
)


def status_rank(status: str | None) -> int:
    return STATUS_RANK.get(status or "", UNKNOWN_RANK)


# ---------------------------------------------------------------------------
# Inbound message (from the message source)
# ---------------------------------------------------------------------------


class EmailMessage(BaseModel):
    """One candidate notification email as handed over by the message source.

    Accepts both snake_case names and the source's camelCase keys
    (`plainBody`, `htmlBody`, `threadId`, `from`, `to`).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    thread_id: str = Field(default="", alias="threadId")
    subject: str = ""
    plain_body: str = Field(default="", alias="plainBody")
    html_body: str = Field(default="", alias="htmlBody")
    date: datetime
    from_address: str = Field(default="", alias="from")
    to_address: str = Field(default="", alias="to")

    @field_validator("id")
    @classmethod
    def _id_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("message id cannot be empty")
        return value.strip()

    @field_validator("subject", "plain_body", "html_body", "from_address", "to_address", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("date")
    @classmethod
    def _aware_date(cls, value: datetime) -> datetime:
        # Naive timestamps from the source are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@dataclass
class ItemLine:
    """One line item as listed in an email."""

    title: str
    qty: int | None = None
    unit_price: float | None = None
    product_id: str = ""
    image_url: str = ""
    currency: str = ""

    @property
    def line_total(self) -> float | None:
        if self.unit_price is None or not self.qty:
            return None
        return round(self.unit_price * self.qty, 2)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title, "qty": self.qty}
        if self.unit_price is not None:
            data["unit_price"] = self.unit_price
        if self.product_id:
            data["product_id"] = self.product_id
        if self.image_url:
            data["image_url"] = self.image_url
        return data


# ---------------------------------------------------------------------------
# Parsed events (tagged by event_type)
# ---------------------------------------------------------------------------


@dataclass
class OrderEvent:
    """Fields every parsed event carries.

    Subclasses are tagged by `event_type` and list the extra scalars that
    belong on the order row in `order_level_fields`; the remaining extras go
    to item and return rows only.
    """

    event_type: ClassVar[EventType]
    order_level_fields: ClassVar[tuple[str, ...]] = ()

    order_id: str
    event_time: str
    log_time: str
    gmail_message_id: str
    thread_id: str = ""
    buyer_email: str = ""
    seller: str = ""
    purchase_channel: str = ""
    currency: str = ""
    items: list[ItemLine] = field(default_factory=list)

    @property
    def status(self) -> str:
        return self.event_type.value

    def scalar_fields(self) -> dict[str, Any]:
        """All scalar fields plus status; `items` excluded."""
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "items"}
        data["status"] = self.status
        return data

    def order_fields(self) -> dict[str, Any]:
        base = {
            "order_id",
            "event_time",
            "log_time",
            "gmail_message_id",
            "thread_id",
            "buyer_email",
            "seller",
            "purchase_channel",
            "currency",
            "status",
        }
        wanted = base | set(self.order_level_fields)
        return {k: v for k, v in self.scalar_fields().items() if k in wanted}


@dataclass
class OrderedEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.ORDERED
    order_level_fields: ClassVar[tuple[str, ...]] = ("order_total", "manage_link", "arriving_date")

    order_total: float | None = None
    manage_link: str = ""
    arriving_date: str = ""


@dataclass
class ShippedEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.SHIPPED
    order_level_fields: ClassVar[tuple[str, ...]] = ("arriving_date", "tracking_link")

    arriving_date: str = ""
    tracking_link: str = ""


@dataclass
class DeliveredEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.DELIVERED
    order_level_fields: ClassVar[tuple[str, ...]] = ("delivered_date",)

    delivered_date: str = ""


@dataclass
class CancelledEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.CANCELLED
    order_level_fields: ClassVar[tuple[str, ...]] = ("cancel_reason",)

    cancel_reason: str = ""


@dataclass
class ReturnRequestedEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.RETURN_REQUESTED

    refund_subtotal: float | None = None
    shipping_amount: float | None = None
    total_estimated_refund: float | None = None
    card_last4: str = ""
    dropoff_by: str = ""
    dropoff_location: str = ""
    qr_link: str = ""
    invoice_link: str = ""


@dataclass
class ReturnDropoffConfirmedEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.RETURN_DROPOFF_CONFIRMED

    dropoff_location: str = ""
    dropoff_date: str = ""


@dataclass
class RefundIssuedEvent(OrderEvent):
    event_type: ClassVar[EventType] = EventType.REFUND_ISSUED
    order_level_fields: ClassVar[tuple[str, ...]] = ("refund_total",)

    refund_subtotal: float | None = None
    shipping_amount: float | None = None
    refund_total: float | None = None
    card_last4: str = ""
    invoice_link: str = ""


EVENT_CLASSES: dict[EventType, type[OrderEvent]] = {
    cls.event_type: cls
    for cls in (
        OrderedEvent,
        ShippedEvent,
        DeliveredEvent,
        CancelledEvent,
        ReturnRequestedEvent,
        ReturnDropoffConfirmedEvent,
        RefundIssuedEvent,
    )
}

ITEM_BEARING_TYPES: frozenset[EventType] = frozenset(
    {
        EventType.ORDERED,
        EventType.RETURN_REQUESTED,
        EventType.RETURN_DROPOFF_CONFIRMED,
        EventType.REFUND_ISSUED,
    }
)
