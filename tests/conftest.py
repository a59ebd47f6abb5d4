"""
Pytest configuration for OrderQ tests

Provides message factories, sample notification bodies and an in-memory
store shared across unit and integration tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from orderq.config import RunConfig
from orderq.orders.repository import InMemorySheetStore
from orderq.orders.types import EmailMessage

ORDER_ID = "123-4567890-1234567"

ORDERED_BODY = f"""Hello Jane,
Thank you for shopping with us.
Order #{ORDER_ID}
Arriving Mon, Aug 18

[Gadget](https://www.amazon.com/gp/product/B000000001)
Quantity: 2
$12.99

Total
$56.96

[View or manage order](https://www.amazon.com/your-orders/order-details?orderID={ORDER_ID})
"""

SHIPPED_BODY = f"""Your package has shipped and is on the way.
Order #{ORDER_ID}
Arriving Wed, Aug 20
Track your package: https://www.amazon.com/progress-tracker/package?orderId={ORDER_ID}
"""

DELIVERED_BODY = f"""Your package was delivered.
Order #{ORDER_ID}
Delivered Fri, Aug 22
It was handed directly to a resident.
"""

RETURN_REQUESTED_BODY = f"""Your return request has been received.
Order #{ORDER_ID}

[Gadget](https://www.amazon.com/gp/product/B000000001)
Quantity: 1

Refund subtotal: $12.99
Return shipping: $0.00
Total estimated refund: $12.99
Refund will be issued to Visa ending in 1234
Drop off by Mon, Sep 1
Drop-off location: UPS Store, 12 Main St
QR code (https://www.amazon.com/returns/qr/abc123)
"""

REFUND_BODY = f"""We have issued your refund.
Order #{ORDER_ID}

[Gadget - Black](https://www.amazon.com/dp/B000000001)
Quantity: 1

Refund subtotal: $12.99
Refund total: $12.99
Refunded to Visa ending in 1234
"""


@pytest.fixture
def make_message():
    """Factory for EmailMessage with sensible Amazon-style defaults."""

    def _make(
        subject: str,
        body: str = "",
        *,
        message_id: str = "msg-1",
        thread_id: str = "",
        html: str = "",
        date: datetime | None = None,
        sender: str = "Amazon.com <auto-confirm@amazon.com>",
        to: str = "Jane Doe <jane@example.com>",
    ) -> EmailMessage:
        return EmailMessage(
            id=message_id,
            thread_id=thread_id or f"thread-{message_id}",
            subject=subject,
            plain_body=body,
            html_body=html,
            date=date or datetime(2025, 8, 14, 10, 0, tzinfo=UTC),
            from_address=sender,
            to_address=to,
        )

    return _make


@pytest.fixture
def store() -> InMemorySheetStore:
    return InMemorySheetStore.with_default_tables()


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(
        timezone="UTC",
        run_window_days=14,
        max_threads=50,
        max_messages=100,
        write_batch_size=50,
    )


@pytest.fixture
def fixed_clock():
    """Clock pinned to 2025-08-25 00:00 UTC."""
    return lambda: datetime(2025, 8, 25, 0, 0, tzinfo=UTC)


@pytest.fixture
def ordered_body() -> str:
    return ORDERED_BODY


@pytest.fixture
def shipped_body() -> str:
    return SHIPPED_BODY


@pytest.fixture
def delivered_body() -> str:
    return DELIVERED_BODY


@pytest.fixture
def return_requested_body() -> str:
    return RETURN_REQUESTED_BODY


@pytest.fixture
def refund_body() -> str:
    return REFUND_BODY
