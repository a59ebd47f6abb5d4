"""Tests for the Gmail payload adapter"""

from __future__ import annotations

import base64
from datetime import UTC, datetime

import pytest

from orderq.gmail.parser import GmailParsingError, parse_message, parse_messages
from orderq.observability.telemetry import Telemetry

RECEIVED = datetime(2025, 8, 14, 10, 0, tzinfo=UTC)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _payload(parts=None, headers=None, **overrides):
    message = {
        "id": "18c0ffee",
        "threadId": "18c0ffee-thread",
        "internalDate": str(int(RECEIVED.timestamp() * 1000)),
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": headers
            if headers is not None
            else [
                {"name": "Subject", "value": "Shipped: Widget"},
                {"name": "From", "value": "Amazon.com <shipment-tracking@amazon.com>"},
                {"name": "To", "value": "jane@example.com"},
            ],
            "parts": parts
            if parts is not None
            else [
                {"mimeType": "text/plain", "body": {"data": _b64("Order #123-4567890-1234567")}},
                {"mimeType": "text/html", "body": {"data": _b64("<p>Order</p>")}},
            ],
        },
    }
    message.update(overrides)
    return message


def test_parse_multipart_message():
    message = parse_message(_payload())

    assert message.id == "18c0ffee"
    assert message.thread_id == "18c0ffee-thread"
    assert message.subject == "Shipped: Widget"
    assert message.plain_body == "Order #123-4567890-1234567"
    assert message.html_body == "<p>Order</p>"
    assert message.date == RECEIVED
    assert message.from_address == "Amazon.com <shipment-tracking@amazon.com>"
    assert message.to_address == "jane@example.com"


def test_nested_multipart():
    parts = [
        {
            "mimeType": "multipart/related",
            "parts": [{"mimeType": "text/html", "body": {"data": _b64("<b>Hi</b>")}}],
        }
    ]
    message = parse_message(_payload(parts=parts))

    assert message.plain_body == ""
    assert message.html_body == "<b>Hi</b>"


def test_date_header_fallback():
    headers = [
        {"name": "Subject", "value": "Delivered: Widget"},
        {"name": "Date", "value": "Thu, 14 Aug 2025 10:00:00 +0000"},
    ]
    payload = _payload(headers=headers)
    del payload["internalDate"]

    assert parse_message(payload).date == RECEIVED


def test_missing_body_raises():
    telemetry = Telemetry()
    with pytest.raises(GmailParsingError):
        parse_message(_payload(parts=[]), telemetry)
    assert telemetry.counters["gmail.parse_failed.count"] == 1


def test_missing_payload_raises():
    with pytest.raises(GmailParsingError):
        parse_message({"id": "x"})


def test_not_a_dict_raises():
    with pytest.raises(GmailParsingError):
        parse_message(["not", "a", "message"])


def test_invalid_base64_raises():
    parts = [{"mimeType": "text/plain", "body": {"data": "A"}}]
    with pytest.raises(GmailParsingError):
        parse_message(_payload(parts=parts))


def test_batch_skips_bad_payloads():
    messages = parse_messages([_payload(), {"id": "broken"}])
    assert [m.id for m in messages] == ["18c0ffee"]
