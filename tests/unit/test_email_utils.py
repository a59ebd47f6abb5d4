"""Tests for address normalization and log redaction"""

from __future__ import annotations

import pytest

from orderq.utils.email import extract_domain_only, extract_email_address
from orderq.utils.redaction import redact, redact_subject


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Jane Doe <Jane@Example.com>", "jane@example.com"),
        ("jane@example.com, bob@example.com", "jane@example.com"),
        ("invalid", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_extract_email_address(header, expected):
    assert extract_email_address(header) == expected


@pytest.mark.parametrize(
    "header,expected",
    [
        ("auto-confirm@amazon.com", "amazon.com"),
        ("Amazon <shipment-tracking@mail.amazon.com>", "amazon.com"),
        ("orders@amazon.co.uk", "amazon.co.uk"),
        ("noreply@email.amazon.co.uk", "amazon.co.uk"),
        ("nobody", ""),
    ],
)
def test_extract_domain_only(header, expected):
    assert extract_domain_only(header) == expected


def test_redact_is_stable_and_hides_value():
    assert redact("msg-1") == redact("msg-1")
    assert "msg-1" not in redact("msg-1")
    assert redact("") == "hash:missing"


def test_redact_subject_truncates():
    redacted = redact_subject("Shipped: Stainless Steel Water Bottle, 32 oz")

    assert redacted.startswith("Shipped: Stainless Steel Water...")
    assert "32 oz" not in redacted
    assert redact_subject(None) == "(no subject)"
