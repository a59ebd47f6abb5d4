"""Tests for subject classification"""

from __future__ import annotations

import pytest

from orderq.orders.classifier import SUBJECT_RULES, classify_subject
from orderq.orders.types import EventType


@pytest.mark.parametrize(
    "subject,expected",
    [
        ("Ordered: Widget", EventType.ORDERED),
        ("  ORDERED:   Widget and 1 more item ", EventType.ORDERED),
        ('Your Amazon.com order of "Widget"', EventType.ORDERED),
        ("Order Confirmation", EventType.ORDERED),
        ("Shipped: Widget", EventType.SHIPPED),
        ('Your Amazon.com order of "Widget" has shipped', EventType.SHIPPED),
        ("Delivered: Your package", EventType.DELIVERED),
        ("Your package was delivered", EventType.DELIVERED),
        ("Your order has been cancelled", EventType.CANCELLED),
        ("Item canceled: Widget", EventType.CANCELLED),
        ("Your return request for Widget", EventType.RETURN_REQUESTED),
        ("Your return drop-off is confirmed", EventType.RETURN_DROPOFF_CONFIRMED),
        ("Your refund for Widget", EventType.REFUND_ISSUED),
        ("Refund: Widget", EventType.REFUND_ISSUED),
    ],
)
def test_known_subjects(subject, expected):
    assert classify_subject(subject) == expected


@pytest.mark.parametrize("subject", ["", None, "   ", "Weekly deals just for you", "Re: lunch?"])
def test_unmatched_is_other(subject):
    assert classify_subject(subject) == EventType.OTHER


def test_refund_wins_over_lifecycle_words():
    """Refund subjects often mention delivery; refund rule comes first"""
    assert classify_subject("Your refund for the order that was delivered") == EventType.REFUND_ISSUED


def test_cancellation_wins_over_shipping_words():
    assert classify_subject("Cancellation: item that has shipped") == EventType.CANCELLED


@pytest.mark.parametrize(
    "subject",
    ["Refund issued for your cancelled item", "Your refund for the cancelled order of Widget"],
)
def test_refund_wins_over_cancellation(subject):
    assert classify_subject(subject) == EventType.REFUND_ISSUED


def test_deterministic_and_total():
    subjects = ["Shipped: A", "Your refund for B", "random", "Delivered: C"]
    first = [classify_subject(s) for s in subjects]
    second = [classify_subject(s) for s in subjects]

    assert first == second
    assert all(isinstance(t, EventType) for t in first)


def test_every_rule_targets_a_parseable_type():
    assert all(event_type != EventType.OTHER for event_type, _ in SUBJECT_RULES)
