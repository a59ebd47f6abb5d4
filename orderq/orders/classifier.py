"""
Subject classifier - maps a notification subject to an EventType.

Deterministic, ordered rule list; first match wins. Prefix rules
("Ordered:", "Shipped:" ...) go first because they are the most specific
templates; keyword rules follow with refund ahead of cancellation (a refund
for a cancelled item is a refund) and both ahead of the lifecycle words they
usually contain ("Your refund for the order that was delivered ...").
Anything unmatched is OTHER, which is a valid outcome, not an error.
"""

from __future__ import annotations

import re

from orderq.orders.types import EventType

SUBJECT_RULES: tuple[tuple[EventType, re.Pattern[str]], ...] = (
    # Prefix templates
    (EventType.ORDERED, re.compile(r"^ordered\s*:")),
    (EventType.SHIPPED, re.compile(r"^shipped\s*:")),
    (EventType.DELIVERED, re.compile(r"^delivered\s*:")),
    (EventType.CANCELLED, re.compile(r"^(?:cancel+ed|item cancel+ed)\s*:")),
    (EventType.REFUND_ISSUED, re.compile(r"^refund(?:ed| issued)?\s*:")),
    # Keywords
    (EventType.REFUND_ISSUED, re.compile(r"\brefund (?:issued|processed|is on its way)\b|\byour refund\b")),
    (EventType.CANCELLED, re.compile(r"\bcancel+(?:ed|ation)\b")),
    (EventType.RETURN_DROPOFF_CONFIRMED, re.compile(r"\bdrop[\s-]?off\b|\bdropped off\b")),
    (EventType.RETURN_REQUESTED, re.compile(r"\breturn (?:request|started|label|authori[sz]ed)\b|\byour return of\b")),
    (EventType.DELIVERED, re.compile(r"\b(?:was|has been|been) delivered\b")),
    (EventType.SHIPPED, re.compile(r"\b(?:has|have) shipped\b|\bhas been shipped\b|\bon the way\b")),
    (EventType.ORDERED, re.compile(r"\border confirmation\b|\byour (?:[\w.]+ )?order of\b|\border (?:has been )?placed\b")),
)


def classify_subject(subject: str | None) -> EventType:
    """
    Classify a subject line.

    Args:
        subject: Raw subject; None and "" are OTHER.

    Returns:
        Exactly one EventType; never raises.
    """
    normalized = re.sub(r"\s+", " ", (subject or "").strip().lower())
    if not normalized:
        return EventType.OTHER

    for event_type, pattern in SUBJECT_RULES:
        if pattern.search(normalized):
            return event_type
    return EventType.OTHER
