"""
Field Extractors - pure functions from an email text blob to typed scalars.

Every extractor is total: an absent or malformed field yields an empty
sentinel ("" / None / []) and never raises. Callers decide whether an empty
value is fatal (only a missing order id is, see parsers.py).

Fallback chains are documented per function; patterns live in patterns.py.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from urllib.parse import unquote

from orderq.config import EXTRACT_AMOUNT_WINDOW, EXTRACT_DATE_WINDOW, EXTRACT_QUANTITY_LOOKAHEAD
from orderq.observability.logging import get_logger
from orderq.orders.patterns import (
    AMOUNT_RE,
    CARD_LAST4_RE,
    CURRENCY_SUFFIX_RE,
    CURRENCY_SYMBOLS,
    DATE_TOKEN_RE,
    IMAGE_LINE_RE,
    INVOICE_LINK_LABEL,
    MANAGE_LINK_LABEL,
    MONTHS,
    ORDER_ID_RE,
    PAREN_URL_RE,
    PRICE_LINE_RE,
    PRODUCT_ID_RE,
    QR_LINK_LABEL,
    QUANTITY_RE,
    STARRED_LINE_RE,
    TITLE_LINE_RE,
    TRACK_LINK_LABEL,
    URL_RE,
)
from orderq.orders.types import ItemLine

logger = get_logger(__name__)


@lru_cache(maxsize=128)
def _label_regex(label_pattern: str) -> re.Pattern[str]:
    return re.compile(label_pattern, re.IGNORECASE)


def _to_amount(raw: str) -> float | None:
    try:
        value = float(raw.replace(",", ""))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def extract_order_id(text: str | None) -> str:
    """First `ddd-ddddddd-ddddddd` substring, or ""."""
    if not text:
        return ""
    match = ORDER_ID_RE.search(text)
    return match.group(1) if match else ""


def extract_amount(text: str | None, label_pattern: str, window: int = EXTRACT_AMOUNT_WINDOW) -> float | None:
    """
    Amount that follows a label.

    Finds each occurrence of `label_pattern` (case-insensitive) and returns the
    first currency-prefixed number within `window` characters after it. The
    window caps the lookahead so markup or punctuation between label and number
    is tolerated without scanning the rest of a long body.

    Returns:
        Parsed float with symbols/commas stripped, or None.
    """
    if not text or not label_pattern:
        return None

    for label in _label_regex(label_pattern).finditer(text):
        span = text[label.end() : label.end() + window]
        match = AMOUNT_RE.search(span)
        if match:
            amount = _to_amount(match.group("number"))
            if amount is not None:
                return amount
    return None


def extract_first_amount(text: str | None, label_patterns: tuple[str, ...]) -> float | None:
    """Try labels in priority order; first one that yields an amount wins."""
    for label_pattern in label_patterns:
        amount = extract_amount(text, label_pattern)
        if amount is not None:
            return amount
    return None


def infer_currency(text: str | None) -> str:
    """
    ISO code for the amounts in a text.

    Fallback chain: explicit code suffixed to an amount ("12.99 EUR") ->
    symbol of the first currency-prefixed amount -> "".
    """
    if not text:
        return ""

    suffix = CURRENCY_SUFFIX_RE.search(text)
    if suffix:
        return suffix.group(1)

    prefixed = AMOUNT_RE.search(text)
    if prefixed:
        if prefixed.group("code"):
            return prefixed.group("code")
        return CURRENCY_SYMBOLS.get(prefixed.group("symbol") or "", "")
    return ""


def _resolve_date_token(match: re.Match[str], year: int) -> str:
    month = MONTHS.get(match.group("month").lower())
    if month is None:
        return ""
    try:
        return date(year, month, int(match.group("day"))).isoformat()
    except ValueError:
        return ""


def extract_date(
    text: str | None,
    label_pattern: str,
    year: int,
    window: int = EXTRACT_DATE_WINDOW,
) -> str:
    """
    Date-only ISO string for a "Mon, Aug 18" style token.

    The source templates omit the year, so `year` (the email's calendar year
    in the run timezone) is combined with the parsed month/day. With an empty
    `label_pattern` the first token anywhere in the text is used.

    Returns:
        "YYYY-MM-DD", or "" when no token is found or it does not parse
        (unknown month name, impossible day).
    """
    if not text:
        return ""

    if not label_pattern:
        match = DATE_TOKEN_RE.search(text)
        return _resolve_date_token(match, year) if match else ""

    for label in _label_regex(label_pattern).finditer(text):
        span = text[label.end() : label.end() + window]
        match = DATE_TOKEN_RE.search(span)
        if match:
            return _resolve_date_token(match, year)
    return ""


def extract_card_last4(text: str | None) -> str:
    """First 4-digit group after "ending in" / "ending with"."""
    if not text:
        return ""
    match = CARD_LAST4_RE.search(text)
    return match.group(1) if match else ""


def extract_line_value(text: str | None, label_pattern: str) -> str:
    """
    Text that follows a label on its line ("Sold by: Acme"), else the next
    non-blank line when the label stands alone.
    """
    if not text:
        return ""

    regex = _label_regex(label_pattern)
    lines = text.splitlines()
    for index, line in enumerate(lines):
        match = regex.search(line)
        if not match:
            continue
        rest = line[match.end() :].strip().lstrip(":").strip()
        if rest:
            return rest
        for following in lines[index + 1 :]:
            if following.strip():
                return following.strip()
        return ""
    return ""


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


def extract_link_after_label(text: str | None, label_pattern: str) -> str:
    """
    URL that belongs to a label phrase.

    Fallback chain, on the first line containing the label:
    1. a URL in parentheses after the label on the same line
    2. the first URL anywhere on that line
    3. the first URL on the next non-blank line
    4. ""
    """
    if not text:
        return ""

    regex = _label_regex(label_pattern)
    lines = text.splitlines()
    for index, line in enumerate(lines):
        match = regex.search(line)
        if not match:
            continue

        paren = PAREN_URL_RE.search(line, match.end())
        if paren:
            return paren.group(1)

        same_line = URL_RE.search(line)
        if same_line:
            return same_line.group(0)

        for following in lines[index + 1 :]:
            if not following.strip():
                continue
            next_line = URL_RE.search(following)
            return next_line.group(0) if next_line else ""
        return ""
    return ""


def extract_invoice_link(text: str | None) -> str:
    return extract_link_after_label(text, INVOICE_LINK_LABEL)


def extract_qr_link(text: str | None) -> str:
    return extract_link_after_label(text, QR_LINK_LABEL)


def extract_manage_link(text: str | None) -> str:
    return extract_link_after_label(text, MANAGE_LINK_LABEL)


def extract_tracking_link(text: str | None) -> str:
    return extract_link_after_label(text, TRACK_LINK_LABEL)


def extract_product_id(link: str | None) -> str:
    """10-char product id from a /gp/product/ or /dp/ path (URL-encoded redirects included)."""
    if not link:
        return ""
    match = PRODUCT_ID_RE.search(unquote(link))
    return match.group("pid") if match else ""


# ---------------------------------------------------------------------------
# Item lists
# ---------------------------------------------------------------------------


@dataclass
class _PendingItem:
    title: str
    link: str = ""
    image_url: str = ""
    unit_price: float | None = None
    qty: int | None = None
    gap: int = 0

    def to_item(self, qty: int | None) -> ItemLine:
        return ItemLine(
            title=self.title,
            qty=qty,
            unit_price=self.unit_price,
            product_id=extract_product_id(self.link),
            image_url=self.image_url,
        )


_SUMMARY_LINE_RE = re.compile(r"\b(?:sub)?total\b|\btax\b|\bshipping\b", re.IGNORECASE)


def _price_of_line(line: str) -> float | None:
    match = PRICE_LINE_RE.match(line)
    return _to_amount(match.group("number")) if match else None


def extract_bracketed_items(text: str | None, lookahead: int = EXTRACT_QUANTITY_LOOKAHEAD) -> list[ItemLine]:
    """
    Items listed as a `[Title](link)` line followed by a `Quantity: N` line.

    - A title line opens a pending item; a later title line replaces it.
    - Up to `lookahead` non-blank lines (order-number metadata, a price line)
      may sit between the title and its quantity line; past that the pending
      title is dropped. Titles are never emitted without a quantity.
    - A price-only line between title and quantity, or within `lookahead`
      lines after the quantity line, becomes the unit price.
    - An image line (`![alt](url)`) right before a title becomes its image.
    """
    if not text:
        return []

    items: list[ItemLine] = []
    pending: _PendingItem | None = None
    last_emitted: ItemLine | None = None
    lines_since_emit = 0
    last_image = ""

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        image = IMAGE_LINE_RE.match(line)
        if image:
            last_image = image.group("url")
            continue

        title = TITLE_LINE_RE.match(line)
        if title:
            pending = _PendingItem(
                title=title.group("title").strip(),
                link=title.group("link") or "",
                image_url=last_image,
            )
            last_image = ""
            last_emitted = None
            continue

        if pending is not None:
            quantity = QUANTITY_RE.match(line)
            if quantity:
                qty = int(quantity.group("qty"))
                if qty >= 1:
                    last_emitted = pending.to_item(qty)
                    items.append(last_emitted)
                    lines_since_emit = 0
                pending = None
                continue

            price = _price_of_line(line)
            if price is not None and pending.unit_price is None:
                pending.unit_price = price
            pending.gap += 1
            if pending.gap > lookahead:
                logger.debug("Dropping item without quantity line: %s", pending.title[:40])
                pending = None
            continue

        if last_emitted is not None:
            lines_since_emit += 1
            if _SUMMARY_LINE_RE.search(line):
                last_emitted = None
                continue
            price = _price_of_line(line)
            if price is not None and last_emitted.unit_price is None:
                last_emitted.unit_price = price
                last_emitted = None
            elif lines_since_emit >= lookahead:
                last_emitted = None

    return items


def extract_starred_items(text: str | None, lookahead: int = EXTRACT_QUANTITY_LOOKAHEAD) -> list[ItemLine]:
    """
    Looser order-confirmation format: `* Title` / `• Title` lines.

    Quantity defaults to 1 unless a `Quantity: N` line follows within
    `lookahead` lines; a price-only line in the same span sets the unit price.
    """
    if not text:
        return []

    items: list[ItemLine] = []
    pending: _PendingItem | None = None

    def _flush() -> None:
        if pending is not None:
            items.append(pending.to_item(pending.qty or 1))

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        starred = STARRED_LINE_RE.match(line)
        if starred:
            _flush()
            pending = _PendingItem(title=starred.group("title"))
            continue

        if pending is None:
            continue

        quantity = QUANTITY_RE.match(line)
        if quantity and pending.qty is None:
            qty = int(quantity.group("qty"))
            pending.qty = qty if qty >= 1 else None
        else:
            price = _price_of_line(line)
            if price is not None and pending.unit_price is None:
                pending.unit_price = price

        pending.gap += 1
        if pending.gap >= lookahead:
            _flush()
            pending = None

    _flush()
    return items
