"""
Pattern constants for notification email extraction.

Every regex the field extractors use lives here so templates can be adjusted
without touching extractor or merge logic. All patterns are linear (no nested
quantifiers) so they stay cheap on long HTML-derived bodies.
"""

from __future__ import annotations

import re

# Amazon-style order number: 3-7-7 digits
ORDER_ID_RE = re.compile(r"(?<!\d)(\d{3}-\d{7}-\d{7})(?!\d)")

KNOWN_CURRENCY_CODES: tuple[str, ...] = ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "INR", "MXN")

CURRENCY_SYMBOLS: dict[str, str] = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
}

_NUMBER = r"(?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"

# Currency-prefixed decimal: "$56.96", "US$ 1,234.50", "EUR 12.00", "£7"
AMOUNT_RE = re.compile(
    r"(?:(?:US|CA|AU|C|A)?(?P<symbol>[$€£])|\b(?P<code>" + "|".join(KNOWN_CURRENCY_CODES) + r")\s?)"
    r"\s*" + _NUMBER
)

# A line that is nothing but a price: "$12.99", "Price: $12.99", "Item price $12.99"
PRICE_LINE_RE = re.compile(
    r"^\s*(?:(?:Item\s+)?Price\s*:?\s*)?"
    r"(?:(?:US|CA|AU|C|A)?[$€£]|\b(?:" + "|".join(KNOWN_CURRENCY_CODES) + r")\s?)"
    r"\s*" + _NUMBER + r"\s*(?:each)?\s*$",
    re.IGNORECASE,
)

# ISO code directly after an amount: "12.99 USD", "12.99EUR"
CURRENCY_SUFFIX_RE = re.compile(
    r"\d(?:[\d,]*\d)?(?:\.\d+)?\s?(" + "|".join(KNOWN_CURRENCY_CODES) + r")\b"
)

# "Mon, Aug 18" / "Monday, August 18" / "Tue. Sep. 2"
DATE_TOKEN_RE = re.compile(
    r"\b(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun)[a-z]*\.?,?\s+(?P<month>[A-Za-z]{3,9})\.?\s+(?P<day>\d{1,2})(?!\d)",
    re.IGNORECASE,
)

_MONTH_NAMES = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)
MONTHS: dict[str, int] = {}
for _index, _name in enumerate(_MONTH_NAMES, start=1):
    MONTHS[_name] = _index
    MONTHS[_name[:3]] = _index
MONTHS["sept"] = 9

CARD_LAST4_RE = re.compile(r"ending\s+(?:in|with)\s*:?\s*(\d{4})(?!\d)", re.IGNORECASE)

URL_RE = re.compile(r"https?://[^\s<>()\[\]\"']+")
PAREN_URL_RE = re.compile(r"\((https?://[^\s)]+)\)")

# "[Gadget](https://www.amazon.com/gp/product/B000000001)" or "* [Gadget]"
TITLE_LINE_RE = re.compile(
    r"^(?:[*•\-]\s*)?\[(?P<title>[^\[\]]+)\](?:\((?P<link>[^)\s]*)\))?\s*$"
)
IMAGE_LINE_RE = re.compile(r"^!\[[^\]]*\]\((?P<url>https?://[^)\s]+)\)\s*$")
QUANTITY_RE = re.compile(r"^(?:Quantity|Qty)\s*:?\s*(?P<qty>\d+)\b", re.IGNORECASE)
STARRED_LINE_RE = re.compile(r"^[*•]\s+(?P<title>[^\s\[].*?)\s*$")
PRODUCT_ID_RE = re.compile(r"/(?:gp/product|dp)/(?P<pid>[A-Z0-9]{10})(?![A-Z0-9])")

# --- Labels (case-insensitive) ---

ORDER_TOTAL_LABELS: tuple[str, ...] = (r"\b(?:Order|Grand)\s+Total\b", r"\bTotal\b")
REFUND_SUBTOTAL_LABELS: tuple[str, ...] = (r"\bRefund\s+subtotal\b",)
SHIPPING_AMOUNT_LABELS: tuple[str, ...] = (
    r"\b(?:Return\s+)?Shipping(?:\s+(?:refund|fee|cost|charge))?\b(?!\s+(?:address|to|speed))",
)
TOTAL_ESTIMATED_REFUND_LABELS: tuple[str, ...] = (
    r"\bTotal\s+estimated\s+refund\b",
    r"\bEstimated\s+refund\b",
)
REFUND_TOTAL_LABELS: tuple[str, ...] = (
    r"\bRefund\s+total\b",
    r"\bTotal\s+refund\b",
    r"\bRefund\s+amount\b",
    r"\brefund\s+of\b",
)

ARRIVING_LABEL = r"\b(?:Arriving|Estimated\s+delivery|Expected\s+delivery|Delivery\s+estimate)\b"
DELIVERED_LABEL = r"\bDelivered\b"
DROPOFF_BY_LABEL = r"\b(?:Drop\s*-?\s*off\s+by|Return\s+by|Ship\s+by)\b"
DROPOFF_DATE_LABEL = r"\b(?:Dropped\s+off|Drop\s*-?\s*off\s+date|Received)\b"

DROPOFF_LOCATION_LABEL = r"\b(?:Drop\s*-?\s*off\s+location|Drop\s*-?\s*off\s+at|Return\s+location)\b"
SOLD_BY_LABEL = r"\bSold\s+by\b"
CANCEL_REASON_LABEL = r"\b(?:Cancellation\s+)?Reason\b"

INVOICE_LINK_LABEL = r"(?:View|Download)\s+(?:your\s+)?invoice|\bInvoice\b"
QR_LINK_LABEL = r"\bQR\s+code\b"
MANAGE_LINK_LABEL = r"(?:View\s+or\s+)?manage\s+(?:your\s+)?order|View\s+order\s+details|View\s+your\s+orders?"
TRACK_LINK_LABEL = r"Track\s+(?:your\s+)?package"
