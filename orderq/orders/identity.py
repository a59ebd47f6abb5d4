"""
Identity & key derivation for orders and order items.

The item key must be stable across runs and across email templates: an order
confirmation and a return request for the same physical item have to land on
one row. A product id (ASIN) is authoritative when present; otherwise the
normalized title is used.
"""

from __future__ import annotations

import re

from orderq.orders.types import ItemLine

_DISALLOWED_TITLE_CHARS = re.compile(r"[^a-z0-9$€£.\- ]")
_WHITESPACE = re.compile(r"\s+")

ORDER_KEY_COLUMNS: tuple[str, ...] = ("order_id",)
ITEM_KEY_COLUMN = "item_key"


def normalize_title(title: str | None) -> str:
    """
    Canonical form of an item title for keying.

    Lower-cases, expands `&amp;`, drops characters outside
    `[a-z0-9$€£.\\- ]` and collapses whitespace.

    Examples:
        >>> normalize_title("  Salt &amp; Pepper   Grinder (2-Pack) ")
        'salt pepper grinder 2-pack'
    """
    if not title:
        return ""
    text = title.lower().replace("&amp;", "&")
    text = _DISALLOWED_TITLE_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def order_key(order_id: str) -> str:
    return order_id.strip()


def item_key(order_id: str, product_id: str = "", title: str = "") -> str:
    """
    Key for an order+item pair.

    `order_id|asin:<product_id>` when a product id is known, else
    `order_id|t:<normalized title>`. An empty title gives the order-level key
    `order_id|t:` used for item-less return events.
    """
    if product_id and product_id.strip():
        return f"{order_key(order_id)}|asin:{product_id.strip().upper()}"
    return f"{order_key(order_id)}|t:{normalize_title(title)}"


def key_for_item(order_id: str, item: ItemLine) -> str:
    return item_key(order_id, item.product_id, item.title)


def order_id_from_item_key(key: str) -> str:
    return key.split("|", 1)[0]
