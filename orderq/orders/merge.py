"""
Merge Engine - folds parsed events into order, item and return records.

Records are flat dicts (field name -> scalar) so they map 1:1 onto store
rows. A record's status history is stored on the record itself as a compact
JSON string under `status_history`; the current status is always re-derived
from that history and never trusted from the incoming event.

Merge rules (same for every entity kind):
1. Non-empty incoming scalars overwrite, except `status` / `event_time`.
   Empty incoming values never erase. Monotonic fields (`order_total`) only
   move up.
2. The incoming (status, event_time) pair is merged into the history with
   exact-pair de-duplication.
3. Current status = highest rank, ties by latest `at`, full ties keep the
   earlier entry. Cancelled ranks 0 like any other status.
4. The full history is written back, ordered by rank then recency.
"""

from __future__ import annotations

import json
import math
from collections.abc import Collection, Iterable, Mapping
from typing import Any

from orderq.observability.logging import get_logger
from orderq.orders.types import (
    ITEM_LIFECYCLE_STATUSES,
    RETURN_STATUSES,
    EventType,
    ItemLine,
    OrderedEvent,
    OrderEvent,
    status_rank,
)

logger = get_logger(__name__)

HISTORY_FIELD = "status_history"
STATUS_FIELD = "status"
STATUS_AT_FIELD = "status_changed_at"

# Fields the merge derives itself; never copied from the incoming side
_DERIVED_FIELDS = frozenset({STATUS_FIELD, "event_time", HISTORY_FIELD, STATUS_AT_FIELD})

# Order milestones stamped once, the first time their status is seen
ORDER_STAMP_FIELDS: dict[str, str] = {
    EventType.ORDERED.value: "ordered_at",
    EventType.SHIPPED.value: "shipped_at",
    EventType.DELIVERED.value: "delivered_at",
}

ORDER_MONOTONIC_FIELDS: tuple[str, ...] = ("order_total",)


def is_empty(value: Any) -> bool:
    """None, blank strings and NaN count as "unknown"."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _to_number(value: Any) -> float | None:
    if is_empty(value) or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", ""))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


# ---------------------------------------------------------------------------
# Status history
# ---------------------------------------------------------------------------


def parse_history(value: Any) -> list[dict[str, str]]:
    """
    Decode a stored history.

    Accepts the stored JSON string or an already-decoded list. Anything that
    does not decode to a list of {status, at} objects yields [] for the
    malformed parts, so a corrupted cell degrades to "no history" instead of
    failing the merge.
    """
    if is_empty(value):
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable status history: %.40s", value)
            return []
    if not isinstance(value, list):
        return []

    history: list[dict[str, str]] = []
    for entry in value:
        if isinstance(entry, Mapping) and entry.get("status") and entry.get("at"):
            history.append({"status": str(entry["status"]), "at": str(entry["at"])})
    return history


def serialize_history(history: Iterable[Mapping[str, str]]) -> str:
    return json.dumps(
        [{"status": e["status"], "at": e["at"]} for e in history],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def sort_history(history: list[dict[str, str]]) -> list[dict[str, str]]:
    """Rank descending, then `at` descending; equal entries keep their order."""
    by_time = sorted(history, key=lambda e: e["at"], reverse=True)
    return sorted(by_time, key=lambda e: status_rank(e["status"]), reverse=True)


def merge_history(history: list[dict[str, str]], status: str, at: str) -> list[dict[str, str]]:
    """
    Add one (status, at) pair.

    An identical pair already present is dropped in favour of the incoming
    copy, so merging the same event twice leaves the history unchanged.
    """
    incoming = {"status": status, "at": at}
    merged = [incoming] + [e for e in history if (e["status"], e["at"]) != (status, at)]
    return sort_history(merged)


def pick_current(history: list[dict[str, str]]) -> dict[str, str] | None:
    """
    Current status entry of a history.

    Highest rank wins, a rank tie goes to the later `at`, a full tie keeps the
    earlier list entry. Cancelled ranks 0, so it is current only while no
    higher-ranked entry exists in the history.
    """
    best: dict[str, str] | None = None
    for entry in history:
        if best is None:
            best = entry
            continue
        rank, best_rank = status_rank(entry["status"]), status_rank(best["status"])
        if rank > best_rank or (rank == best_rank and entry["at"] > best["at"]):
            best = entry
    return best


# ---------------------------------------------------------------------------
# Generic record merge
# ---------------------------------------------------------------------------


def merge_record(
    existing: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    *,
    monotonic_fields: Collection[str] = (),
    stamp_fields: Mapping[str, str] | None = None,
    allowed_statuses: Collection[str] | None = None,
) -> dict[str, Any]:
    """
    Fold one incoming field mapping into a record.

    Args:
        existing: Current record, or None for a first sighting
        incoming: Flat fields of the event, including `status`/`event_time`
        monotonic_fields: Numeric fields replaced only by a strictly greater value
        stamp_fields: status -> field stamped with `at` while the field is empty
        allowed_statuses: Statuses this record kind tracks; others are not
            added to its history (scalars are still merged)

    Returns:
        A new record dict; `existing` is not modified.
    """
    record: dict[str, Any] = dict(existing or {})

    for name, value in incoming.items():
        if name in _DERIVED_FIELDS or is_empty(value):
            continue
        if name in monotonic_fields:
            current = _to_number(record.get(name))
            candidate = _to_number(value)
            if candidate is None or (current is not None and candidate <= current):
                continue
        record[name] = value

    history = parse_history(record.get(HISTORY_FIELD))
    status = incoming.get(STATUS_FIELD)
    at = incoming.get("event_time")
    if not is_empty(status) and not is_empty(at):
        status, at = str(status), str(at)
        if allowed_statuses is None or status in allowed_statuses:
            history = merge_history(history, status, at)
            if stamp_fields and status in stamp_fields and is_empty(record.get(stamp_fields[status])):
                record[stamp_fields[status]] = at

    current = pick_current(history)
    if current is not None:
        record[STATUS_FIELD] = current["status"]
        record[STATUS_AT_FIELD] = current["at"]
    record[HISTORY_FIELD] = serialize_history(history)
    return record


# ---------------------------------------------------------------------------
# Entity-specific merges
# ---------------------------------------------------------------------------


def summarize_items(items: list[ItemLine]) -> dict[str, Any]:
    """
    Order-level summary of a resolved item list.

    `items_total` sums unit_price * qty over priced items only (2 decimals)
    and is "" when no item has a price.
    """
    priced = [item for item in items if item.unit_price is not None]
    total: float | str = round(sum(item.unit_price * (item.qty or 1) for item in priced), 2) if priced else ""

    parts = []
    for item in items:
        qty = item.qty or 1
        text = f"{qty} × {item.title}"
        if item.unit_price is not None:
            text += f" — {item.unit_price:.2f} ({item.unit_price * qty:.2f})"
        parts.append(text)

    return {
        "items_count": sum(item.qty or 1 for item in items),
        "items_total": total,
        "items_json": json.dumps([item.to_dict() for item in items], separators=(",", ":"), ensure_ascii=False),
        "items_summary": "; ".join(parts),
    }


def merge_order(existing: Mapping[str, Any] | None, event: OrderEvent) -> dict[str, Any]:
    """
    Merge an event into its order record.

    An Ordered event with a non-empty item list replaces the item summary
    outright; other events leave the summary alone.
    """
    record = merge_record(
        existing,
        event.order_fields(),
        monotonic_fields=ORDER_MONOTONIC_FIELDS,
        stamp_fields=ORDER_STAMP_FIELDS,
    )
    if isinstance(event, OrderedEvent) and event.items:
        record.update(summarize_items(event.items))
    return record


def merge_item_row(existing: Mapping[str, Any] | None, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Unified item lifecycle row; Cancelled is tracked at order level only."""
    return merge_record(existing, fields, allowed_statuses=ITEM_LIFECYCLE_STATUSES)


def merge_return_row(existing: Mapping[str, Any] | None, fields: Mapping[str, Any]) -> dict[str, Any]:
    return merge_record(existing, fields, allowed_statuses=RETURN_STATUSES)
