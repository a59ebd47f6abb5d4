"""
OrderQ orders module - classify, parse and merge order notification emails.
"""

from orderq.orders.classifier import classify_subject
from orderq.orders.identity import item_key, normalize_title, order_key
from orderq.orders.merge import merge_item_row, merge_order, merge_record, merge_return_row, summarize_items
from orderq.orders.models import EmailLogEntry, ParseResult
from orderq.orders.parsers import OrderIdMissingError, parse_event
from orderq.orders.repository import InMemorySheetStore, MissingTableError, StoreError
from orderq.orders.service import ListMessageSource, OrderSyncService, RunSummary
from orderq.orders.types import EmailMessage, EventType, ItemLine, OrderEvent

__all__ = [
    # Types
    "EmailMessage",
    "EventType",
    "ItemLine",
    "OrderEvent",
    # Pipeline
    "classify_subject",
    "parse_event",
    "OrderIdMissingError",
    # Identity & merge
    "item_key",
    "normalize_title",
    "order_key",
    "merge_item_row",
    "merge_order",
    "merge_record",
    "merge_return_row",
    "summarize_items",
    # Storage & orchestration
    "EmailLogEntry",
    "ParseResult",
    "InMemorySheetStore",
    "MissingTableError",
    "StoreError",
    "ListMessageSource",
    "OrderSyncService",
    "RunSummary",
]
