"""
Order sync service - the upsert orchestrator.

One run: read the destination tables once, skip messages already handled,
classify -> parse -> merge each remaining message into the in-memory tables,
flush dirty rows in batches and append one EmailLog entry per message.

Failure policy:
- Per-message problems (missing order id, parser or merge errors) become a
  Failed log entry and the batch continues; Failed messages are retried on
  the next run.
- Unrecognized subjects are logged as Partial and never re-parsed.
- Store and configuration errors propagate and abort the run. Batches
  flushed before the error stay written; upserts are keyed merges, so the
  re-run converges.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from orderq.config import (
    EMAIL_LOG_TABLE,
    ITEM_EVENTS_TABLE,
    ORDER_ITEMS_TABLE,
    ORDERS_TABLE,
    RETURNS_TABLE,
    RunConfig,
    load_run_config,
)
from orderq.observability.logging import get_run_logger
from orderq.observability.telemetry import Telemetry
from orderq.orders.classifier import classify_subject
from orderq.orders.identity import ITEM_KEY_COLUMN, item_key, key_for_item, order_key
from orderq.orders.merge import merge_item_row, merge_order, merge_return_row
from orderq.orders.models import (
    EmailLogEntry,
    ParseResult,
    item_event_fields,
    lifecycle_fields,
    order_item_rows,
    processed_message_ids,
    return_fields,
)
from orderq.orders.parsers import RECOVERABLE_TYPES, OrderIdMissingError, parse_event, recover_order_id
from orderq.orders.repository import (
    AppendOnlyTable,
    DetailTable,
    EntityTable,
    SheetStore,
)
from orderq.orders.types import (
    ITEM_BEARING_TYPES,
    RETURN_STATUSES,
    EmailMessage,
    EventType,
    OrderedEvent,
    OrderEvent,
)
from orderq.utils.redaction import redact, redact_subject

Clock = Callable[[], datetime]

# Item-less events that apply to every item row the order already has
_FAN_OUT_STATUSES = frozenset({EventType.SHIPPED.value, EventType.DELIVERED.value})


class MessageSource(Protocol):
    """Supplies candidate notification emails for a run."""

    def fetch_candidates(self, window_days: int, max_threads: int, max_messages: int) -> list[EmailMessage]:
        """Messages from the last `window_days`, capped by thread and message count.

        Side Effects:
            Depends on the source (mailbox reads); none for ListMessageSource
        """
        ...


class ListMessageSource:
    """MessageSource over an in-memory list (Gmail exports, fixtures, replays)."""

    def __init__(self, messages: Iterable[EmailMessage | Mapping[str, Any]], clock: Clock | None = None):
        self.messages = [m if isinstance(m, EmailMessage) else EmailMessage.model_validate(m) for m in messages]
        self.clock = clock

    def fetch_candidates(self, window_days: int, max_threads: int, max_messages: int) -> list[EmailMessage]:
        now = self.clock() if self.clock else datetime.now(UTC)
        cutoff = now - timedelta(days=window_days)

        # Newest threads win the caps; processing order is oldest first
        threads: list[str] = []
        selected: list[EmailMessage] = []
        for message in sorted(self.messages, key=lambda m: m.date, reverse=True):
            if message.date < cutoff:
                continue
            thread = message.thread_id or message.id
            if thread not in threads:
                if len(threads) >= max_threads:
                    continue
                threads.append(thread)
            selected.append(message)
            if len(selected) >= max_messages:
                break
        return sorted(selected, key=lambda m: m.date)


@dataclass
class RunSummary:
    """Counts reported at the end of a run."""

    run_id: str
    counts_by_type: dict[str, int] = field(default_factory=dict)
    fetched: int = 0
    skipped: int = 0
    success: int = 0
    partial: int = 0
    failed: int = 0
    rows_written: int = 0
    duration_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.success + self.partial + self.failed

    def record(self, entry: EmailLogEntry) -> None:
        self.counts_by_type[entry.detected_type] = self.counts_by_type.get(entry.detected_type, 0) + 1
        if entry.parse_result == ParseResult.SUCCESS.value:
            self.success += 1
        elif entry.parse_result == ParseResult.PARTIAL.value:
            self.partial += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["processed"] = self.processed
        return data


@dataclass
class RunTables:
    """In-memory view of every table a run touches."""

    orders: EntityTable
    order_items: DetailTable
    item_events: EntityTable
    returns: EntityTable
    email_log: AppendOnlyTable
    processed_ids: set[str]

    @classmethod
    def load(cls, store: SheetStore, telemetry: Telemetry) -> RunTables:
        """
        Read every table once.

        Raises:
            MissingTableError: A table is absent (fatal for the run)
        """
        email_log = store.read_table(EMAIL_LOG_TABLE)
        return cls(
            orders=EntityTable.load(store, ORDERS_TABLE, "order_id", telemetry),
            order_items=DetailTable.load(store, ORDER_ITEMS_TABLE, "order_id", telemetry),
            item_events=EntityTable.load(store, ITEM_EVENTS_TABLE, ITEM_KEY_COLUMN, telemetry),
            returns=EntityTable.load(store, RETURNS_TABLE, ITEM_KEY_COLUMN, telemetry),
            email_log=AppendOnlyTable(EMAIL_LOG_TABLE, email_log, telemetry),
            processed_ids=processed_message_ids(email_log.rows),
        )

    @property
    def dirty_count(self) -> int:
        return (
            self.orders.dirty_count
            + self.order_items.dirty_count
            + self.item_events.dirty_count
            + self.returns.dirty_count
            + self.email_log.dirty_count
        )

    def flush(self, store: SheetStore) -> int:
        """Entity rows first, then the log, so no log entry outlives its data."""
        written = self.orders.flush(store)
        written += self.order_items.flush(store)
        written += self.item_events.flush(store)
        written += self.returns.flush(store)
        written += self.email_log.flush(store)
        return written


class OrderSyncService:
    """
    Runs the classify -> parse -> merge -> write pipeline over one batch.

    Args:
        store: Destination entity store
        source: Candidate message source
        config: Run configuration (defaults to load_run_config())
        telemetry: Injected telemetry; a run-scoped one is created otherwise
        clock: Override for "now" (log_time, logged_at)
    """

    def __init__(
        self,
        store: SheetStore,
        source: MessageSource,
        config: RunConfig | None = None,
        telemetry: Telemetry | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.source = source
        self.config = config or load_run_config()
        self.telemetry = telemetry
        self.clock = clock

    def _now(self) -> datetime:
        now = self.clock() if self.clock else datetime.now(self.config.tz)
        return now.astimezone(self.config.tz)

    def run(self) -> RunSummary:
        """
        Execute one sync run.

        Returns:
            RunSummary with per-type counts and outcomes

        Raises:
            StoreError: Store unavailable or a table is missing

        Side Effects:
            - Writes Orders, OrderItems, ItemEvents, Returns rows
            - Appends one EmailLog row per processed message
        """
        summary = RunSummary(run_id=uuid.uuid4().hex[:8])
        log = get_run_logger(summary.run_id)
        telemetry = self.telemetry or Telemetry(log)
        config = self.config

        with telemetry.time_block("orders.sync.run"):
            tables = RunTables.load(self.store, telemetry)

            with telemetry.time_block("orders.sync.fetch"):
                messages = self.source.fetch_candidates(
                    config.run_window_days, config.max_threads, config.max_messages
                )
            messages = messages[: config.max_messages]
            summary.fetched = len(messages)
            log.info("Fetched %d candidate messages", len(messages))

            for message in messages:
                if message.id in tables.processed_ids:
                    summary.skipped += 1
                    continue

                entry = self.process_message(message, tables, telemetry)
                tables.email_log.append(entry.to_row())
                summary.record(entry)
                if entry.parse_result != ParseResult.FAILED.value:
                    tables.processed_ids.add(message.id)

                if tables.dirty_count >= config.write_batch_size:
                    summary.rows_written += tables.flush(self.store)

            summary.rows_written += tables.flush(self.store)

        summary.duration_seconds = round(telemetry.total_seconds("orders.sync.run"), 3)
        telemetry.log_event("orders.sync.run_complete", **summary.to_dict())
        return summary

    # ------------------------------------------------------------------
    # Per message
    # ------------------------------------------------------------------

    def process_message(self, message: EmailMessage, tables: RunTables, telemetry: Telemetry) -> EmailLogEntry:
        """Classify, parse and merge one message; never raises for per-message problems."""
        tz = self.config.tz
        now = self._now()
        event_type = classify_subject(message.subject)
        telemetry.counter(f"orders.classified.{event_type.value}")

        entry: dict[str, Any] = {
            "message_id": message.id,
            "thread_id": message.thread_id,
            "email_date": message.date.astimezone(tz).isoformat(timespec="seconds"),
            "detected_type": event_type,
            "logged_at": now.isoformat(timespec="seconds"),
        }

        if event_type == EventType.OTHER:
            telemetry.logger.debug("Unrecognized subject %s", redact_subject(message.subject))
            return EmailLogEntry(**entry, parse_result=ParseResult.PARTIAL, notes="unrecognized subject")

        try:
            event, notes = self._parse_with_recovery(event_type, message, now, telemetry)
            entry["order_id"] = event.order_id
            notes.extend(self.apply_event(event, tables))
        except OrderIdMissingError as exc:
            telemetry.counter("orders.identity_failure")
            telemetry.logger.warning(
                "No order id in %s message %s (%s)",
                event_type.value,
                redact(message.id),
                redact_subject(message.subject),
            )
            return EmailLogEntry(**entry, parse_result=ParseResult.FAILED, notes=str(exc))
        except Exception as exc:
            telemetry.counter("orders.message_error")
            telemetry.logger.error("Failed to process message %s: %s", redact(message.id), exc)
            return EmailLogEntry(
                **entry,
                parse_result=ParseResult.FAILED,
                notes=f"error:{type(exc).__name__}:{str(exc)[:100]}",
            )

        result = ParseResult.SUCCESS
        if event_type in ITEM_BEARING_TYPES and not event.items:
            result = ParseResult.PARTIAL
            notes.append("no line items found")
        return EmailLogEntry(**entry, parse_result=result, notes="; ".join(notes))

    def _parse_with_recovery(
        self,
        event_type: EventType,
        message: EmailMessage,
        now: datetime,
        telemetry: Telemetry,
    ) -> tuple[OrderEvent, list[str]]:
        """Parse; for RECOVERABLE_TYPES retry once with an id from subject/raw HTML."""
        tz = self.config.tz
        try:
            return parse_event(event_type, message, tz, now=now), []
        except OrderIdMissingError:
            if event_type not in RECOVERABLE_TYPES:
                raise
            hint = recover_order_id(message)
            if not hint:
                raise
        telemetry.counter("orders.order_id_recovered")
        event = parse_event(event_type, message, tz, now=now, order_id_hint=hint)
        return event, ["order id recovered"]

    def apply_event(self, event: OrderEvent, tables: RunTables) -> list[str]:
        """
        Merge one event into every table it touches.

        Returns:
            Notes for the EmailLog entry
        """
        oid = order_key(event.order_id)
        tables.orders.upsert(oid, merge_order(tables.orders.get(oid), event))
        notes: list[str] = []

        if isinstance(event, OrderedEvent) and event.items:
            tables.order_items.replace(oid, order_item_rows(event))
            notes.append(f"items={len(event.items)}")

        if event.items:
            for item in event.items:
                fields = item_event_fields(event, item)
                key = fields[ITEM_KEY_COLUMN]
                tables.item_events.upsert(key, merge_item_row(tables.item_events.get(key), fields))
        elif event.status in _FAN_OUT_STATUSES:
            keys = tables.item_events.keys_where("order_id", oid)
            for key in keys:
                tables.item_events.upsert(key, merge_item_row(tables.item_events.get(key), lifecycle_fields(event, key)))
            if keys:
                notes.append(f"applied to {len(keys)} item rows")

        if event.status in RETURN_STATUSES:
            notes.extend(self._apply_return(event, oid, tables))
        return notes

    def _apply_return(self, event: OrderEvent, oid: str, tables: RunTables) -> list[str]:
        if event.items:
            for item in event.items:
                key = key_for_item(oid, item)
                tables.returns.upsert(key, merge_return_row(tables.returns.get(key), return_fields(event, key, item)))
            return []

        # Item-less return: existing return rows of the order and their item rows;
        # with no return rows yet, one order-level row and every item row of the order
        keys = tables.returns.keys_where("order_id", oid)
        if keys:
            item_keys = [key for key in keys if key in tables.item_events]
        else:
            keys = [item_key(oid)]
            item_keys = tables.item_events.keys_where("order_id", oid)

        for key in keys:
            tables.returns.upsert(key, merge_return_row(tables.returns.get(key), return_fields(event, key)))
        for key in item_keys:
            tables.item_events.upsert(key, merge_item_row(tables.item_events.get(key), lifecycle_fields(event, key)))

        notes = [f"applied to {len(keys)} return rows"]
        if item_keys:
            notes.append(f"applied to {len(item_keys)} item rows")
        return notes
