"""
Entity store access for the order sync tables.

The merge engine never touches the store directly. A run reads each table
once into an in-memory table (key -> record plus key -> row position), merges
into that, and writes only dirty records back at batch boundaries.

- SheetStore: protocol the destination store implements
- InMemorySheetStore: column-keyed reference store (tests, dry runs)
- EntityTable: keyed upsert table (Orders, ItemEvents, Returns)
- DetailTable: per-order replaced rows (OrderItems)
- AppendOnlyTable: audit log rows (EmailLog)
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from orderq.config import (
    EMAIL_LOG_TABLE,
    ITEM_EVENTS_TABLE,
    ORDER_ITEMS_TABLE,
    ORDERS_TABLE,
    RETURNS_TABLE,
)
from orderq.observability.logging import get_logger
from orderq.observability.telemetry import Telemetry

logger = get_logger(__name__)


class StoreError(RuntimeError):
    """Raised when the entity store cannot serve a read or write."""


class MissingTableError(StoreError):
    """Raised when a run needs a table the store does not have."""

    def __init__(self, name: str) -> None:
        self.table = name
        super().__init__(f"table not found: {name}")


@dataclass
class TableSnapshot:
    """Headers and rows of one table as read at run start."""

    headers: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)


class SheetStore(Protocol):
    """Column-keyed, self-describing tabular store."""

    def read_table(self, name: str) -> TableSnapshot:
        """Full header list and every row of a table.

        Raises:
            MissingTableError: Unknown table
        """
        ...

    def append_headers(self, name: str, headers: list[str]) -> None:
        """Add columns to the end of a table's header row."""
        ...

    def write_row(self, name: str, position: int | None, row: Mapping[str, Any]) -> int:
        """Overwrite the row at `position`, or append when None. Returns the position."""
        ...

    def append_rows(self, name: str, rows: list[Mapping[str, Any]]) -> None:
        """Bulk append (append-only log tables)."""
        ...

    def replace_rows(self, name: str, key_column: str, key_value: str, rows: list[Mapping[str, Any]]) -> None:
        """Delete every row whose `key_column` equals `key_value`, then append `rows`."""
        ...


def to_cell(value: Any) -> Any:
    """Flatten a record value into a storable scalar ("" for unknown)."""
    if value is None:
        return ""
    if isinstance(value, float) and not math.isfinite(value):
        return ""
    if isinstance(value, (str, int, float)):
        return value
    return str(value)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


DEFAULT_TABLE_HEADERS: dict[str, list[str]] = {
    ORDERS_TABLE: ["order_id", "status", "status_changed_at", "status_history"],
    ORDER_ITEMS_TABLE: ["order_id", "item_key", "position"],
    ITEM_EVENTS_TABLE: ["item_key", "order_id", "status", "status_changed_at", "status_history"],
    RETURNS_TABLE: ["item_key", "order_id", "status", "status_changed_at", "status_history"],
    EMAIL_LOG_TABLE: ["message_id", "thread_id", "detected_type", "order_id", "parse_result", "notes"],
}


class InMemorySheetStore:
    """
    Reference SheetStore kept in process memory.

    Rows are stored as lists aligned with the header row, like a sheet, so
    writing a field the headers do not have is a StoreError.
    """

    def __init__(self) -> None:
        self._headers: dict[str, list[str]] = {}
        self._rows: dict[str, list[list[Any]]] = {}

    @classmethod
    def with_default_tables(cls) -> InMemorySheetStore:
        store = cls()
        for name, headers in DEFAULT_TABLE_HEADERS.items():
            store.create_table(name, headers)
        return store

    def create_table(self, name: str, headers: Iterable[str] = ()) -> None:
        self._headers[name] = list(headers)
        self._rows[name] = []

    def _require(self, name: str) -> list[str]:
        if name not in self._headers:
            raise MissingTableError(name)
        return self._headers[name]

    def _to_cells(self, name: str, row: Mapping[str, Any]) -> list[Any]:
        headers = self._require(name)
        unknown = [column for column in row if column not in headers]
        if unknown:
            raise StoreError(f"{name}: unknown columns {unknown}")
        return [to_cell(row.get(column)) for column in headers]

    def read_table(self, name: str) -> TableSnapshot:
        headers = list(self._require(name))
        rows = []
        for cells in self._rows[name]:
            padded = cells + [""] * (len(headers) - len(cells))
            rows.append(dict(zip(headers, padded)))
        return TableSnapshot(headers=headers, rows=rows)

    def append_headers(self, name: str, headers: list[str]) -> None:
        current = self._require(name)
        current.extend(h for h in headers if h not in current)

    def write_row(self, name: str, position: int | None, row: Mapping[str, Any]) -> int:
        cells = self._to_cells(name, row)
        rows = self._rows[name]
        if position is None:
            rows.append(cells)
            return len(rows) - 1
        if not 0 <= position < len(rows):
            raise StoreError(f"{name}: row position {position} out of range")
        rows[position] = cells
        return position

    def append_rows(self, name: str, rows: list[Mapping[str, Any]]) -> None:
        cells = [self._to_cells(name, row) for row in rows]
        self._rows[name].extend(cells)

    def replace_rows(self, name: str, key_column: str, key_value: str, rows: list[Mapping[str, Any]]) -> None:
        headers = self._require(name)
        if key_column not in headers:
            raise StoreError(f"{name}: unknown key column {key_column}")
        index = headers.index(key_column)
        cells = [self._to_cells(name, row) for row in rows]
        kept = [r for r in self._rows[name] if index >= len(r) or r[index] != key_value]
        self._rows[name] = kept + cells


# ---------------------------------------------------------------------------
# Run-scoped tables
# ---------------------------------------------------------------------------


def _missing_headers(headers: list[str], rows: Iterable[Mapping[str, Any]]) -> list[str]:
    missing: list[str] = []
    for row in rows:
        for column in row:
            if column not in headers and column not in missing:
                missing.append(column)
    return missing


class EntityTable:
    """
    Keyed snapshot of one entity table.

    Records are flat dicts; `upsert` marks a key dirty and `flush` writes the
    dirty records back at their original positions (new keys are appended),
    extending the header row first when a record introduced new fields.
    """

    def __init__(self, name: str, key_column: str, snapshot: TableSnapshot, telemetry: Telemetry | None = None):
        self.name = name
        self.key_column = key_column
        self.headers = list(snapshot.headers)
        self.telemetry = telemetry or Telemetry(logger)
        self._records: dict[str, dict[str, Any]] = {}
        self._positions: dict[str, int] = {}
        self._dirty: list[str] = []

        for position, row in enumerate(snapshot.rows):
            key = str(row.get(key_column) or "").strip()
            if not key:
                continue
            if key in self._records:
                logger.warning("%s: duplicate key %s at row %d ignored", name, key, position)
                continue
            self._records[key] = dict(row)
            self._positions[key] = position

    @classmethod
    def load(cls, store: SheetStore, name: str, key_column: str, telemetry: Telemetry | None = None) -> EntityTable:
        return cls(name, key_column, store.read_table(name), telemetry)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def get(self, key: str) -> dict[str, Any] | None:
        record = self._records.get(key)
        return dict(record) if record is not None else None

    def upsert(self, key: str, record: Mapping[str, Any]) -> None:
        stored = dict(record)
        stored[self.key_column] = key
        self._records[key] = stored
        if key not in self._dirty:
            self._dirty.append(key)

    def keys_where(self, column: str, value: Any) -> list[str]:
        return [key for key, record in self._records.items() if record.get(column) == value]

    @property
    def dirty_count(self) -> int:
        return len(self._dirty)

    def flush(self, store: SheetStore) -> int:
        """
        Write dirty records back.

        Side Effects:
            - May append headers to the store table
            - Writes one row per dirty record
        """
        if not self._dirty:
            return 0

        dirty = [self._records[key] for key in self._dirty]
        new_headers = _missing_headers(self.headers, dirty)
        if new_headers:
            store.append_headers(self.name, new_headers)
            self.headers.extend(new_headers)
            logger.info("%s: added columns %s", self.name, new_headers)

        for key in self._dirty:
            row = {column: to_cell(value) for column, value in self._records[key].items()}
            self._positions[key] = store.write_row(self.name, self._positions.get(key), row)

        written = len(self._dirty)
        self._dirty.clear()
        self.telemetry.counter(f"store.{self.name}.rows_written", written)
        return written


class DetailTable:
    """Rows grouped by a parent key and replaced wholesale per parent."""

    def __init__(self, name: str, key_column: str, snapshot: TableSnapshot, telemetry: Telemetry | None = None):
        self.name = name
        self.key_column = key_column
        self.headers = list(snapshot.headers)
        self.telemetry = telemetry or Telemetry(logger)
        self._pending: dict[str, list[dict[str, Any]]] = {}

    @classmethod
    def load(cls, store: SheetStore, name: str, key_column: str, telemetry: Telemetry | None = None) -> DetailTable:
        return cls(name, key_column, store.read_table(name), telemetry)

    def replace(self, key_value: str, rows: list[Mapping[str, Any]]) -> None:
        """Queue a replacement; a later replacement in the same run wins."""
        self._pending[key_value] = [dict(row) for row in rows]

    @property
    def dirty_count(self) -> int:
        return sum(len(rows) for rows in self._pending.values())

    def flush(self, store: SheetStore) -> int:
        if not self._pending:
            return 0

        new_headers = _missing_headers(self.headers, (r for rows in self._pending.values() for r in rows))
        if new_headers:
            store.append_headers(self.name, new_headers)
            self.headers.extend(new_headers)

        written = 0
        for key_value, rows in self._pending.items():
            cells = [{column: to_cell(value) for column, value in row.items()} for row in rows]
            store.replace_rows(self.name, self.key_column, key_value, cells)
            written += len(cells)

        self._pending.clear()
        self.telemetry.counter(f"store.{self.name}.rows_written", written)
        return written


class AppendOnlyTable:
    """Buffered appends for log tables; rows are never read back or merged."""

    def __init__(self, name: str, snapshot: TableSnapshot, telemetry: Telemetry | None = None):
        self.name = name
        self.headers = list(snapshot.headers)
        self.telemetry = telemetry or Telemetry(logger)
        self._buffer: list[dict[str, Any]] = []

    def append(self, row: Mapping[str, Any]) -> None:
        self._buffer.append(dict(row))

    @property
    def dirty_count(self) -> int:
        return len(self._buffer)

    def flush(self, store: SheetStore) -> int:
        if not self._buffer:
            return 0

        new_headers = _missing_headers(self.headers, self._buffer)
        if new_headers:
            store.append_headers(self.name, new_headers)
            self.headers.extend(new_headers)

        rows = [{column: to_cell(value) for column, value in row.items()} for row in self._buffer]
        store.append_rows(self.name, rows)
        written = len(rows)
        self._buffer.clear()
        self.telemetry.counter(f"store.{self.name}.rows_written", written)
        return written
