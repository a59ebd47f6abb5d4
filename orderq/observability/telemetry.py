"""
Run-scoped telemetry.

A `Telemetry` instance is created per sync run and handed to the components
that report on it. Nothing is sent externally: events go to the logger and
counters/durations stay in memory so tests and the run summary can read them.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Iterator
from typing import Any

from orderq.observability.logging import get_logger


class Telemetry:
    """In-memory counters, structured events and labelled timings."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self.logger = logger or get_logger("orderq.telemetry")
        self.counters: dict[str, int] = {}
        self.durations: dict[str, list[float]] = {}

    def log_event(self, event_name: str, **fields: Any) -> None:
        """
        Structured log event. Caller must ensure PII is redacted.

        Side Effects:
            - Writes to logger (info level)
        """
        self.logger.info("event=%s %s", event_name, fields)

    def counter(self, name: str, increment: int = 1) -> int:
        """
        Increment a counter and emit a debug log.

        Side Effects:
            - Modifies self.counters
            - Writes to logger (debug level)
        """
        value = self.counters.get(name, 0) + increment
        self.counters[name] = value
        self.logger.debug("counter=%s value=%s", name, value)
        return value

    @contextlib.contextmanager
    def time_block(self, label: str) -> Iterator[None]:
        """
        Time a block of code under `label`.

        Side Effects:
            - Appends elapsed seconds to self.durations[label]
            - Writes to logger (debug level) with timing
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            self.logger.debug("timing=%s seconds=%.6f", label, elapsed)
            self.durations.setdefault(label, []).append(elapsed)

    def total_seconds(self, label: str) -> float:
        return sum(self.durations.get(label, []))
