"""Tests for run-scoped telemetry and loggers"""

from __future__ import annotations

import logging

from orderq.observability.logging import get_logger, get_run_logger
from orderq.observability.telemetry import Telemetry


def test_counter_accumulates():
    telemetry = Telemetry()

    telemetry.counter("orders.classified.Ordered")
    value = telemetry.counter("orders.classified.Ordered", 2)

    assert value == 3
    assert telemetry.counters == {"orders.classified.Ordered": 3}


def test_time_block_records_duration():
    telemetry = Telemetry()

    with telemetry.time_block("step"):
        pass
    with telemetry.time_block("step"):
        pass

    assert len(telemetry.durations["step"]) == 2
    assert telemetry.total_seconds("step") >= 0
    assert telemetry.total_seconds("never") == 0


def test_time_block_records_on_error():
    telemetry = Telemetry()

    try:
        with telemetry.time_block("failing"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert len(telemetry.durations["failing"]) == 1


def test_instances_do_not_share_state():
    first, second = Telemetry(), Telemetry()
    first.counter("x")

    assert second.counters == {}


def test_log_event_goes_to_injected_logger(caplog):
    telemetry = Telemetry(get_logger("orderq.test"))

    with caplog.at_level(logging.INFO, logger="orderq.test"):
        telemetry.log_event("orders.sync.run_complete", fetched=3)

    assert "event=orders.sync.run_complete" in caplog.text
    assert "'fetched': 3" in caplog.text


def test_run_logger_prefixes_run_id(caplog):
    log = get_run_logger("abc123", name="orderq.test.run")

    with caplog.at_level(logging.INFO, logger="orderq.test.run"):
        log.info("Fetched %d candidate messages", 2)

    assert "[run=abc123] Fetched 2 candidate messages" in caplog.text
