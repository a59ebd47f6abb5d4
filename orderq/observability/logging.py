"""Logger factory for OrderQ modules and sync runs."""

from __future__ import annotations

import logging
import os
from collections.abc import MutableMapping
from typing import Any, Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level() -> int:
    level_name = os.getenv("ORDERQ_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; the first call attaches one stream handler to the root."""
    global _HANDLER_ATTACHED

    level = _resolve_level()
    root = logging.getLogger()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        _HANDLER_ATTACHED = True
    root.setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


class RunLogger(logging.LoggerAdapter):
    """Prefixes every record with the run id so interleaved runs stay readable."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[run={self.extra['run_id']}] {msg}", kwargs


def get_run_logger(run_id: str, name: str = "orderq.run") -> RunLogger:
    return RunLogger(get_logger(name), {"run_id": run_id})
