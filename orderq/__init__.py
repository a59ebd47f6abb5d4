"""OrderQ - Order, shipment and return tracking from notification emails"""

from __future__ import annotations

__version__ = "0.1.0"


# Lazy imports so lightweight modules load without the whole pipeline
def __getattr__(name: str):
    """
    Lazy imports to avoid loading the whole pipeline when only importing
    lightweight modules.
    """
    if name in ("OrderSyncService", "RunSummary", "ListMessageSource"):
        from orderq.orders import service

        return getattr(service, name)

    if name == "InMemorySheetStore":
        from orderq.orders.repository import InMemorySheetStore

        return InMemorySheetStore

    if name in ("RunConfig", "load_run_config"):
        from orderq import config

        return getattr(config, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "InMemorySheetStore",
    "ListMessageSource",
    "OrderSyncService",
    "RunConfig",
    "RunSummary",
    "load_run_config",
]
