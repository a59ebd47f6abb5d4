"""Gmail payload adapters."""
