"""Centralized configuration for OrderQ.

Typed constants for table names, extraction windows and run limits, plus the
validated `RunConfig` a sync run is driven by. Environment variable overrides
use safe defaults so a run starts without extra env configuration.
"""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_ENV_LOADED = False

# --- Paths ---
PACKAGE_ROOT = Path(__file__).parent
MERCHANT_RULES_PATH = PACKAGE_ROOT / "data" / "merchant_rules.yaml"

# --- Tables ---
ORDERS_TABLE: str = "Orders"
ORDER_ITEMS_TABLE: str = "OrderItems"
ITEM_EVENTS_TABLE: str = "ItemEvents"
RETURNS_TABLE: str = "Returns"
EMAIL_LOG_TABLE: str = "EmailLog"

# --- Extraction ---
EXTRACT_MIN_BODY_CHARS: int = 100
EXTRACT_AMOUNT_WINDOW: int = 160
EXTRACT_DATE_WINDOW: int = 80
EXTRACT_QUANTITY_LOOKAHEAD: int = 2

# --- Run defaults ---
DEFAULT_TIMEZONE: str = "UTC"
DEFAULT_RUN_WINDOW_DAYS: int = 14
DEFAULT_MAX_THREADS: int = 100
DEFAULT_MAX_MESSAGES: int = 500
DEFAULT_WRITE_BATCH_SIZE: int = 50


class ConfigError(ValueError):
    """Raised when run configuration is missing or invalid."""


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Load the .env file exactly once.

    Side Effects:
        - Loads environment variables from .env (project root or cwd)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = PACKAGE_ROOT
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


class RunConfig(BaseModel):
    """Parameters for one sync run."""

    model_config = ConfigDict(frozen=True)

    timezone: str = Field(default=DEFAULT_TIMEZONE, description="IANA zone for event times")
    run_window_days: int = Field(default=DEFAULT_RUN_WINDOW_DAYS, ge=1)
    max_threads: int = Field(default=DEFAULT_MAX_THREADS, ge=1)
    max_messages: int = Field(default=DEFAULT_MAX_MESSAGES, ge=1)
    write_batch_size: int = Field(default=DEFAULT_WRITE_BATCH_SIZE, ge=1)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("timezone cannot be empty")
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def load_run_config(**overrides: object) -> RunConfig:
    """
    Build a RunConfig from ORDERQ_* environment variables.

    Keyword overrides win over the environment.

    Raises:
        ConfigError: If any value fails validation
    """
    ensure_env_loaded()
    values: dict[str, object] = {
        "timezone": os.getenv("ORDERQ_TIMEZONE", DEFAULT_TIMEZONE),
        "run_window_days": os.getenv("ORDERQ_RUN_WINDOW_DAYS", str(DEFAULT_RUN_WINDOW_DAYS)),
        "max_threads": os.getenv("ORDERQ_MAX_THREADS", str(DEFAULT_MAX_THREADS)),
        "max_messages": os.getenv("ORDERQ_MAX_MESSAGES", str(DEFAULT_MAX_MESSAGES)),
        "write_batch_size": os.getenv("ORDERQ_WRITE_BATCH_SIZE", str(DEFAULT_WRITE_BATCH_SIZE)),
    }
    values.update(overrides)
    try:
        return RunConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"invalid run configuration: {exc}") from exc
