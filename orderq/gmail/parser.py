"""
Gmail adapter: converts `users.messages.get` payloads into EmailMessage.

Deterministic and side-effect free apart from telemetry. Parse failures are
reported with hashed ids only.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from pydantic import ValidationError

from orderq.observability.logging import get_logger
from orderq.observability.telemetry import Telemetry
from orderq.orders.types import EmailMessage
from orderq.utils.redaction import redact

logger = get_logger(__name__)

_TEXT_PLAIN = "text/plain"
_TEXT_HTML = "text/html"


class GmailParsingError(ValueError):
    """Raised when a Gmail payload cannot be converted into an EmailMessage."""


def _header_lookup(headers: Iterable[dict[str, str]], name: str) -> str | None:
    name_lower = name.lower()
    for header in headers:
        if header.get("name", "").lower() == name_lower:
            return header.get("value")
    return None


def _decode_base64(data: str) -> str:
    """Decode Gmail's URL-safe base64 payloads."""
    padding = "=" * (-len(data) % 4)
    try:
        decoded = base64.urlsafe_b64decode((data + padding).encode("utf-8"))
        return decoded.decode("utf-8", errors="replace")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise GmailParsingError("failed to decode message body") from exc


def _extract_bodies(payload: dict[str, Any]) -> tuple[str, str]:
    """
    First text/plain and first text/html part, searching nested multiparts
    depth-first.
    """
    plain: str | None = None
    html: str | None = None
    stack = [payload]
    while stack:
        part = stack.pop(0)
        mime_type = part.get("mimeType", "")
        data = (part.get("body") or {}).get("data")
        if data and mime_type == _TEXT_PLAIN and plain is None:
            plain = _decode_base64(data)
        elif data and mime_type == _TEXT_HTML and html is None:
            html = _decode_base64(data)
        stack[:0] = part.get("parts") or []
    return plain or "", html or ""


def _message_date(message: dict[str, Any], headers: list[dict[str, str]]) -> datetime:
    """`internalDate` (epoch millis) first, then the Date header."""
    internal = message.get("internalDate")
    if internal:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=UTC)
        except (TypeError, ValueError, OverflowError) as exc:
            raise GmailParsingError(f"invalid internalDate: {internal!r}") from exc

    header = _header_lookup(headers, "Date")
    if header:
        try:
            return parsedate_to_datetime(header)
        except (TypeError, ValueError) as exc:
            raise GmailParsingError("invalid Date header") from exc
    raise GmailParsingError("message date missing")


def parse_message(message: dict[str, Any], telemetry: Telemetry | None = None) -> EmailMessage:
    """
    Convert a Gmail API message (format=full) into an EmailMessage.

    Raises:
        GmailParsingError: Missing fields, undecodable body or invalid date
    """
    telemetry = telemetry or Telemetry(logger)
    if not isinstance(message, dict):
        raise GmailParsingError("message must be a dict")

    try:
        message_id = message["id"]
        payload = message["payload"]
    except KeyError as exc:
        raise GmailParsingError(f"missing field: {exc}") from exc

    headers = payload.get("headers") or []
    plain, html = _extract_bodies(payload)
    if not plain and not html:
        telemetry.counter("gmail.parse_failed.count")
        raise GmailParsingError("message body missing")

    raw = {
        "id": message_id,
        "threadId": message.get("threadId") or "",
        "subject": _header_lookup(headers, "Subject") or "",
        "plainBody": plain,
        "htmlBody": html,
        "date": _message_date(message, headers),
        "from": _header_lookup(headers, "From") or "",
        "to": _header_lookup(headers, "To") or "",
    }
    try:
        parsed = EmailMessage.model_validate(raw)
    except ValidationError as exc:
        telemetry.counter("gmail.parse_failed.count")
        telemetry.log_event("gmail.message.validation_failed", errors=exc.errors(), message_id_hash=redact(message_id))
        raise GmailParsingError("message validation failed") from exc

    telemetry.counter("gmail.parsed.count")
    return parsed


def parse_messages(messages: Iterable[dict[str, Any]], telemetry: Telemetry | None = None) -> list[EmailMessage]:
    """Convert a batch; unparseable payloads are logged and left out."""
    telemetry = telemetry or Telemetry(logger)
    parsed = []
    for message in messages:
        try:
            parsed.append(parse_message(message, telemetry))
        except GmailParsingError as exc:
            message_id = message.get("id", "") if isinstance(message, dict) else ""
            logger.warning("Skipping Gmail message %s: %s", redact(str(message_id)), exc)
    return parsed
