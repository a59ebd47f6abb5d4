"""
Address helpers for notification emails.
"""

from __future__ import annotations

import re

_ANGLE_RE = re.compile(r"<([^>]+)>")


def extract_email_address(email_address: str | None) -> str:
    """
    Extract and normalize an email address from header formats.

    Examples:
        >>> extract_email_address("Jane Doe <Jane@Example.com>")
        'jane@example.com'

        >>> extract_email_address("invalid")
        ''
    """
    if not email_address:
        return ""

    email_lower = email_address.lower().strip()

    angle_match = _ANGLE_RE.search(email_lower)
    if angle_match:
        email_lower = angle_match.group(1).strip()

    # Multiple recipients: keep the first one
    email_lower = email_lower.split(",")[0].strip()

    if "@" in email_lower:
        return email_lower
    return ""


def extract_domain_only(email_address: str | None) -> str:
    """
    Extract the domain portion (after @) of an address.

    Subdomains used for transactional mail are folded onto the registrable
    domain, so "shipment-tracking@amazon.com" and "auto-confirm@mail.amazon.com"
    both give "amazon.com".

    Examples:
        >>> extract_domain_only("auto-confirm@mail.amazon.com")
        'amazon.com'
    """
    full_email = extract_email_address(email_address)
    if "@" not in full_email:
        return ""

    domain = full_email.split("@", 1)[1]
    parts = domain.split(".")
    if len(parts) > 2 and parts[-2] in {"co", "com"} and len(parts[-1]) == 2:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])
