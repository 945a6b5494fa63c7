"""Shared utility functions for DadGPT."""

from __future__ import annotations

import secrets
import time
from datetime import UTC, date, datetime

from dateutil import parser as dateutil_parser

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_last_millis = 0


def generate_id(prefix: str = "") -> str:
    """Time-sortable short id: base36 millisecond timestamp + random suffix.

    Ids generated later in the same process sort after earlier ones, so
    storage listings come back in creation order.
    """
    global _last_millis
    millis = max(int(time.time() * 1000), _last_millis + 1)
    _last_millis = millis
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = _ALPHABET[rem] + stamp
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    ident = f"{stamp}{suffix}"
    return f"{prefix}_{ident}" if prefix else ident


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_date(value: str | None) -> date | None:
    """Parse a loose date string ("2025-06-15", "June 15 2025"); None if unparseable."""
    if not value:
        return None
    try:
        return dateutil_parser.parse(value).date()
    except (ValueError, OverflowError):
        return None
