"""
Utility functions for timestamps and binary payload encoding.

This module provides helper functions for:
- Reading the current UTC time (the default clock for components)
- Serializing timestamps to the ISO 8601 form used on the wire and in sqlite
- Encoding and decoding base64 payloads for the direct put/get endpoints
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime to an ISO 8601 string.

    Naive datetimes are assumed to be UTC.

    Example:
        >>> isoformat(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        "2026-01-02T03:04:05+00:00"
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_isoformat(value: Optional[str]) -> Optional[datetime]:
    """Deserialize an ISO 8601 string written by ``isoformat``."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def decode_base64(payload: str) -> bytes:
    """
    Decode a base64 string, rejecting anything that is not strict base64.

    Raises:
        ValidationError: If the payload contains non-alphabet characters or
            has invalid padding
    """
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"Body is not valid base64: {exc}") from exc


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
