"""
Datetime helper utilities to ensure consistent timezone handling across the application.

All model timestamps are timezone-naive UTC (DateTime(timezone=False)).
Anything coming from outside (webhook payloads, API input) goes through
these helpers before it touches a query or a column.
"""

from datetime import datetime, timezone
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Args:
        dt: Datetime that may be timezone-aware or naive

    Returns:
        Naive datetime in UTC, or None if input is None

    Example:
        >>> aware_dt = datetime.now(timezone.utc)
        >>> naive_dt = ensure_naive_datetime(aware_dt)
        >>> assert naive_dt.tzinfo is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Current UTC time as naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or pass through a datetime) into naive UTC.

    A trailing 'Z' is accepted. Returns None when the value cannot be parsed;
    callers decide whether that is an error.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_naive_datetime(value)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable datetime value: {value!r}")
        return None
    return ensure_naive_datetime(parsed)


def to_iso_utc(dt: Optional[datetime]) -> Optional[str]:
    """Format a naive UTC datetime as ISO-8601 with a 'Z' suffix."""
    if dt is None:
        return None
    return ensure_naive_datetime(dt).isoformat(timespec="milliseconds") + "Z"
