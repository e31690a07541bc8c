"""Timestamp helpers for backend payloads."""

import re
from datetime import datetime, timezone
from typing import Optional

# .NET serializers emit 0-7 fractional digits; older fromisoformat wants exactly 6.
_FRACTION = re.compile(r"\.(\d+)")


def now_utc() -> datetime:
    """Return current time as tz-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp into a tz-aware UTC datetime.

    Accepts strings like:
      - 2025-01-01T12:34:56Z
      - 2025-01-01T12:34:56.1234567Z
      - 2025-01-01T12:34:56+09:00
      - 2025-01-01T12:34:56 (treated as UTC)
    """
    if not isinstance(value, str) or not value:
        raise ValueError("timestamp must be a non-empty string")

    s = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip())
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_optional(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def to_iso(dt: datetime) -> str:
    """Format a tz-aware datetime as ISO 8601 UTC with 'Z'."""
    if dt.tzinfo is None:
        raise ValueError("naive datetime is not allowed; timezone-aware required")
    s = dt.astimezone(timezone.utc).isoformat(timespec="seconds")
    return s.replace("+00:00", "Z")
