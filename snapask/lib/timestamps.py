"""Millisecond timestamps.

The database stores every time as integer milliseconds since the Unix
epoch (UTC).
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def format_ms(value: int | None) -> str:
    """Format a millisecond timestamp as a local ``YYYY-MM-DD HH:MM`` string."""
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone().strftime("%Y-%m-%d %H:%M")


__all__ = ["now_ms", "format_ms"]
