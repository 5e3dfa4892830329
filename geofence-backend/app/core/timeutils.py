"""Time helpers: UTC stamps, epoch milliseconds and IST display strings."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    return int(time.time() * 1000)


def format_ist(value: datetime | int | float | None) -> str | None:
    """Render a datetime or epoch-millis value as ``5 Jan 2025 | 13:04:05`` in IST."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    else:
        dt = datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    local = dt.astimezone(IST)
    return f"{local.day} {local.strftime('%b %Y | %H:%M:%S')}"
