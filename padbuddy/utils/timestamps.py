"""Timestamp helpers for device and Firestore times.

Devices report time either in seconds or milliseconds, and ESP32 boards
that have not synced NTP report a small relative counter instead. Firestore
hands back ``datetime`` objects (``DatetimeWithNanoseconds``). Everything
inside the application is carried as epoch milliseconds.
"""

import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

YEAR_2000_SECONDS = 946684800
YEAR_2000_MS = 946684800000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def normalize_timestamp(ts: Optional[float]) -> Optional[int]:
    """Normalize a device timestamp to epoch milliseconds.

    Returns None when the value cannot be an absolute time (anything before
    the year 2000 in seconds), which callers render as a raw label.
    """
    if ts is None:
        return None
    if ts < YEAR_2000_SECONDS:
        return None
    if ts < YEAR_2000_MS:
        return int(ts * 1000)
    return int(ts)


def to_epoch_ms(value: Any) -> Optional[int]:
    """Convert a datetime, Firestore timestamp, ISO string or number to epoch ms"""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value < YEAR_2000_MS:
            return int(value * 1000)
        return int(value)
    if isinstance(value, str):
        try:
            return to_epoch_ms(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    # google.protobuf Timestamp and similar
    to_datetime = getattr(value, "ToDatetime", None)
    if callable(to_datetime):
        return to_epoch_ms(to_datetime())
    return None


def format_timestamp(ts: Optional[float]) -> str:
    """Human readable label for a device timestamp"""
    if not ts:
        return "Unknown"

    normalized = normalize_timestamp(ts)
    if normalized is None:
        return f"Timestamp: {ts}"

    try:
        date = datetime.fromtimestamp(normalized / 1000)
    except (OverflowError, OSError, ValueError):
        return f"Timestamp: {ts}"
    return date.strftime("%b %d, %Y, %I:%M:%S %p")


def format_time_ago(timestamp_ms: int, now: Optional[int] = None) -> str:
    """Relative age string, e.g. '5m ago'"""
    now = now_ms() if now is None else now
    seconds = (now - timestamp_ms) // 1000

    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    if seconds < 604800:
        return f"{seconds // 86400}d ago"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%m/%d/%Y")


def format_minutes_ago(minutes: Optional[int]) -> str:
    """Status-card label for a heartbeat age in minutes"""
    if minutes is None:
        return "No connection"
    if minutes <= 0:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 1440:
        return f"{minutes // 60}h ago"
    return f"{minutes // 1440}d ago"


class TimeRange(str, Enum):
    """History window selectable on device pages"""
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    ALL = "all"

    @property
    def days(self) -> Optional[int]:
        return {"7d": 7, "30d": 30, "90d": 90}.get(self.value)

    def start_for(self, now: Optional[int] = None) -> int:
        """Start of the window in epoch ms (0 for 'all')"""
        if self.days is None:
            return 0
        now = now_ms() if now is None else now
        return now - int(timedelta(days=self.days).total_seconds() * 1000)

    def start_datetime(self, now: Optional[int] = None) -> datetime:
        return datetime.fromtimestamp(self.start_for(now) / 1000, tz=timezone.utc)
