from datetime import datetime, timezone

import pytest

from padbuddy.utils.timestamps import (
    TimeRange,
    format_minutes_ago,
    format_time_ago,
    format_timestamp,
    normalize_timestamp,
    to_epoch_ms,
)

from conftest import NOW


@pytest.mark.parametrize("raw, expected", [
    (None, None),
    (5000, None),                      # relative ESP32 counter
    (946684799, None),                 # just before 2000 in seconds
    (1_700_000_000, 1_700_000_000_000),
    (1_700_000_000.5, 1_700_000_000_500),
    (1_700_000_000_000, 1_700_000_000_000),
])
def test_normalize_timestamp(raw, expected):
    assert normalize_timestamp(raw) == expected


def test_to_epoch_ms_accepts_store_shapes():
    dt = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert to_epoch_ms(dt) == NOW
    assert to_epoch_ms(dt.replace(tzinfo=None)) == NOW
    assert to_epoch_ms("2023-11-14T22:13:20Z") == NOW
    assert to_epoch_ms(1_700_000_000) == NOW
    assert to_epoch_ms("not a date") is None
    assert to_epoch_ms(True) is None


def test_format_timestamp_labels():
    assert format_timestamp(None) == "Unknown"
    assert format_timestamp(0) == "Unknown"
    assert format_timestamp(1234) == "Timestamp: 1234"
    assert "2023" in format_timestamp(1_700_000_000)


def test_format_time_ago():
    assert format_time_ago(NOW - 30_000, NOW) == "Just now"
    assert format_time_ago(NOW - 5 * 60_000, NOW) == "5m ago"
    assert format_time_ago(NOW - 3 * 3_600_000, NOW) == "3h ago"
    assert format_time_ago(NOW - 2 * 86_400_000, NOW) == "2d ago"


def test_format_minutes_ago():
    assert format_minutes_ago(None) == "No connection"
    assert format_minutes_ago(0) == "Just now"
    assert format_minutes_ago(7) == "7m ago"
    assert format_minutes_ago(125) == "2h ago"
    assert format_minutes_ago(3000) == "2d ago"


def test_time_range_start():
    assert TimeRange.ALL.start_for(NOW) == 0
    assert TimeRange.LAST_7_DAYS.start_for(NOW) == NOW - 7 * 86_400_000
    assert TimeRange("30d").days == 30
    assert TimeRange.LAST_90_DAYS.start_datetime(NOW).tzinfo is not None
