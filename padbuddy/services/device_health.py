"""Device health classifier.

Connectivity and data availability are separate axes: a device can keep its
network heartbeat while the NPK probe is unplugged, and that case gets its
own "Sensor Issue" badge instead of being folded into online/offline.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..models import DeviceHealth, DeviceHeartbeat, DeviceLiveState, DeviceStatusResult
from ..models.records import ONLINE_THRESHOLD_MS, RELATIVE_COUNTER_LIMIT
from ..utils.timestamps import format_minutes_ago, normalize_timestamp, now_ms

logger = logging.getLogger(__name__)


def classify_status(connected: bool, has_npk: bool, loading: bool = False, has_data: bool = True) -> DeviceHealth:
    """Map the raw axes to a badge; first matching rule wins"""
    if loading:
        return DeviceHealth.LOADING
    if not has_data and not connected:
        return DeviceHealth.OFFLINE
    if not connected:
        return DeviceHealth.OFFLINE
    if not has_npk:
        return DeviceHealth.SENSOR_ISSUE
    return DeviceHealth.OK


def classify_cached(has_heartbeat: bool, has_readings: bool) -> DeviceHealth:
    """Classifier for pages that only keep a cached hasReadings flag"""
    return classify_status(connected=has_heartbeat, has_npk=has_readings, has_data=has_heartbeat or has_readings)


def _parse_iso_ms(value: str) -> Optional[int]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def check_heartbeat(state: Optional[DeviceLiveState], now: Optional[int] = None) -> DeviceHeartbeat:
    """Decide whether a device is alive from its live state.

    Checked in order: the status flag, a recent connectedAt, a relative
    ESP32 counter in the NPK block (board is sending but has no clock),
    and an absolute NPK timestamp within the online threshold.
    """
    if state is None:
        return DeviceHeartbeat(is_alive=False)

    now = now_ms() if now is None else now
    is_alive = state.connected_flag
    last_seen = None
    minutes_ago = None

    if state.connected_at:
        connected_ms = _parse_iso_ms(state.connected_at)
        if connected_ms is not None:
            minutes_ago = max(0, (now - connected_ms) // 60000)
            last_seen = state.connected_at
            if not is_alive and now - connected_ms < ONLINE_THRESHOLD_MS:
                is_alive = True

    npk_ts = state.npk.timestamp if state.npk else None

    if not is_alive and npk_ts is not None and npk_ts < RELATIVE_COUNTER_LIMIT:
        is_alive = True
        last_seen = last_seen or "Just now"
        minutes_ago = 0

    if not is_alive and npk_ts is not None:
        npk_ms = normalize_timestamp(npk_ts)
        if npk_ms is not None and now - npk_ms < ONLINE_THRESHOLD_MS:
            is_alive = True
            minutes_ago = max(0, (now - npk_ms) // 60000)

    return DeviceHeartbeat(is_alive=is_alive, last_seen=last_seen, minutes_ago=minutes_ago)


def classify_device(state: Optional[DeviceLiveState], loading: bool = False,
                    now: Optional[int] = None) -> DeviceStatusResult:
    """Status card for a device from its live-state record"""
    heartbeat = check_heartbeat(state, now)
    readings = {}
    if state is not None and state.npk is not None:
        readings = {
            "nitrogen": state.npk.n,
            "phosphorus": state.npk.p,
            "potassium": state.npk.k,
            "timestamp": state.npk.timestamp,
        }

    connected = state is not None and state.connected_flag and heartbeat.is_alive
    status = classify_status(
        connected=connected,
        has_npk=state is not None and state.has_npk(),
        loading=loading,
        has_data=state is not None,
    )

    last_update = format_minutes_ago(heartbeat.minutes_ago) if heartbeat.last_seen else "No connection"
    return DeviceStatusResult(status=status, last_update=last_update, heartbeat=heartbeat, readings=readings)
