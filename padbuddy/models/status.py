"""Device health models"""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional


class DeviceHealth(str, Enum):
    """Coarse status shown as a badge wherever a device appears"""
    LOADING = "loading"
    OFFLINE = "offline"
    SENSOR_ISSUE = "sensor-issue"
    OK = "ok"

    @property
    def badge(self) -> str:
        return _BADGES[self]

    @property
    def color(self) -> str:
        return _COLORS[self]

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_BADGES = {
    DeviceHealth.LOADING: "Loading",
    DeviceHealth.OFFLINE: "Offline",
    DeviceHealth.SENSOR_ISSUE: "Sensor Issue",
    DeviceHealth.OK: "Connected",
}

_COLORS = {
    DeviceHealth.LOADING: "gray",
    DeviceHealth.OFFLINE: "red",
    DeviceHealth.SENSOR_ISSUE: "yellow",
    DeviceHealth.OK: "green",
}

_MESSAGES = {
    DeviceHealth.LOADING: "Checking device status...",
    DeviceHealth.OFFLINE: "Device is offline. Check power and network connection.",
    DeviceHealth.SENSOR_ISSUE: "Device connected but sensor readings unavailable. Check sensor connections.",
    DeviceHealth.OK: "All systems operational",
}


@dataclass
class DeviceHeartbeat:
    """Result of the heartbeat checks against a device's live state"""
    is_alive: bool
    last_seen: Optional[str] = None
    minutes_ago: Optional[int] = None

    def to_dict(self):
        """Convert to dictionary"""
        return asdict(self)


@dataclass
class DeviceStatusResult:
    """Full status card for one device"""
    status: DeviceHealth
    last_update: str
    heartbeat: DeviceHeartbeat
    readings: Dict[str, Any] = field(default_factory=dict)

    @property
    def badge(self) -> str:
        return self.status.badge

    @property
    def color(self) -> str:
        return self.status.color

    @property
    def message(self) -> str:
        return self.status.message

    def to_dict(self):
        """Convert to JSON-serializable dict"""
        return {
            "status": self.status.value,
            "badge": self.badge,
            "color": self.color,
            "message": self.message,
            "lastUpdate": self.last_update,
            "heartbeat": self.heartbeat.to_dict(),
            "readings": dict(self.readings),
        }
