"""
Pydantic models for the Firestore and Realtime Database records.

Firestore documents and RTDB nodes are schema-free and carry several
generations of field names; every shape is normalized here, at the
boundary, so services only ever see these models.
"""

from pydantic import BaseModel, Field as PydField
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from ..utils.timestamps import normalize_timestamp, to_epoch_ms

# =============================================================================
# SYSTEM CONSTANTS
# =============================================================================

RECONCILE_DEDUPE_WINDOW_MS = 5 * 60 * 1000  # scheduled job: same values within 5 minutes
ONLINE_THRESHOLD_MS = 10 * 60 * 1000  # heartbeat / connectedAt freshness
RELATIVE_COUNTER_LIMIT = 10000  # ESP32 uptime counter before NTP sync
AUTO_LOG_DEDUPE_MS = 1000
WEATHER_CACHE_MAX_AGE_MS = 10 * 60 * 1000
CHART_POINTS = 10

NPK_BLOCK_KEYS = ("npk", "sensors", "readings")
LIVE_NPK_BLOCK_KEYS = ("npk", "readings", "sensors")
NITROGEN_KEYS = ("n", "nitrogen", "N")
PHOSPHORUS_KEYS = ("p", "phosphorus", "P")
POTASSIUM_KEYS = ("k", "potassium", "K")
TIMESTAMP_KEYS = ("timestamp", "lastUpdate", "ts")


def first_present(source: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    """First non-null value among several legacy key names"""
    for key in keys:
        value = source.get(key)
        if value is not None:
            return value
    return None


# =============================================================================
# ENUMS
# =============================================================================

class FieldStatus(str, Enum):
    ACTIVE = "active"
    CONCLUDED = "concluded"
    HARVESTED = "harvested"


class SourceTag(str, Enum):
    """Which path a reading came through when merged for display"""
    PADDY = "paddy"
    DEVICE = "device"
    LIVE = "live"


class LogOrigin(str, Enum):
    """Writer provenance stored in the log document's ``source`` field"""
    LIVE_FEED = "live-feed"
    MANUAL = "manual"
    SCHEDULED_JOB = "scheduled-job"


# =============================================================================
# FIRESTORE RECORDS
# =============================================================================

class Field(BaseModel):
    id: Optional[str] = None
    field_name: str = PydField(alias="fieldName")
    rice_variety: Optional[str] = PydField(default=None, alias="riceVariety")
    start_day: Optional[str] = PydField(default=None, alias="startDay")
    description: Optional[str] = None
    status: FieldStatus = FieldStatus.ACTIVE
    created_at: Optional[Any] = PydField(default=None, alias="createdAt")
    concluded_at: Optional[str] = PydField(default=None, alias="concludedAt")
    concluded_day: Optional[int] = PydField(default=None, alias="concludedDay")
    reopened_at: Optional[str] = PydField(default=None, alias="reopenedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Field":
        data = dict(data or {})
        data.setdefault("fieldName", data.get("name") or "")
        data["status"] = data.get("status") or FieldStatus.ACTIVE.value
        return cls(id=doc_id, **data)


class Paddy(BaseModel):
    id: Optional[str] = None
    paddy_name: str = PydField(default="", alias="paddyName")
    description: Optional[str] = None
    device_id: Optional[str] = PydField(default=None, alias="deviceId")
    connected_at: Optional[Any] = PydField(default=None, alias="connectedAt")
    disconnected_at: Optional[str] = PydField(default=None, alias="disconnectedAt")
    # Resolved from the document path on reverse lookups
    user_id: Optional[str] = PydField(default=None, exclude=True)
    field_id: Optional[str] = PydField(default=None, exclude=True)

    class Config:
        populate_by_name = True

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any], path: Optional[str] = None) -> "Paddy":
        paddy = cls(id=doc_id, **{k: v for k, v in (data or {}).items() if k in _PADDY_KEYS})
        if path:
            # users/{uid}/fields/{fieldId}/paddies/{paddyId}
            parts = path.split("/")
            if len(parts) >= 6 and parts[0] == "users" and parts[2] == "fields":
                paddy.user_id = parts[1]
                paddy.field_id = parts[3]
        return paddy


_PADDY_KEYS = {"paddyName", "description", "deviceId", "connectedAt", "disconnectedAt"}


class LogEntry(BaseModel):
    """One immutable sensor reading from a paddy log, device log or live feed"""
    id: Optional[str] = None
    source_tag: SourceTag = PydField(default=SourceTag.PADDY, exclude=True)
    timestamp: int  # epoch ms
    nitrogen: Optional[float] = None
    phosphorus: Optional[float] = None
    potassium: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    water_level: Optional[float] = PydField(default=None, alias="waterLevel")
    device_timestamp: Optional[float] = PydField(default=None, alias="deviceTimestamp")
    origin: Optional[str] = PydField(default=None, alias="source")

    class Config:
        populate_by_name = True
        frozen = True

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any], source_tag: SourceTag) -> Optional["LogEntry"]:
        """Build from a Firestore log document; None when it has no usable timestamp"""
        data = data or {}
        timestamp = to_epoch_ms(data.get("timestamp"))
        if timestamp is None:
            timestamp = to_epoch_ms(data.get("createdAt"))
        if timestamp is None:
            return None
        return cls(
            id=doc_id,
            source_tag=source_tag,
            timestamp=timestamp,
            nitrogen=first_present(data, ("nitrogen", "n", "N")),
            phosphorus=first_present(data, ("phosphorus", "p", "P")),
            potassium=first_present(data, ("potassium", "k", "K")),
            temperature=data.get("temperature"),
            humidity=data.get("humidity"),
            waterLevel=data.get("waterLevel"),
            deviceTimestamp=data.get("deviceTimestamp"),
            source=data.get("source"),
        )

    def reading_signature(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        return (self.nitrogen, self.phosphorus, self.potassium)

    def has_npk(self) -> bool:
        return any(v is not None for v in self.reading_signature())


# =============================================================================
# REALTIME DATABASE RECORDS
# =============================================================================

class DeviceNPK(BaseModel):
    n: Optional[float] = None
    p: Optional[float] = None
    k: Optional[float] = None
    timestamp: Optional[float] = None

    @classmethod
    def from_raw(cls, source: Optional[Dict[str, Any]]) -> Optional["DeviceNPK"]:
        """Normalize an NPK block, None when no nutrient value is present"""
        if not isinstance(source, dict):
            return None
        npk = cls(
            n=first_present(source, NITROGEN_KEYS),
            p=first_present(source, PHOSPHORUS_KEYS),
            k=first_present(source, POTASSIUM_KEYS),
            timestamp=first_present(source, TIMESTAMP_KEYS),
        )
        return npk if npk.has_values() else None

    def has_values(self) -> bool:
        return self.n is not None or self.p is not None or self.k is not None

    def signature(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        return (self.n, self.p, self.k)

    @property
    def timestamp_ms(self) -> Optional[int]:
        return normalize_timestamp(self.timestamp)


def extract_npk_block(raw: Optional[Dict[str, Any]], include_root: bool = False) -> Optional[Dict[str, Any]]:
    """Find the NPK-like block of a device node under its legacy names

    With include_root the live-state order is used and only a block carrying
    a nutrient value counts, since `sensors` may hold ambient readings only.
    """
    if not isinstance(raw, dict):
        return None
    if include_root:
        for key in LIVE_NPK_BLOCK_KEYS:
            block = raw.get(key)
            if isinstance(block, dict) and has_nutrient_value(block):
                return block
        return raw
    for key in NPK_BLOCK_KEYS:
        block = raw.get(key)
        if isinstance(block, dict) and block:
            return block
    return None


def has_nutrient_value(block: Dict[str, Any]) -> bool:
    return any(first_present(block, keys) is not None for keys in (NITROGEN_KEYS, PHOSPHORUS_KEYS, POTASSIUM_KEYS))


class DeviceGPS(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    alt: Optional[float] = None
    hdop: Optional[float] = None
    sats: Optional[int] = None
    ts: Optional[float] = None

    @classmethod
    def from_raw(cls, gps: Any, location: Any = None) -> Optional["DeviceGPS"]:
        if isinstance(gps, dict) and gps.get("lat") is not None and gps.get("lng") is not None:
            return cls(**{k: gps.get(k) for k in ("lat", "lng", "alt", "hdop", "sats", "ts")})
        if isinstance(location, dict):
            lat = first_present(location, ("latitude", "lat"))
            lng = first_present(location, ("longitude", "lng"))
            if lat is not None and lng is not None:
                return cls(lat=lat, lng=lng)
        return None


class WeatherSnapshot(BaseModel):
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    timestamp: int = 0
    source: str = "open-meteo"


class DeviceLiveState(BaseModel):
    """Mutable per-device state under devices/{deviceId}"""
    device_id: str = PydField(alias="deviceId")
    status: Optional[str] = None
    connected_at: Optional[str] = PydField(default=None, alias="connectedAt")
    connected_to: Optional[str] = PydField(default=None, alias="connectedTo")
    field_id: Optional[str] = PydField(default=None, alias="fieldId")
    paddy_name: Optional[str] = PydField(default=None, alias="paddyName")
    npk: Optional[DeviceNPK] = None
    gps: Optional[DeviceGPS] = None
    weather: Optional[WeatherSnapshot] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None

    class Config:
        populate_by_name = True

    @classmethod
    def from_snapshot(cls, device_id: str, raw: Optional[Dict[str, Any]]) -> Optional["DeviceLiveState"]:
        if not isinstance(raw, dict):
            return None

        status = raw.get("status")
        if status is None and isinstance(raw.get("connected"), bool):
            status = "connected" if raw["connected"] else "disconnected"

        sensors = raw.get("sensors") if isinstance(raw.get("sensors"), dict) else {}
        weather = raw.get("weather")
        connected_at = raw.get("connectedAt")

        return cls(
            deviceId=device_id,
            status=status,
            connectedAt=connected_at if isinstance(connected_at, str) else None,
            connectedTo=raw.get("connectedTo"),
            fieldId=raw.get("fieldId"),
            paddyName=raw.get("paddyName"),
            npk=DeviceNPK.from_raw(extract_npk_block(raw, include_root=True)),
            gps=DeviceGPS.from_raw(raw.get("gps"), raw.get("location")),
            weather=WeatherSnapshot(**weather) if isinstance(weather, dict) else None,
            temperature=sensors.get("temperature"),
            humidity=sensors.get("humidity"),
        )

    @property
    def connected_flag(self) -> bool:
        return self.status in ("connected", "alive")

    def has_npk(self) -> bool:
        return self.npk is not None and self.npk.has_values()
