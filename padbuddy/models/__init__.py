"""Models package"""

from .records import (
    Field,
    Paddy,
    LogEntry,
    DeviceNPK,
    DeviceGPS,
    WeatherSnapshot,
    DeviceLiveState,
    FieldStatus,
    SourceTag,
    LogOrigin,
)
from .status import DeviceHealth, DeviceHeartbeat, DeviceStatusResult

__all__ = [
    'Field', 'Paddy', 'LogEntry', 'DeviceNPK', 'DeviceGPS', 'WeatherSnapshot',
    'DeviceLiveState', 'FieldStatus', 'SourceTag', 'LogOrigin',
    'DeviceHealth', 'DeviceHeartbeat', 'DeviceStatusResult',
]
