"""Services package"""

from .firebase_service import FirebaseService
from .history_service import HistoryService, Subscription
from .live_feed import LiveFeed, DeviceMonitor
from .sensor_logging import SensorLogger
from .reconciliation import ReconciliationJob, DeviceWriteLogger
from .cron_server import CronServer
from .field_service import FieldService, FieldServiceError
from .weather_service import WeatherService, WeatherPoller

__all__ = [
    'FirebaseService', 'HistoryService', 'Subscription', 'LiveFeed', 'DeviceMonitor',
    'SensorLogger', 'ReconciliationJob', 'DeviceWriteLogger', 'CronServer',
    'FieldService', 'FieldServiceError', 'WeatherService', 'WeatherPoller',
]
