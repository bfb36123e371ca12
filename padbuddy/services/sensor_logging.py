"""Sensor logging - append readings to a paddy's Firestore log"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from google.cloud.firestore import SERVER_TIMESTAMP

from ..models import DeviceNPK, LogOrigin
from ..models.records import AUTO_LOG_DEDUPE_MS
from ..utils.timestamps import now_ms
from .firebase_service import log_store_error
from .history_service import paddy_logs_path

logger = logging.getLogger(__name__)

EXTENDED_READING_KEYS = ("nitrogen", "phosphorus", "potassium", "temperature", "humidity", "waterLevel")


class SensorLogger:
    """Writes readings observed by the app into the historical log.

    Failures are logged and reported as False; a missed write never breaks
    the page that triggered it.
    """

    def __init__(self, firestore_db):
        self.firestore_db = firestore_db
        self._last_logs: Dict[str, Tuple[tuple, int]] = {}
        self._lock = threading.Lock()

    def log_sensor_readings(self, user_id: str, field_id: str, paddy_id: str, npk: Optional[DeviceNPK],
                            origin: LogOrigin = LogOrigin.LIVE_FEED) -> bool:
        """Append an NPK reading, converting n/p/k to the Firestore field names"""
        if npk is None or not npk.has_values():
            return False

        payload = {
            "nitrogen": npk.n,
            "phosphorus": npk.p,
            "potassium": npk.k,
            "timestamp": SERVER_TIMESTAMP,
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "deviceTimestamp": npk.timestamp,
            "source": LogOrigin(origin).value,
        }
        return self._append(user_id, field_id, paddy_id, payload)

    def log_readings(self, user_id: str, field_id: str, paddy_id: str, readings: Dict[str, Optional[float]],
                     origin: LogOrigin = LogOrigin.MANUAL) -> bool:
        """Append the extended reading shape used by the manual 'log now' action"""
        values = {k: readings.get(k) for k in EXTENDED_READING_KEYS if readings.get(k) is not None}
        if not values:
            return False

        payload = {
            **values,
            "timestamp": SERVER_TIMESTAMP,
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "source": LogOrigin(origin).value,
        }
        if readings.get("timestamp") is not None:
            payload["deviceTimestamp"] = readings["timestamp"]
        return self._append(user_id, field_id, paddy_id, payload)

    def auto_log(self, user_id: str, field_id: str, paddy_id: str, npk: Optional[DeviceNPK],
                 now: Optional[int] = None) -> bool:
        """Log every live update, skipping a repeat of the same values within one second"""
        if npk is None or not npk.has_values():
            return False

        now = now_ms() if now is None else now
        key = f"{user_id}_{field_id}_{paddy_id}"
        with self._lock:
            last = self._last_logs.get(key)
            if last and last[0] == npk.signature() and now - last[1] < AUTO_LOG_DEDUPE_MS:
                return False
            self._last_logs[key] = (npk.signature(), now)

        return self.log_sensor_readings(user_id, field_id, paddy_id, npk, LogOrigin.LIVE_FEED)

    def _append(self, user_id: str, field_id: str, paddy_id: str, payload: dict) -> bool:
        path = paddy_logs_path(user_id, field_id, paddy_id)
        try:
            self.firestore_db.collection(path).add(payload)
            logger.info(f"Sensor readings logged for paddy {paddy_id}")
            return True
        except Exception as e:
            log_store_error(f"Error logging sensor readings to {path}", e)
            return False
