"""Device view - state behind one device page.

Holds the live subscription, the live sample buffer and the historical
entries for the selected time range, and merges them on demand. Every new
live sample is also written to the paddy log (auto-log).
"""

import logging
import threading
from typing import Dict, List, Optional

from ..models import DeviceStatusResult, LogEntry
from ..services.device_health import classify_device
from ..services.history_service import HistoryService, Subscription
from ..services.live_feed import LiveFeed, LiveNPKState
from ..services.reading_merger import LiveReadingBuffer, MergedReadings, merge_readings
from ..services.sensor_logging import SensorLogger
from ..utils.timestamps import TimeRange

logger = logging.getLogger(__name__)


class DeviceView:
    """View-model for one paddy's device"""

    def __init__(self, firestore_db, root_ref, user_id: str, field_id: str, paddy_id: str, device_id: str,
                 time_range: TimeRange = TimeRange.LAST_7_DAYS, auto_log: bool = True,
                 buffer_size: Optional[int] = None):
        self.user_id = user_id
        self.field_id = field_id
        self.paddy_id = paddy_id
        self.device_id = device_id
        self.time_range = TimeRange(time_range)
        self.auto_log = auto_log

        self.history = HistoryService(firestore_db)
        self.live_feed = LiveFeed(root_ref)
        self.sensor_logger = SensorLogger(firestore_db)
        self.buffer = LiveReadingBuffer(buffer_size)

        self.live_state = LiveNPKState()
        self.historical: List[LogEntry] = []
        self._history_sub: Optional[Subscription] = None
        self._live_sub: Optional[Subscription] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._live_sub is not None

    def open(self):
        """Start the live and historical subscriptions"""
        if self.is_open:
            return self
        logger.info(f"Opening device view for {self.device_id} (paddy {self.paddy_id})")
        self._history_sub = self._subscribe_history()
        self._live_sub = self.live_feed.subscribe(self.device_id, self._on_live_update)
        return self

    def close(self):
        """Tear down both subscriptions; safe to call twice"""
        for sub in (self._history_sub, self._live_sub):
            if sub is not None:
                sub.close()
        self._history_sub = None
        self._live_sub = None

    def set_time_range(self, time_range: TimeRange):
        """Switch the history window and resubscribe"""
        time_range = TimeRange(time_range)
        if time_range == self.time_range:
            return
        self.time_range = time_range
        with self._lock:
            self.historical = []
        if self._history_sub is not None:
            self._history_sub.close()
            self._history_sub = self._subscribe_history()

    def refresh_history(self):
        """One-shot reload, for callers that do not keep the listeners open"""
        merged = self.history.fetch_history(self.user_id, self.field_id, self.paddy_id, self.device_id,
                                            self.time_range)
        with self._lock:
            self.historical = merged.descending

    def merged(self, chart_points: Optional[int] = None) -> MergedReadings:
        with self._lock:
            historical = list(self.historical)
        if chart_points is None:
            return merge_readings(historical, self.buffer.entries())
        return merge_readings(historical, self.buffer.entries(), chart_points=chart_points)

    def status(self, now: Optional[int] = None) -> DeviceStatusResult:
        return classify_device(self.live_state.data, loading=self.live_state.loading, now=now)

    def log_now(self, extra: Optional[Dict[str, float]] = None) -> bool:
        """Manual 'log now': current live values plus any ambient readings"""
        data = self.live_state.data
        if data is None or data.npk is None:
            logger.warning(f"No live reading to log for device {self.device_id}")
            return False

        readings = {
            "nitrogen": data.npk.n,
            "phosphorus": data.npk.p,
            "potassium": data.npk.k,
            "temperature": data.temperature,
            "humidity": data.humidity,
            "timestamp": data.npk.timestamp,
        }
        readings.update(extra or {})
        return self.sensor_logger.log_readings(self.user_id, self.field_id, self.paddy_id, readings)

    def _subscribe_history(self) -> Subscription:
        return self.history.subscribe_history(
            self.user_id, self.field_id, self.paddy_id, self.device_id, self.time_range, self._on_history
        )

    def _on_history(self, merged: MergedReadings):
        with self._lock:
            self.historical = merged.descending

    def _on_live_update(self, state: LiveNPKState):
        self.live_state = state
        if state.data is None or state.data.npk is None:
            return

        entry = self.buffer.push(state.data.npk)
        if entry is not None and self.auto_log:
            self.sensor_logger.auto_log(self.user_id, self.field_id, self.paddy_id, state.data.npk)
