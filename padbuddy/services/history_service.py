"""History service - historical sensor logs from Firestore"""

import logging
from typing import Callable, List, Optional

from google.cloud.firestore_v1.base_query import FieldFilter

from ..models import LogEntry, SourceTag
from ..utils.timestamps import TimeRange, now_ms
from .firebase_service import log_store_error
from .reading_merger import MergedReadings, merge_readings

logger = logging.getLogger(__name__)


def paddy_logs_path(user_id: str, field_id: str, paddy_id: str) -> str:
    return f"users/{user_id}/fields/{field_id}/paddies/{paddy_id}/logs"


def device_logs_path(device_id: str) -> str:
    return f"deviceLogs/{device_id}/readings"


class Subscription:
    """Disposable handle for one or more store listeners"""

    def __init__(self, handles=None, on_close: Optional[Callable[[], None]] = None):
        self._handles = list(handles or [])
        self._on_close = on_close
        self.closed = False

    def add(self, handle):
        self._handles.append(handle)

    def close(self):
        """Tear down every listener; safe to call twice"""
        if self.closed:
            return
        self.closed = True
        for handle in self._handles:
            try:
                if hasattr(handle, "unsubscribe"):
                    handle.unsubscribe()
                elif hasattr(handle, "close"):
                    handle.close()
                elif callable(handle):
                    handle()
            except Exception as e:
                logger.warning(f"Error stopping listener: {e}")
        self._handles = []
        if self._on_close:
            self._on_close()


class HistoryService:
    """Reads paddy logs and device-level fallback logs for a time window"""

    def __init__(self, firestore_db):
        self.firestore_db = firestore_db

    def _query(self, path: str, time_range: TimeRange, now: Optional[int]):
        collection = self.firestore_db.collection(path)
        if time_range == TimeRange.ALL:
            # Unfiltered: avoids requiring a composite index
            return collection
        return collection.where(filter=FieldFilter("timestamp", ">=", time_range.start_datetime(now)))

    @staticmethod
    def _to_entries(docs, source_tag: SourceTag, start_ms: int) -> List[LogEntry]:
        entries = []
        for doc in docs:
            entry = LogEntry.from_document(doc.id, doc.to_dict(), source_tag)
            if entry is not None and entry.timestamp >= start_ms:
                entries.append(entry)
        return entries

    def _fetch(self, path: str, source_tag: SourceTag, time_range: TimeRange, now: Optional[int]) -> List[LogEntry]:
        now = now_ms() if now is None else now
        try:
            docs = self._query(path, time_range, now).stream()
            entries = self._to_entries(docs, source_tag, time_range.start_for(now))
            logger.debug(f"Loaded {len(entries)} {source_tag.value} log(s) from {path}")
            return entries
        except Exception as e:
            log_store_error(f"Failed to load logs from {path}", e)
            return []

    def fetch_paddy_logs(self, user_id: str, field_id: str, paddy_id: str,
                         time_range: TimeRange = TimeRange.LAST_7_DAYS, now: Optional[int] = None) -> List[LogEntry]:
        return self._fetch(paddy_logs_path(user_id, field_id, paddy_id), SourceTag.PADDY, TimeRange(time_range), now)

    def fetch_device_logs(self, device_id: str, time_range: TimeRange = TimeRange.LAST_7_DAYS,
                          now: Optional[int] = None) -> List[LogEntry]:
        if not device_id:
            return []
        return self._fetch(device_logs_path(device_id), SourceTag.DEVICE, TimeRange(time_range), now)

    def fetch_history(self, user_id: str, field_id: str, paddy_id: str, device_id: Optional[str],
                      time_range: TimeRange = TimeRange.LAST_7_DAYS, live: Optional[List[LogEntry]] = None,
                      now: Optional[int] = None) -> MergedReadings:
        """Paddy logs (primary) + device logs (fallback) + optional live samples"""
        paddy_logs = self.fetch_paddy_logs(user_id, field_id, paddy_id, time_range, now)
        device_logs = self.fetch_device_logs(device_id, time_range, now)
        return merge_readings(paddy_logs, device_logs, live or [])

    def subscribe_history(self, user_id: str, field_id: str, paddy_id: str, device_id: Optional[str],
                          time_range: TimeRange, callback: Callable[[MergedReadings], None],
                          now: Optional[int] = None) -> Subscription:
        """Watch both log collections; callback gets the merged view on every change"""
        time_range = TimeRange(time_range)
        start_ms = time_range.start_for(now)
        latest = {SourceTag.PADDY: [], SourceTag.DEVICE: []}
        subscription = Subscription()

        def make_listener(source_tag: SourceTag):
            def on_snapshot(docs, changes, read_time):
                if subscription.closed:
                    return
                try:
                    latest[source_tag] = self._to_entries(docs, source_tag, start_ms)
                    callback(merge_readings(latest[SourceTag.PADDY], latest[SourceTag.DEVICE]))
                except Exception as e:
                    logger.error(f"Error in {source_tag.value} logs listener: {e}", exc_info=True)
            return on_snapshot

        paths = [(paddy_logs_path(user_id, field_id, paddy_id), SourceTag.PADDY)]
        if device_id:
            paths.append((device_logs_path(device_id), SourceTag.DEVICE))

        for path, source_tag in paths:
            try:
                handle = self._query(path, time_range, now).on_snapshot(make_listener(source_tag))
                subscription.add(handle)
            except Exception as e:
                log_store_error(f"Failed to listen to {path}", e)

        return subscription
