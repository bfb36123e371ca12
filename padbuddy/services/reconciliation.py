"""
Reconciliation - copy live device readings into the historical log.

The live-merge and auto-log paths only run while someone has a device page
open. The scheduled job closes that gap: it walks every device in the
Realtime Database and appends its current reading to each paddy bound to it,
unless the newest log already holds the same values from the last 5 minutes.

That check is a heuristic, not a transaction: two genuinely distinct but
identical readings 4 minutes apart collapse into one, and a live-feed write
racing the job is not caught by it.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from ..models import LogOrigin
from ..models.records import (
    NITROGEN_KEYS,
    PHOSPHORUS_KEYS,
    POTASSIUM_KEYS,
    RECONCILE_DEDUPE_WINDOW_MS,
    extract_npk_block,
    first_present,
)
from ..utils.timestamps import normalize_timestamp, now_ms, to_epoch_ms
from .history_service import Subscription, device_logs_path
from .live_feed import apply_event

logger = logging.getLogger(__name__)

# Job payloads prefer the long names; devices differ in which they send
JOB_NITROGEN_KEYS = ("nitrogen", "n", "N")
JOB_PHOSPHORUS_KEYS = ("phosphorus", "p", "P")
JOB_POTASSIUM_KEYS = ("potassium", "k", "K")
JOB_TIMESTAMP_KEYS = ("lastUpdate", "timestamp", "ts")
TRIGGER_NODES = ("sensors", "npk", "readings")


@dataclass
class ExtractedReading:
    nitrogen: Optional[float]
    phosphorus: Optional[float]
    potassium: Optional[float]
    device_timestamp: Optional[float]

    def values(self):
        return (self.nitrogen, self.phosphorus, self.potassium)

    def effective_time(self, now: int) -> int:
        """Device time in ms, arrival time when the device has no real clock"""
        normalized = normalize_timestamp(self.device_timestamp)
        return normalized if normalized is not None else now


def extract_reading(block: Optional[Dict[str, Any]]) -> Optional[ExtractedReading]:
    """Normalize a raw NPK block; None when it carries no nutrient value"""
    if not isinstance(block, dict):
        return None
    reading = ExtractedReading(
        nitrogen=first_present(block, JOB_NITROGEN_KEYS),
        phosphorus=first_present(block, JOB_PHOSPHORUS_KEYS),
        potassium=first_present(block, JOB_POTASSIUM_KEYS),
        device_timestamp=first_present(block, JOB_TIMESTAMP_KEYS),
    )
    if all(v is None for v in reading.values()):
        return None
    return reading


def is_duplicate_of_last(last_log: Optional[Dict[str, Any]], reading: ExtractedReading, now: int) -> bool:
    """Same values as the newest log and within the dedupe window"""
    if not last_log:
        return False
    last_values = (
        first_present(last_log, ("nitrogen",) + NITROGEN_KEYS),
        first_present(last_log, ("phosphorus",) + PHOSPHORUS_KEYS),
        first_present(last_log, ("potassium",) + POTASSIUM_KEYS),
    )
    if last_values != reading.values():
        return False

    last_time = normalize_timestamp(last_log.get("deviceTimestamp"))
    if last_time is None:
        last_time = to_epoch_ms(last_log.get("timestamp")) or 0
    return abs(reading.effective_time(now) - last_time) < RECONCILE_DEDUPE_WINDOW_MS


@dataclass
class ReconciliationSummary:
    devices_processed: int = 0
    logged: int = 0
    errors: List[str] = field(default_factory=list)
    message: str = ""

    def to_dict(self):
        """JSON body returned by the scheduled endpoint"""
        body = {
            "success": True,
            "message": self.message or f"Processed {self.devices_processed} device(s)",
            "logged": self.logged,
        }
        if self.errors:
            body["errors"] = list(self.errors)
        return body


class ReconciliationJob:
    """Scheduled copy of RTDB readings into Firestore paddy logs"""

    def __init__(self, firestore_db, root_ref):
        self.firestore_db = firestore_db
        self.root_ref = root_ref

    def run(self, now: Optional[int] = None) -> ReconciliationSummary:
        """Process every device; per-device failures are collected, not raised"""
        now = now_ms() if now is None else now
        logger.info("[Cron] Starting sensor logging job...")

        devices = self.root_ref.child("devices").get()
        if not devices:
            logger.info("[Cron] No devices found in RTDB")
            return ReconciliationSummary(message="No devices found")

        summary = ReconciliationSummary(devices_processed=len(devices))
        for device_id, device_data in devices.items():
            try:
                logged = self.process_device(device_id, device_data, now)
                summary.logged += logged
                if logged:
                    logger.info(f"[Cron] Logged {logged} reading(s) for device {device_id}")
            except Exception as e:
                error_msg = f"Error processing device {device_id}: {e}"
                logger.error(f"[Cron] {error_msg}")
                summary.errors.append(error_msg)

        logger.info(f"[Cron] Done: {summary.devices_processed} device(s), {summary.logged} logged, "
                    f"{len(summary.errors)} error(s)")
        return summary

    def process_device(self, device_id: str, device_data: Any, now: int) -> int:
        reading = extract_reading(extract_npk_block(device_data))
        if reading is None:
            return 0

        paddies = self.find_paddies(device_id)
        if not paddies:
            logger.info(f"[Cron] No paddies found for device {device_id}")
            return 0

        payload = {
            "nitrogen": reading.nitrogen,
            "phosphorus": reading.phosphorus,
            "potassium": reading.potassium,
            "deviceTimestamp": reading.device_timestamp if reading.device_timestamp is not None else now,
            "timestamp": datetime.fromtimestamp(now / 1000, tz=timezone.utc),
            "createdAt": datetime.fromtimestamp(now / 1000, tz=timezone.utc).isoformat(),
            "source": LogOrigin.SCHEDULED_JOB.value,
        }

        logged = 0
        for paddy_doc in paddies:
            logs_col = paddy_doc.reference.collection("logs")
            if is_duplicate_of_last(self._last_log(logs_col), reading, now):
                logger.debug(f"[Cron] Skipping duplicate reading for {paddy_doc.reference.path}")
                continue
            logs_col.add(dict(payload))
            logged += 1
        return logged

    def find_paddies(self, device_id: str) -> list:
        """Reverse lookup: every user's paddy bound to this device"""
        query = self.firestore_db.collection_group("paddies").where(
            filter=FieldFilter("deviceId", "==", device_id)
        )
        return list(query.stream())

    @staticmethod
    def _last_log(logs_col) -> Optional[Dict[str, Any]]:
        docs = list(logs_col.order_by("timestamp", direction=firestore.Query.DESCENDING).limit(1).stream())
        return docs[0].to_dict() if docs else None


class DeviceWriteLogger:
    """Logs readings as soon as a device writes its sensor node.

    Readings go to every paddy bound to the device, or to the device-level
    fallback log when nothing is bound yet so they stay visible.
    """

    def __init__(self, firestore_db, root_ref=None):
        self.firestore_db = firestore_db
        self.root_ref = root_ref
        self._snapshot: Any = None
        self._primed = False

    def handle_write(self, device_id: str, node: str, before: Any, after: Any) -> int:
        """Returns the number of log entries written"""
        if node not in TRIGGER_NODES or not after:
            return 0

        reading = extract_reading(after)
        if reading is None:
            return 0

        if isinstance(before, dict):
            previous = extract_reading(before)
            if previous is not None and previous.values() == reading.values() \
                    and previous.device_timestamp == reading.device_timestamp:
                return 0

        payload = {
            "nitrogen": reading.nitrogen,
            "phosphorus": reading.phosphorus,
            "potassium": reading.potassium,
            "deviceTimestamp": reading.device_timestamp,
            "timestamp": firestore.SERVER_TIMESTAMP,
            "source": f"rtdb-trigger:{node}",
        }

        logger.debug(f"[DeviceWriteLogger] deviceId={device_id} node={node} values={reading.values()}")
        paddies = list(self.firestore_db.collection_group("paddies").where(
            filter=FieldFilter("deviceId", "==", device_id)
        ).stream())

        if paddies:
            for paddy_doc in paddies:
                paddy_doc.reference.collection("logs").add(dict(payload))
            return len(paddies)

        logger.info(f"[DeviceWriteLogger] No paddies for {device_id}; writing to fallback deviceLogs")
        self.firestore_db.collection(device_logs_path(device_id)).add(payload)
        return 1

    def on_event(self, event):
        """Listener callback for the devices/ node"""
        before = copy.deepcopy(self._snapshot) if isinstance(self._snapshot, dict) else {}
        self._snapshot = apply_event(self._snapshot, event.path, event.data, event.event_type)

        if not self._primed:
            # Initial load reports current state, not a write
            self._primed = True
            return

        after = self._snapshot if isinstance(self._snapshot, dict) else {}
        parts = [p for p in (event.path or "/").split("/") if p]
        device_ids = [parts[0]] if parts else list((event.data or {}).keys())

        for device_id in device_ids:
            old_device = before.get(device_id) or {}
            new_device = after.get(device_id) or {}
            for node in TRIGGER_NODES:
                old_node = old_device.get(node) if isinstance(old_device, dict) else None
                new_node = new_device.get(node) if isinstance(new_device, dict) else None
                if new_node == old_node:
                    continue
                try:
                    self.handle_write(device_id, node, old_node, new_node)
                except Exception as e:
                    logger.error(f"[DeviceWriteLogger] Error logging RTDB sensor update: {e}")

    def watch(self) -> Subscription:
        registration = self.root_ref.child("devices").listen(self.on_event)
        logger.info("[DeviceWriteLogger] Listening on devices/")
        return Subscription([registration])
