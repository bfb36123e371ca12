"""Realtime Database subscriptions for device live state"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..models import DeviceHealth, DeviceLiveState
from .device_health import check_heartbeat, classify_status
from .history_service import Subscription

logger = logging.getLogger(__name__)


@dataclass
class LiveNPKState:
    """What a page knows about a device from its live subscription"""
    data: Optional[DeviceLiveState] = None
    online: bool = False
    loading: bool = True
    error: Optional[str] = None

    @property
    def has_npk(self) -> bool:
        return self.data is not None and self.data.has_npk()

    def health(self) -> DeviceHealth:
        return classify_status(
            connected=self.online,
            has_npk=self.has_npk,
            loading=self.loading,
            has_data=self.data is not None,
        )


def apply_event(snapshot: Any, path: str, data: Any, event_type: str = "put") -> Any:
    """Apply one RTDB stream event (put/patch at a sub-path) to a local copy"""
    parts = [p for p in (path or "/").split("/") if p]

    if not parts:
        if event_type == "patch" and isinstance(snapshot, dict) and isinstance(data, dict):
            merged = dict(snapshot)
            for key, value in data.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            return merged
        return copy.deepcopy(data)

    root = dict(snapshot) if isinstance(snapshot, dict) else {}
    node = root
    for part in parts[:-1]:
        child = node.get(part)
        child = dict(child) if isinstance(child, dict) else {}
        node[part] = child
        node = child

    leaf = parts[-1]
    if event_type == "patch":
        existing = node.get(leaf)
        node[leaf] = apply_event(existing, "/", data, "patch")
    elif data is None:
        node.pop(leaf, None)
    else:
        node[leaf] = copy.deepcopy(data)
    return root


class LiveFeed:
    """Subscribe to devices/{deviceId} and report normalized live state"""

    def __init__(self, root_ref):
        self.root_ref = root_ref

    def subscribe(self, device_id: str, on_update: Callable[[LiveNPKState], None]) -> Subscription:
        if not device_id:
            on_update(LiveNPKState(loading=False, error="No device ID"))
            return Subscription()

        logger.info(f"Subscribing to device: {device_id}")
        subscription = Subscription(on_close=lambda: logger.info(f"Unsubscribed from device: {device_id}"))
        current: Dict[str, Any] = {"raw": None}

        def listener(event):
            if subscription.closed:
                return
            try:
                current["raw"] = apply_event(current["raw"], event.path, event.data, event.event_type)
                on_update(self._build_state(device_id, current["raw"]))
            except Exception as e:
                logger.error(f"Error handling live update for {device_id}: {e}", exc_info=True)

        try:
            registration = self.root_ref.child(f"devices/{device_id}").listen(listener)
            subscription.add(registration)
        except Exception as e:
            # No retry: the page keeps whatever it already rendered
            logger.error(f"Live subscription for {device_id} failed: {e}")
            on_update(LiveNPKState(loading=False, error=str(e)))

        return subscription

    @staticmethod
    def _build_state(device_id: str, raw: Any) -> LiveNPKState:
        if raw is None:
            logger.debug(f"Device {device_id} not found in RTDB")
            return LiveNPKState(loading=False)

        state = DeviceLiveState.from_snapshot(device_id, raw)
        heartbeat = check_heartbeat(state)
        return LiveNPKState(data=state, online=heartbeat.is_alive, loading=False)


class DeviceMonitor:
    """Detects online/offline transitions and reports each one once.

    Starts from the assumption that every device is online, so a device that
    is already down when monitoring begins produces an 'offline' event.
    """

    def __init__(self, notifier: Callable[[str, bool], None]):
        self.notifier = notifier
        self._online: Dict[str, bool] = {}
        self._notified: Dict[str, bool] = {}

    def update(self, device_id: str, is_online: bool):
        was_online = self._online.get(device_id, True)
        notified = self._notified.get(device_id, False)

        if was_online and not is_online and not notified:
            logger.info(f"Device {device_id} went offline")
            self._notify(device_id, False)
            self._notified[device_id] = True
        elif not was_online and is_online and notified:
            logger.info(f"Device {device_id} came back online")
            self._notify(device_id, True)
            self._notified[device_id] = False

        self._online[device_id] = is_online

    def _notify(self, device_id: str, online: bool):
        try:
            self.notifier(device_id, online)
        except Exception as e:
            logger.error(f"Device notifier failed for {device_id}: {e}")

    def watch(self, live_feed: LiveFeed, device_id: str) -> Subscription:
        """Feed a live subscription into the monitor"""
        def on_update(state: LiveNPKState):
            if not state.loading:
                self.update(device_id, state.online)
        return live_feed.subscribe(device_id, on_update)
