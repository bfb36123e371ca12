"""Weather service - ambient temperature/humidity for a device.

Sources, first hit wins:
  1. The device's own sensors (devices/{id}/sensors)
  2. Cached weather under devices/{id}/weather, if younger than 10 minutes
  3. Open-Meteo current conditions at the device's GPS position, written
     back to the cache (last write wins)
"""

import asyncio
import logging
from typing import Iterable, Optional

import requests

from .. import config
from ..models import DeviceGPS, WeatherSnapshot
from ..models.records import WEATHER_CACHE_MAX_AGE_MS
from ..utils.timestamps import now_ms

logger = logging.getLogger(__name__)


class WeatherService:
    """Resolves weather for one device at a time"""

    def __init__(self, root_ref, session: Optional[requests.Session] = None):
        self.root_ref = root_ref
        self.session = session or requests.Session()

    def get_weather(self, device_id: str, now: Optional[int] = None) -> Optional[WeatherSnapshot]:
        now = now_ms() if now is None else now

        try:
            sensors = self.root_ref.child(f"devices/{device_id}/sensors").get()
            if isinstance(sensors, dict) and (sensors.get("temperature") is not None
                                              or sensors.get("humidity") is not None):
                logger.debug(f"[Weather] Using device sensors for {device_id}")
                return WeatherSnapshot(
                    temperature=sensors.get("temperature"),
                    humidity=sensors.get("humidity"),
                    timestamp=now,
                    source="device",
                )
        except Exception as e:
            logger.debug(f"[Weather] No device sensor data for {device_id}: {e}")

        try:
            cached = self.root_ref.child(f"devices/{device_id}/weather").get()
            if isinstance(cached, dict):
                age = now - (cached.get("timestamp") or 0)
                if age < WEATHER_CACHE_MAX_AGE_MS and (cached.get("temperature") is not None
                                                       or cached.get("humidity") is not None):
                    logger.debug(f"[Weather] Using cached weather for {device_id}")
                    return WeatherSnapshot(**cached)
        except Exception as e:
            logger.debug(f"[Weather] No cached weather for {device_id}: {e}")

        return self.fetch_fresh(device_id, now)

    def device_position(self, device_id: str) -> Optional[DeviceGPS]:
        gps = self.root_ref.child(f"devices/{device_id}/gps").get()
        location = None
        if not (isinstance(gps, dict) and gps.get("lat") and gps.get("lng")):
            location = self.root_ref.child(f"devices/{device_id}/location").get()
        return DeviceGPS.from_raw(gps, location)

    def fetch_fresh(self, device_id: str, now: Optional[int] = None) -> Optional[WeatherSnapshot]:
        """Query Open-Meteo and cache the result on the device node"""
        now = now_ms() if now is None else now
        try:
            position = self.device_position(device_id)
            if position is None or not position.lat or not position.lng:
                logger.info(f"[Weather] No GPS coordinates for {device_id}, cannot fetch weather")
                return None

            response = self.session.get(config.OPEN_METEO_URL, params={
                "latitude": position.lat,
                "longitude": position.lng,
                "current": "temperature_2m,relative_humidity_2m",
                "timezone": "auto",
            }, timeout=config.WEATHER_REQUEST_TIMEOUT_S)
            response.raise_for_status()
            current = response.json().get("current") or {}
        except Exception as e:
            logger.error(f"[Weather] Error fetching fresh weather for {device_id}: {e}")
            return None

        snapshot = WeatherSnapshot(
            temperature=current.get("temperature_2m"),
            humidity=current.get("relative_humidity_2m"),
            timestamp=now,
        )

        if snapshot.temperature is not None or snapshot.humidity is not None:
            try:
                self.root_ref.child(f"devices/{device_id}/weather").set(snapshot.model_dump())
            except Exception as e:
                # Display still gets the fresh values
                logger.error(f"[Weather] Error storing weather for {device_id}: {e}")
        return snapshot


class WeatherPoller:
    """Refreshes weather for a set of devices on a fixed interval"""

    def __init__(self, weather_service: WeatherService, device_ids: Iterable[str], interval: float = None):
        self.weather = weather_service
        self.device_ids = list(device_ids)
        self.interval = config.WEATHER_REFRESH_INTERVAL_S if interval is None else interval
        self.running = False

    async def run(self):
        """Main polling loop"""
        logger.info(f"Starting weather poller for {len(self.device_ids)} device(s)")
        self.running = True

        while self.running:
            try:
                await self.refresh_once()
            except Exception as e:
                logger.error(f"Error in weather loop: {e}")
            await asyncio.sleep(self.interval)

    async def refresh_once(self):
        loop = asyncio.get_running_loop()
        for device_id in self.device_ids:
            await loop.run_in_executor(None, self.weather.get_weather, device_id)

    def stop(self):
        self.running = False
