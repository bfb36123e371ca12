"""Server - wires Firebase, the cron endpoint and the background listeners"""

import asyncio
import logging

from .. import config
from ..services.cron_server import CronServer
from ..services.firebase_service import FirebaseService
from ..services.reconciliation import DeviceWriteLogger, ReconciliationJob
from ..services.weather_service import WeatherPoller, WeatherService

logger = logging.getLogger(__name__)


class PadBuddyServer:
    """Long-running backend process"""

    def __init__(self, firebase: FirebaseService = None):
        logger.info("Initializing PadBuddy server...")
        self.firebase = firebase or FirebaseService()
        self.cron_server = CronServer(job_factory=self.create_job)
        self.write_logger_sub = None
        self.weather_poller = None
        self._weather_task = None
        self.running = False

    def create_job(self) -> ReconciliationJob:
        """Build a job per request; connection failures surface as a 500"""
        if not self.firebase.connected:
            self.firebase.connect()
        return ReconciliationJob(self.firebase.firestore_db, self.firebase.root_ref)

    async def start(self):
        """Start the server and all services"""
        try:
            logger.info("Starting PadBuddy server...")

            self.firebase.connect()
            self.cron_server.start()

            if config.DEVICE_WRITE_LOGGER_ENABLED:
                write_logger = DeviceWriteLogger(self.firebase.firestore_db, self.firebase.root_ref)
                self.write_logger_sub = write_logger.watch()

            self.running = True

            if config.WEATHER_POLLER_ENABLED:
                device_ids = list((self.firebase.root_ref.child("devices").get(shallow=True) or {}).keys())
                self.weather_poller = WeatherPoller(WeatherService(self.firebase.root_ref), device_ids)
                self._weather_task = asyncio.create_task(self.weather_poller.run())

            logger.info("PadBuddy server started successfully")
            await self._keepalive_loop()

        except Exception as e:
            logger.error(f"Error starting PadBuddy server: {e}", exc_info=True)
            raise

    async def stop(self):
        """Stop server and cleanup"""
        logger.info("Stopping PadBuddy server...")
        self.running = False

        try:
            if self.weather_poller:
                self.weather_poller.stop()
            if self._weather_task:
                self._weather_task.cancel()
            if self.write_logger_sub:
                self.write_logger_sub.close()
            self.cron_server.stop()
            self.firebase.disconnect()
            logger.info("PadBuddy server stopped successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    async def _keepalive_loop(self):
        while self.running:
            await asyncio.sleep(1)
