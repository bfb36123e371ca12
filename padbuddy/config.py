"""Configuration for PadBuddy Server"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
_repo_root = Path(__file__).parent.parent.resolve()
_env_file = _repo_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

# Firebase
# Either a service-account file or the three FIREBASE_* credential variables.
_default_creds = str(_repo_root / "firebase-key.json")
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH", _default_creds)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "")
FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL", "")
# Private keys pasted into env files carry literal "\n" sequences
FIREBASE_PRIVATE_KEY = os.getenv("FIREBASE_PRIVATE_KEY", "").replace("\\n", "\n")
FIREBASE_DATABASE_URL = os.getenv("FIREBASE_DATABASE_URL", "")

# Scheduled job endpoint
CRON_SECRET = os.getenv("CRON_SECRET", "")
CRON_SERVER_HOST = os.getenv("CRON_SERVER_HOST", "0.0.0.0")
CRON_SERVER_PORT = int(os.getenv("CRON_SERVER_PORT", "8080"))

# Log every device write as it happens, in addition to the scheduled job
DEVICE_WRITE_LOGGER_ENABLED = os.getenv("DEVICE_WRITE_LOGGER_ENABLED", "true").lower() == "true"
WEATHER_POLLER_ENABLED = os.getenv("WEATHER_POLLER_ENABLED", "false").lower() == "true"

# Live feed
LIVE_BUFFER_SIZE = max(10, min(20, int(os.getenv("LIVE_BUFFER_SIZE", "10"))))

# Weather
OPEN_METEO_URL = os.getenv("OPEN_METEO_URL", "https://api.open-meteo.com/v1/forecast")
WEATHER_REFRESH_INTERVAL_S = int(os.getenv("WEATHER_REFRESH_INTERVAL_S", "600"))
WEATHER_REQUEST_TIMEOUT_S = float(os.getenv("WEATHER_REQUEST_TIMEOUT_S", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/padbuddy.log")
