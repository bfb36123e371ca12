"""Firebase service - initializes the Admin SDK and hands out store clients"""

import logging
import os
import firebase_admin
from firebase_admin import credentials, db, firestore
from google.api_core import exceptions as google_exceptions
from .. import config

logger = logging.getLogger(__name__)

PERMISSION_DENIED_HINT = (
    "Permission denied - check Firestore/RTDB security rules and that the "
    "service account has access to this path"
)


def is_permission_denied(error: Exception) -> bool:
    """True for Firestore/RTDB permission failures"""
    if isinstance(error, google_exceptions.PermissionDenied):
        return True
    code = getattr(error, "code", None)
    if code in ("permission-denied", "PERMISSION_DENIED", 403):
        return True
    return "permission" in str(error).lower() and "denied" in str(error).lower()


def log_store_error(context: str, error: Exception):
    """Log a store failure with a diagnostic hint for permission problems"""
    if is_permission_denied(error):
        logger.error(f"{context}: {error} ({PERMISSION_DENIED_HINT})")
    else:
        logger.error(f"{context}: {error}")


def _load_credentials():
    """Service-account file first, then FIREBASE_* environment variables"""
    cred_path = config.FIREBASE_CREDENTIALS_PATH
    if cred_path and os.path.exists(cred_path):
        if not os.access(cred_path, os.R_OK):
            raise PermissionError(f"No read permission for Firebase credentials at {cred_path}")
        logger.info(f"Loading Firebase credentials from: {cred_path}")
        return credentials.Certificate(cred_path)

    if config.FIREBASE_PROJECT_ID and config.FIREBASE_CLIENT_EMAIL and config.FIREBASE_PRIVATE_KEY:
        logger.info("Loading Firebase credentials from environment")
        return credentials.Certificate({
            "type": "service_account",
            "project_id": config.FIREBASE_PROJECT_ID,
            "client_email": config.FIREBASE_CLIENT_EMAIL,
            "private_key": config.FIREBASE_PRIVATE_KEY,
            "token_uri": "https://oauth2.googleapis.com/token",
        })

    raise FileNotFoundError(
        f"Firebase credentials not found at {cred_path} and FIREBASE_* variables are not set"
    )


class FirebaseService:
    """Owns the Firebase app and exposes Firestore and the RTDB root reference"""

    def __init__(self):
        self.firestore_db = None
        self.root_ref = None
        self.connected = False

    def connect(self):
        """Initialize Firebase connection"""
        try:
            if not firebase_admin._apps:
                if not config.FIREBASE_DATABASE_URL:
                    raise ValueError("FIREBASE_DATABASE_URL is not set")
                cred = _load_credentials()
                firebase_admin.initialize_app(cred, {
                    "databaseURL": config.FIREBASE_DATABASE_URL,
                })

            self.firestore_db = firestore.client()
            self.root_ref = db.reference()
            self.connected = True
            logger.info("Connected to Firebase successfully")
            return self

        except Exception as e:
            logger.error(f"Failed to connect to Firebase: {e}", exc_info=True)
            raise

    def disconnect(self):
        """Release the default app"""
        if self.connected:
            try:
                firebase_admin.delete_app(firebase_admin.get_app())
            except ValueError:
                pass
            self.connected = False
            logger.info("Disconnected from Firebase")
