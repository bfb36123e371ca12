"""Field service - fields, paddies and the dashboard summary"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from google.cloud import firestore

from ..models import DeviceHealth, DeviceLiveState, Field, FieldStatus, Paddy
from .device_health import classify_device
from .firebase_service import is_permission_denied, log_store_error

logger = logging.getLogger(__name__)

DEVICE_ID_PATTERN = re.compile(r"^DEVICE_\d{4}$")

PERMISSION_DENIED_MESSAGE = "Permission denied. Please check your account access"
GENERIC_FAILURE_MESSAGE = "Failed to update. Please try again"


class FieldServiceError(Exception):
    """Failure with a message safe to show to the farmer"""

    def __init__(self, user_message: str, cause: Optional[Exception] = None):
        super().__init__(user_message)
        self.user_message = user_message
        self.cause = cause


@dataclass
class FieldDeviceStats:
    total: int = 0
    offline: int = 0
    issues: int = 0
    healthy: int = 0

    def count(self, health: DeviceHealth):
        self.total += 1
        if health == DeviceHealth.OK:
            self.healthy += 1
        elif health == DeviceHealth.SENSOR_ISSUE:
            self.issues += 1
        else:
            self.offline += 1

    def to_dict(self):
        return {"total": self.total, "offline": self.offline, "issues": self.issues, "healthy": self.healthy}


@dataclass
class DashboardSummary:
    fields: List[dict] = field(default_factory=list)
    total_fields: int = 0
    total_devices: int = 0
    healthy_devices: int = 0
    issue_devices: int = 0

    def to_dict(self):
        return {
            "fields": self.fields,
            "totalFields": self.total_fields,
            "totalDevices": self.total_devices,
            "healthyDevices": self.healthy_devices,
            "issueDevices": self.issue_devices,
        }


class FieldService:
    """Writes that farmers trigger from the dashboard and field pages"""

    def __init__(self, firestore_db, root_ref):
        self.firestore_db = firestore_db
        self.root_ref = root_ref

    def _field_ref(self, user_id: str, field_id: str):
        return self.firestore_db.collection("users").document(user_id).collection("fields").document(field_id)

    def _paddy_ref(self, user_id: str, field_id: str, paddy_id: str):
        return self._field_ref(user_id, field_id).collection("paddies").document(paddy_id)

    def _fail(self, context: str, error: Exception):
        log_store_error(context, error)
        if is_permission_denied(error):
            raise FieldServiceError(PERMISSION_DENIED_MESSAGE, error) from error
        raise FieldServiceError(GENERIC_FAILURE_MESSAGE, error) from error

    def register_field(self, user_id: str, field_data: Field, paddy: Paddy, device_id: str,
                       user_profile: Optional[Dict[str, str]] = None) -> str:
        """Create a field with its first paddy and claim the device; returns the field id"""
        if not DEVICE_ID_PATTERN.match(device_id or ""):
            raise FieldServiceError("Invalid format. Use DEVICE_0001 format")

        device_ref = self.root_ref.child(f"devices/{device_id}")
        try:
            device = device_ref.get()
        except Exception as e:
            self._fail(f"Error verifying device {device_id}", e)

        if not device:
            raise FieldServiceError("Device not found. Please check the ID")
        connected_to = device.get("connectedTo") if isinstance(device, dict) else None
        if connected_to and connected_to != user_id:
            raise FieldServiceError("Device is already connected to another user")

        try:
            user_doc = dict(user_profile or {})
            user_doc["updatedAt"] = firestore.SERVER_TIMESTAMP
            self.firestore_db.collection("users").document(user_id).set(user_doc, merge=True)

            field_doc = field_data.model_dump(by_alias=True, exclude_none=True, exclude={"id"})
            field_doc["status"] = FieldStatus.ACTIVE.value
            field_doc["createdAt"] = firestore.SERVER_TIMESTAMP
            field_doc["updatedAt"] = firestore.SERVER_TIMESTAMP
            _, field_ref = self.firestore_db.collection("users").document(user_id).collection("fields").add(field_doc)

            paddy_doc = paddy.model_dump(by_alias=True, exclude_none=True, exclude={"id"})
            paddy_doc["deviceId"] = device_id
            paddy_doc["connectedAt"] = firestore.SERVER_TIMESTAMP
            paddy_doc["status"] = "connected"
            field_ref.collection("paddies").add(paddy_doc)

            device_ref.update({
                "connectedTo": user_id,
                "connectedAt": datetime.now().isoformat(),
                "fieldId": field_ref.id,
                "paddyName": paddy.paddy_name,
                "status": "connected",
            })
        except Exception as e:
            self._fail(f"Error connecting device {device_id}", e)

        logger.info(f"Registered field {field_ref.id} for user {user_id} with device {device_id}")
        return field_ref.id

    def conclude_field(self, user_id: str, field_id: str, days_since_planting: int, completed: bool) -> FieldStatus:
        """Harvested when the variety reached maturity, concluded when ended early"""
        status = FieldStatus.HARVESTED if completed else FieldStatus.CONCLUDED
        try:
            self._field_ref(user_id, field_id).update({
                "status": status.value,
                "concludedAt": datetime.now().isoformat(),
                "concludedDay": days_since_planting,
            })
        except Exception as e:
            self._fail(f"Error concluding field {field_id}", e)
        logger.info(f"Field {field_id} marked {status.value}")
        return status

    def reopen_field(self, user_id: str, field_id: str) -> FieldStatus:
        try:
            self._field_ref(user_id, field_id).update({
                "status": FieldStatus.ACTIVE.value,
                "reopenedAt": datetime.now().isoformat(),
            })
        except Exception as e:
            self._fail(f"Error reopening field {field_id}", e)
        logger.info(f"Field {field_id} reopened")
        return FieldStatus.ACTIVE

    def rename_paddy(self, user_id: str, field_id: str, paddy_id: str, paddy_name: str,
                     description: Optional[str] = None):
        if not paddy_name or not paddy_name.strip():
            raise FieldServiceError("Paddy name is required")
        update = {"paddyName": paddy_name.strip()}
        if description is not None:
            update["description"] = description
        try:
            self._paddy_ref(user_id, field_id, paddy_id).update(update)
        except Exception as e:
            self._fail(f"Error renaming paddy {paddy_id}", e)

    def disconnect_paddy(self, user_id: str, field_id: str, paddy_id: str):
        """Detach the device; the paddy and its logs are kept"""
        try:
            self._paddy_ref(user_id, field_id, paddy_id).update({
                "deviceId": None,
                "disconnectedAt": datetime.now().isoformat(),
            })
        except Exception as e:
            self._fail(f"Error disconnecting paddy {paddy_id}", e)
        logger.info(f"Paddy {paddy_id} disconnected")

    def list_fields(self, user_id: str) -> List[Field]:
        fields_col = self.firestore_db.collection("users").document(user_id).collection("fields")
        try:
            docs = fields_col.order_by("createdAt", direction=firestore.Query.DESCENDING).stream()
            return [Field.from_document(doc.id, doc.to_dict()) for doc in docs]
        except Exception as e:
            self._fail(f"Error fetching fields for {user_id}", e)

    def list_paddies(self, user_id: str, field_id: str) -> List[Paddy]:
        docs = self._field_ref(user_id, field_id).collection("paddies").stream()
        return [Paddy.from_document(doc.id, doc.to_dict()) for doc in docs]

    def dashboard_summary(self, user_id: str, now: Optional[int] = None) -> DashboardSummary:
        """Per-field device health counts plus overall totals"""
        summary = DashboardSummary()
        device_cache: Dict[str, DeviceHealth] = {}

        for field_model in self.list_fields(user_id):
            field_entry = field_model.model_dump(by_alias=True, mode="json")
            try:
                stats = FieldDeviceStats()
                for paddy in self.list_paddies(user_id, field_model.id):
                    if not paddy.device_id:
                        continue
                    if paddy.device_id not in device_cache:
                        device_cache[paddy.device_id] = self._device_health(paddy.device_id, now)
                    stats.count(device_cache[paddy.device_id])
                field_entry["deviceStats"] = stats.to_dict()

                summary.total_devices += stats.total
                summary.healthy_devices += stats.healthy
                summary.issue_devices += stats.offline + stats.issues
            except Exception as e:
                log_store_error(f"Error fetching paddies for field {field_model.id}", e)

            summary.fields.append(field_entry)

        summary.total_fields = len(summary.fields)
        return summary

    def _device_health(self, device_id: str, now: Optional[int]) -> DeviceHealth:
        raw = self.root_ref.child(f"devices/{device_id}").get()
        state = DeviceLiveState.from_snapshot(device_id, raw)
        return classify_device(state, now=now).status
