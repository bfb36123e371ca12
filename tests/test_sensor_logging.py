from padbuddy.models import DeviceNPK, LogOrigin
from padbuddy.services.sensor_logging import SensorLogger

from conftest import NOW, NOW_DT, paddy_path

LOGS = f"{paddy_path()}/logs"


def test_log_sensor_readings_payload(firestore_db):
    logger = SensorLogger(firestore_db)

    assert logger.log_sensor_readings("user1", "field1", "paddy1", DeviceNPK(n=1, p=2, k=3, timestamp=4200))

    (log,) = firestore_db.documents_in(LOGS).values()
    assert (log["nitrogen"], log["phosphorus"], log["potassium"]) == (1, 2, 3)
    assert log["timestamp"] == NOW_DT
    assert log["deviceTimestamp"] == 4200
    assert log["source"] == "live-feed"
    assert "createdAt" in log


def test_empty_reading_is_not_logged(firestore_db):
    logger = SensorLogger(firestore_db)
    assert not logger.log_sensor_readings("user1", "field1", "paddy1", DeviceNPK())
    assert not logger.log_sensor_readings("user1", "field1", "paddy1", None)
    assert firestore_db.docs == {}


def test_log_readings_extended_shape(firestore_db):
    logger = SensorLogger(firestore_db)

    assert logger.log_readings("user1", "field1", "paddy1", {
        "nitrogen": 1, "temperature": 28.5, "humidity": None, "waterLevel": 4, "timestamp": 1_700_000_000,
    })

    (log,) = firestore_db.documents_in(LOGS).values()
    assert log["temperature"] == 28.5
    assert log["waterLevel"] == 4
    assert "humidity" not in log
    assert log["deviceTimestamp"] == 1_700_000_000
    assert log["source"] == LogOrigin.MANUAL.value


def test_auto_log_skips_repeat_within_one_second(firestore_db):
    logger = SensorLogger(firestore_db)
    npk = DeviceNPK(n=1, p=2, k=3)

    assert logger.auto_log("user1", "field1", "paddy1", npk, now=NOW)
    assert not logger.auto_log("user1", "field1", "paddy1", npk, now=NOW + 500)
    assert logger.auto_log("user1", "field1", "paddy1", DeviceNPK(n=2, p=2, k=3), now=NOW + 600)
    assert logger.auto_log("user1", "field1", "paddy1", DeviceNPK(n=2, p=2, k=3), now=NOW + 1700)
    assert logger.auto_log("user1", "field1", "paddy2", npk, now=NOW + 500)

    assert len(firestore_db.documents_in(LOGS)) == 3


def test_write_failure_returns_false(firestore_db):
    firestore_db.fail_on(LOGS, RuntimeError("unavailable"))
    assert not SensorLogger(firestore_db).log_sensor_readings("user1", "field1", "paddy1", DeviceNPK(n=1))
