from padbuddy.models import DeviceHealth
from padbuddy.services.live_feed import DeviceMonitor, LiveFeed, apply_event


def test_apply_event_put_patch_and_delete():
    snapshot = apply_event(None, "/", {"status": "connected", "npk": {"n": 1}})
    snapshot = apply_event(snapshot, "/npk", {"n": 2, "p": 3})
    assert snapshot["npk"] == {"n": 2, "p": 3}

    snapshot = apply_event(snapshot, "/npk", {"k": 4}, "patch")
    assert snapshot["npk"] == {"n": 2, "p": 3, "k": 4}

    snapshot = apply_event(snapshot, "/", {"status": None}, "patch")
    assert "status" not in snapshot

    snapshot = apply_event(snapshot, "/npk/n", None)
    assert snapshot["npk"] == {"p": 3, "k": 4}


def test_subscribe_reports_live_state(rtdb):
    rtdb.child("devices/DEVICE_0001").set({"status": "connected", "npk": {"n": 10, "p": 5, "k": 8, "timestamp": 100}})
    states = []

    subscription = LiveFeed(rtdb).subscribe("DEVICE_0001", states.append)

    assert states[-1].online
    assert not states[-1].loading
    assert states[-1].data.npk.n == 10
    assert states[-1].health() == DeviceHealth.OK

    rtdb.child("devices/DEVICE_0001/npk").set({"n": 11})
    assert states[-1].data.npk.n == 11

    subscription.close()
    count = len(states)
    rtdb.child("devices/DEVICE_0001/npk").set({"n": 12})
    assert len(states) == count


def test_missing_device_is_offline(rtdb):
    states = []
    LiveFeed(rtdb).subscribe("DEVICE_0404", states.append)

    assert states[-1].data is None
    assert states[-1].health() == DeviceHealth.OFFLINE


def test_empty_device_id_is_an_error(rtdb):
    states = []
    LiveFeed(rtdb).subscribe("", states.append)
    assert states[-1].error == "No device ID"


def test_listen_failure_sets_error(rtdb):
    rtdb.store.fail_listen = RuntimeError("permission denied")
    states = []

    subscription = LiveFeed(rtdb).subscribe("DEVICE_0001", states.append)

    assert states[-1].error == "permission denied"
    assert not states[-1].loading
    subscription.close()


def test_device_monitor_notifies_once_per_transition():
    events = []
    monitor = DeviceMonitor(lambda device_id, online: events.append((device_id, online)))

    monitor.update("DEVICE_0001", True)
    monitor.update("DEVICE_0001", False)
    monitor.update("DEVICE_0001", False)
    monitor.update("DEVICE_0001", True)
    monitor.update("DEVICE_0001", True)

    assert events == [("DEVICE_0001", False), ("DEVICE_0001", True)]


def test_device_monitor_reports_device_down_at_start():
    events = []
    monitor = DeviceMonitor(lambda device_id, online: events.append((device_id, online)))
    monitor.update("DEVICE_0002", False)
    assert events == [("DEVICE_0002", False)]


def test_device_monitor_watches_live_feed(rtdb):
    rtdb.child("devices/DEVICE_0001").set({"status": "connected", "npk": {"n": 1}})
    events = []
    monitor = DeviceMonitor(lambda device_id, online: events.append(online))

    subscription = monitor.watch(LiveFeed(rtdb), "DEVICE_0001")
    rtdb.child("devices/DEVICE_0001").update({"status": "disconnected"})

    assert events == [False]
    subscription.close()
