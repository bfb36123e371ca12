from datetime import timedelta

from google.api_core.exceptions import PermissionDenied

from padbuddy.models import SourceTag
from padbuddy.services.history_service import HistoryService, Subscription
from padbuddy.utils.timestamps import TimeRange

from conftest import NOW, NOW_DT, paddy_path

LOGS = f"{paddy_path()}/logs"
DEVICE_LOGS = "deviceLogs/DEVICE_0001/readings"


def seed_log(firestore_db, collection, doc_id, days_ago, n=10, **extra):
    firestore_db.seed(f"{collection}/{doc_id}", {
        "nitrogen": n, "phosphorus": 5, "potassium": 8,
        "timestamp": NOW_DT - timedelta(days=days_ago),
        **extra,
    })


def test_fetch_paddy_logs_respects_range(firestore_db):
    seed_log(firestore_db, LOGS, "recent", 1)
    seed_log(firestore_db, LOGS, "old", 40)

    history = HistoryService(firestore_db)

    week = history.fetch_paddy_logs("user1", "field1", "paddy1", TimeRange.LAST_7_DAYS, now=NOW)
    everything = history.fetch_paddy_logs("user1", "field1", "paddy1", TimeRange.ALL, now=NOW)

    assert [e.id for e in week] == ["recent"]
    assert {e.id for e in everything} == {"recent", "old"}
    assert all(e.source_tag == SourceTag.PADDY for e in week)


def test_documents_without_timestamp_are_skipped(firestore_db):
    firestore_db.seed(f"{LOGS}/bad", {"nitrogen": 1})
    firestore_db.seed(f"{LOGS}/iso", {"nitrogen": 2, "createdAt": (NOW_DT - timedelta(hours=1)).isoformat()})

    entries = HistoryService(firestore_db).fetch_paddy_logs("user1", "field1", "paddy1", TimeRange.ALL, now=NOW)

    assert [e.id for e in entries] == ["iso"]


def test_fetch_history_merges_both_sources(firestore_db):
    seed_log(firestore_db, LOGS, "p1", 1)
    seed_log(firestore_db, DEVICE_LOGS, "d1", 2, n=11)

    merged = HistoryService(firestore_db).fetch_history("user1", "field1", "paddy1", "DEVICE_0001", now=NOW)

    assert [e.id for e in merged.descending] == ["p1", "d1"]
    assert merged.descending[1].source_tag == SourceTag.DEVICE


def test_failed_source_contributes_nothing(firestore_db, caplog):
    seed_log(firestore_db, DEVICE_LOGS, "d1", 1)
    firestore_db.fail_on(LOGS, PermissionDenied("Missing or insufficient permissions."))

    merged = HistoryService(firestore_db).fetch_history("user1", "field1", "paddy1", "DEVICE_0001", now=NOW)

    assert [e.id for e in merged.descending] == ["d1"]
    assert "Permission denied" in caplog.text


def test_no_device_id_means_no_device_logs(firestore_db):
    assert HistoryService(firestore_db).fetch_device_logs("", now=NOW) == []


def test_subscribe_history_reports_changes_until_closed(firestore_db):
    updates = []
    subscription = HistoryService(firestore_db).subscribe_history(
        "user1", "field1", "paddy1", "DEVICE_0001", TimeRange.LAST_7_DAYS, updates.append, now=NOW
    )
    assert len(updates[-1]) == 0

    seed_log(firestore_db, LOGS, "p1", 1)
    firestore_db.collection(DEVICE_LOGS).add({"nitrogen": 3, "timestamp": NOW_DT})

    assert len(updates[-1]) == 2

    subscription.close()
    subscription.close()
    count = len(updates)
    firestore_db.collection(LOGS).add({"nitrogen": 4, "timestamp": NOW_DT})
    assert len(updates) == count
    assert firestore_db.watches == []


def test_subscription_closes_every_handle_kind():
    calls = []

    class Unsub:
        def unsubscribe(self):
            calls.append("unsubscribe")

    class Closable:
        def close(self):
            calls.append("close")

    subscription = Subscription([Unsub(), Closable(), lambda: calls.append("call")], on_close=lambda: calls.append("done"))
    subscription.close()

    assert calls == ["unsubscribe", "close", "call", "done"]
    assert subscription.closed
