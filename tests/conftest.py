"""In-memory doubles for Firestore and the Realtime Database"""

import copy
import itertools
from datetime import datetime, timezone

import pytest
from google.cloud.firestore import SERVER_TIMESTAMP

# 2023-11-14 22:13:20 UTC
NOW = 1_700_000_000_000
NOW_DT = datetime.fromtimestamp(NOW / 1000, tz=timezone.utc)

_OPS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    ">=": lambda a, b: a >= b,
    ">": lambda a, b: a > b,
    "<=": lambda a, b: a <= b,
    "<": lambda a, b: a < b,
}


def _parent(path):
    return path.rsplit("/", 1)[0]


class FakeSnapshot:
    def __init__(self, db, path, data):
        self._db = db
        self._data = data
        self.id = path.rsplit("/", 1)[-1]
        self.reference = FakeDocumentRef(db, path)
        self.exists = data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeWatch:
    def __init__(self, db, query, callback):
        self.db = db
        self.query = query
        self.callback = callback
        self.active = True

    def fire(self):
        if self.active:
            self.callback(self.query.stream(), [], self.db.clock())

    def unsubscribe(self):
        self.active = False
        if self in self.db.watches:
            self.db.watches.remove(self)


class FakeQuery:
    def __init__(self, db, collection_path=None, group=None, filters=(), orders=(), limit_to=None):
        self.db = db
        self.collection_path = collection_path
        self.group = group
        self.filters = list(filters)
        self.orders = list(orders)
        self.limit_to = limit_to

    def _copy(self, **changes):
        values = dict(collection_path=self.collection_path, group=self.group, filters=self.filters,
                      orders=self.orders, limit_to=self.limit_to)
        values.update(changes)
        return FakeQuery(self.db, **values)

    def where(self, filter=None):
        return self._copy(filters=self.filters + [(filter.field_path, filter.op_string, filter.value)])

    def order_by(self, field_path, direction="ASCENDING"):
        return self._copy(orders=self.orders + [(field_path, direction)])

    def limit(self, count):
        return self._copy(limit_to=count)

    def _matches_collection(self, path):
        if self.group is not None:
            return _parent(path).rsplit("/", 1)[-1] == self.group
        return _parent(path) == self.collection_path

    def stream(self):
        self.db.check_failure(self.collection_path or self.group)
        rows = [(path, data) for path, data in self.db.docs.items() if self._matches_collection(path)]

        for field_path, op, value in self.filters:
            rows = [r for r in rows if field_path in r[1] and _OPS[op](r[1][field_path], value)]
        for field_path, direction in reversed(self.orders):
            rows = [r for r in rows if field_path in r[1]]
            rows.sort(key=lambda r: r[1][field_path], reverse=direction == "DESCENDING")
        if self.limit_to is not None:
            rows = rows[:self.limit_to]
        return [FakeSnapshot(self.db, path, copy.deepcopy(data)) for path, data in rows]

    def get(self):
        return self.stream()

    def on_snapshot(self, callback):
        self.db.check_failure(self.collection_path or self.group)
        watch = FakeWatch(self.db, self, callback)
        self.db.watches.append(watch)
        watch.fire()
        return watch


class FakeCollection(FakeQuery):
    def __init__(self, db, path):
        super().__init__(db, collection_path=path)
        self.id = path.rsplit("/", 1)[-1]

    def document(self, document_id=None):
        return FakeDocumentRef(self.db, f"{self.collection_path}/{document_id or self.db.next_id()}")

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return self.db.clock(), ref


class FakeDocumentRef:
    def __init__(self, db, path):
        self.db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name):
        return FakeCollection(self.db, f"{self.path}/{name}")

    def get(self):
        self.db.check_failure(self.path)
        return FakeSnapshot(self.db, self.path, copy.deepcopy(self.db.docs.get(self.path)))

    def set(self, data, merge=False):
        self.db.check_failure(self.path)
        resolved = self.db.resolve(data)
        if merge and self.path in self.db.docs:
            self.db.docs[self.path].update(resolved)
        else:
            self.db.docs[self.path] = resolved
        self.db.notify()

    def update(self, data):
        self.db.check_failure(self.path)
        if self.path not in self.db.docs:
            raise KeyError(f"No document to update: {self.path}")
        self.db.docs[self.path].update(self.db.resolve(data))
        self.db.notify()


class FakeFirestore:
    """Flat path -> document map with just enough query support"""

    def __init__(self):
        self.docs = {}
        self.watches = []
        self.failures = {}
        self.now = NOW_DT
        self._ids = itertools.count(1)

    def clock(self):
        return self.now

    def next_id(self):
        return f"auto{next(self._ids):04d}"

    def resolve(self, data):
        return {k: (self.clock() if v is SERVER_TIMESTAMP else copy.deepcopy(v)) for k, v in data.items()}

    def fail_on(self, prefix, error):
        """Every read or write under prefix raises error"""
        self.failures[prefix] = error

    def check_failure(self, path):
        for prefix, error in self.failures.items():
            if path and path.startswith(prefix):
                raise error

    def notify(self):
        for watch in list(self.watches):
            watch.fire()

    def collection(self, path):
        return FakeCollection(self, path)

    def collection_group(self, name):
        return FakeQuery(self, group=name)

    def seed(self, path, data):
        self.docs[path] = dict(data)

    def documents_in(self, collection_path):
        return {p.rsplit("/", 1)[-1]: d for p, d in self.docs.items() if _parent(p) == collection_path}


class FakeEvent:
    def __init__(self, event_type, path, data):
        self.event_type = event_type
        self.path = path
        self.data = data


class FakeRegistration:
    def __init__(self, store, path, callback):
        self.store = store
        self.path = path
        self.callback = callback
        self.closed = False

    def close(self):
        self.closed = True
        if self in self.store.listeners:
            self.store.listeners.remove(self)


class FakeRTDBStore:
    def __init__(self):
        self.data = {}
        self.listeners = []
        self.fail_listen = None
        self.fail_get = None


def _split(path):
    return [p for p in (path or "").split("/") if p]


class FakeReference:
    """db.Reference look-alike over a nested dict"""

    def __init__(self, store=None, path=""):
        self.store = store or FakeRTDBStore()
        self.path = "/".join(_split(path))

    def child(self, path):
        return FakeReference(self.store, f"{self.path}/{path}")

    def _node(self):
        node = self.store.data
        for part in _split(self.path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def get(self, shallow=False):
        if self.store.fail_get:
            raise self.store.fail_get
        node = copy.deepcopy(self._node())
        if shallow and isinstance(node, dict):
            return {k: True for k in node}
        return node

    def _write(self, parts, value):
        if not parts:
            self.store.data = copy.deepcopy(value) if value is not None else {}
            return
        node = self.store.data
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    def set(self, value):
        self._write(_split(self.path), value)
        self._emit(_split(self.path), "put", value)

    def update(self, values):
        for key, value in values.items():
            self._write(_split(self.path) + _split(key), value)
        self._emit(_split(self.path), "patch", values)

    def _emit(self, parts, event_type, data):
        for reg in list(self.store.listeners):
            listen_parts = _split(reg.path)
            if parts[:len(listen_parts)] == listen_parts:
                rel = "/" + "/".join(parts[len(listen_parts):])
                reg.callback(FakeEvent(event_type, rel, copy.deepcopy(data)))
            elif listen_parts[:len(parts)] == parts:
                # Write above the listener: resend its whole node
                reg.callback(FakeEvent("put", "/", copy.deepcopy(FakeReference(self.store, reg.path)._node())))

    def listen(self, callback):
        if self.store.fail_listen:
            raise self.store.fail_listen
        reg = FakeRegistration(self.store, self.path, callback)
        self.store.listeners.append(reg)
        callback(FakeEvent("put", "/", copy.deepcopy(self._node())))
        return reg


@pytest.fixture
def firestore_db():
    return FakeFirestore()


@pytest.fixture
def rtdb():
    return FakeReference()


def paddy_path(uid="user1", field_id="field1", paddy_id="paddy1"):
    return f"users/{uid}/fields/{field_id}/paddies/{paddy_id}"


@pytest.fixture
def seed_paddy(firestore_db):
    def _seed(device_id="DEVICE_0001", uid="user1", field_id="field1", paddy_id="paddy1", **extra):
        firestore_db.seed(f"users/{uid}/fields/{field_id}", {"fieldName": "North Field", "createdAt": NOW_DT})
        firestore_db.seed(paddy_path(uid, field_id, paddy_id), {"paddyName": "Paddy A", "deviceId": device_id, **extra})
        return paddy_path(uid, field_id, paddy_id)
    return _seed
