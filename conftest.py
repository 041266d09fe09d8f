import copy
import itertools

import pytest


class FakeSnapshot:
    def __init__(self, ref, data):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeDocRef:
    def __init__(self, db, collection, doc_id):
        self._db = db
        self._collection = collection
        self.id = doc_id

    @property
    def _docs(self):
        return self._db.data.setdefault(self._collection, {})

    def get(self):
        return FakeSnapshot(self, self._docs.get(self.id))

    def set(self, data):
        self._docs[self.id] = copy.deepcopy(data)

    def update(self, patch):
        if self.id not in self._docs:
            raise KeyError(f"{self._collection}/{self.id}")
        self._docs[self.id].update(copy.deepcopy(patch))

    def delete(self):
        self._docs.pop(self.id, None)


class FakeQuery:
    def __init__(self, db, collection, filters=()):
        self._db = db
        self._collection = collection
        self._filters = tuple(filters)

    def where(self, field_path=None, op_string=None, value=None, *, filter=None):
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        assert op_string == "=="
        return FakeQuery(self._db, self._collection, self._filters + ((field_path, value),))

    def stream(self):
        docs = self._db.data.get(self._collection, {})
        for doc_id, data in list(docs.items()):
            if all(data.get(k) == v for k, v in self._filters):
                yield FakeSnapshot(FakeDocRef(self._db, self._collection, doc_id), data)


class FakeCollection(FakeQuery):
    def __init__(self, db, name):
        super().__init__(db, name)

    def document(self, doc_id=None):
        if doc_id is None:
            doc_id = f"doc-{next(self._db.ids):04d}"
        return FakeDocRef(self._db, self._collection, doc_id)


class FakeBatch:
    def __init__(self, db):
        self._db = db
        self._ops = []

    def set(self, ref, data):
        self._ops.append(("set", ref, data))

    def update(self, ref, patch):
        self._ops.append(("update", ref, patch))

    def delete(self, ref):
        self._ops.append(("delete", ref, None))

    def commit(self):
        for op, ref, data in self._ops:
            if op == "delete":
                ref.delete()
            else:
                getattr(ref, op)(data)
        self._db.commits.append(len(self._ops))


class FakeFirestore:
    """store.py が使う範囲だけを再現した Firestore クライアント."""

    def __init__(self):
        self.data = {}
        self.ids = itertools.count(1)
        self.commits = []

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch(self)


@pytest.fixture
def db():
    return FakeFirestore()
