"""Shared fixtures: an in-memory Firestore double and a local warehouse."""

from __future__ import annotations

import copy
import itertools
import threading
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import pytest
from google.api_core import exceptions as gexc

from icehouse.firestore_catalog import FirestoreCatalog
from icehouse.manager import TableManager

Path = Tuple[str, ...]


class FakeDocumentSnapshot:
    def __init__(self, reference: "FakeDocumentReference", data: Optional[dict], update_time):
        self.reference = reference
        self.id = reference.id
        self._data = data
        self.update_time = update_time

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[dict]:
        return copy.deepcopy(self._data)


class FakeDocumentReference:
    def __init__(self, client: "FakeFirestoreClient", path: Path):
        self._client = client
        self.path = path
        self.id = path[-1]

    def collection(self, name: str) -> "FakeCollectionReference":
        return FakeCollectionReference(self._client, self.path + (name,))

    def get(self, transaction=None) -> FakeDocumentSnapshot:
        self._client._check_available()
        with self._client._lock:
            data, update_time = self._client._docs.get(self.path, (None, None))
            return FakeDocumentSnapshot(self, copy.deepcopy(data), update_time)

    def create(self, data: dict) -> None:
        batch = self._client.batch()
        batch.create(self, data)
        batch.commit()

    def set(self, data: dict, merge: bool = False) -> None:
        batch = self._client.batch()
        batch.set(self, data)
        batch.commit()

    def update(self, data: dict, option=None) -> None:
        batch = self._client.batch()
        batch.update(self, data, option=option)
        batch.commit()

    def delete(self) -> None:
        batch = self._client.batch()
        batch.delete(self)
        batch.commit()


class FakeQuery:
    def __init__(self, collection: "FakeCollectionReference", field: str):
        self._collection = collection
        self._field = field

    def stream(self) -> List[FakeDocumentSnapshot]:
        docs = self._collection.stream()
        return sorted(docs, key=lambda d: d.to_dict().get(self._field))


class FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", path: Path):
        self._client = client
        self.path = path

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self._client, self.path + (doc_id,))

    def order_by(self, field: str) -> FakeQuery:
        return FakeQuery(self, field)

    def stream(self) -> List[FakeDocumentSnapshot]:
        self._client._check_available()
        with self._client._lock:
            found = [
                (path, data, update_time)
                for path, (data, update_time) in self._client._docs.items()
                if path[:-1] == self.path
            ]
        # Firestore streams in document id order
        found.sort(key=lambda item: item[0][-1])
        return [
            FakeDocumentSnapshot(FakeDocumentReference(self._client, path), copy.deepcopy(data), ut)
            for path, data, ut in found
        ]


class FakeWriteOption:
    def __init__(self, last_update_time=None):
        self.last_update_time = last_update_time


class FakeWriteBatch:
    def __init__(self, client: "FakeFirestoreClient"):
        self._client = client
        self._ops: List[tuple] = []

    def create(self, reference, data):
        self._ops.append(("create", reference.path, copy.deepcopy(data), None))

    def set(self, reference, data, merge=False):
        self._ops.append(("set", reference.path, copy.deepcopy(data), None))

    def update(self, reference, data, option=None):
        self._ops.append(("update", reference.path, copy.deepcopy(data), option))

    def delete(self, reference, option=None):
        self._ops.append(("delete", reference.path, None, option))

    def commit(self):
        client = self._client
        if client.before_commit:
            hook = client.before_commit.pop(0)
            hook()
        client._check_available()
        with client._lock:
            for kind, path, _, option in self._ops:
                existing = client._docs.get(path)
                if kind == "create" and existing is not None:
                    raise gexc.AlreadyExists(f"Document already exists: {'/'.join(path)}")
                if kind == "update" and existing is None:
                    raise gexc.NotFound(f"No document to update: {'/'.join(path)}")
                if option is not None and option.last_update_time is not None:
                    if existing is None or existing[1] != option.last_update_time:
                        raise gexc.FailedPrecondition(f"Document changed: {'/'.join(path)}")
            for kind, path, data, _ in self._ops:
                if kind == "delete":
                    client._docs.pop(path, None)
                    continue
                if kind == "update":
                    merged = dict(client._docs[path][0])
                    merged.update(data)
                    data = merged
                client._docs[path] = (data, next(client._clock))
            client.commits += 1


class FakeFirestoreClient:
    def __init__(self):
        self._docs: Dict[Path, tuple] = {}
        self._lock = threading.RLock()
        self._clock = itertools.count(1)
        self.before_commit: List[Callable[[], None]] = []
        self.unavailable = False
        self.commits = 0

    def _check_available(self):
        if self.unavailable:
            raise gexc.ServiceUnavailable("catalog unavailable")

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, (name,))

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def write_option(self, last_update_time=None) -> FakeWriteOption:
        return FakeWriteOption(last_update_time=last_update_time)


@pytest.fixture
def firestore_client():
    return FakeFirestoreClient()


@pytest.fixture
def warehouse(tmp_path):
    return str(tmp_path / "warehouse")


@pytest.fixture
def catalog(firestore_client, warehouse):
    return FirestoreCatalog(
        workspace="test", warehouse=warehouse, firestore_client=firestore_client
    )


@pytest.fixture
def manager(catalog):
    return TableManager.open(catalog, "ns1")
