import logging
import os
import threading

import pyarrow as pa
import pytest

from icehouse.catalog.metadata import TableIdentifier
from icehouse.config import CatalogConfig
from icehouse.exceptions import AlreadyExists
from icehouse.exceptions import ConflictingCommit
from icehouse.exceptions import FileReadError
from icehouse.exceptions import FileWriteError
from icehouse.exceptions import NotFound
from icehouse.exceptions import SchemaMismatch
from icehouse.exceptions import SnapshotNotFound
from icehouse.exceptions import TableNotFound
from icehouse.exceptions import TransportError
from icehouse.manager import TableManager
from icehouse.manager import list_snapshots
from icehouse.schema import NestedField
from icehouse.schema import PrimitiveType
from icehouse.schema import Schema


def _data_dir(warehouse, name="t"):
    return os.path.join(warehouse, "test", "ns1", name, "data")


def test_open_creates_the_namespace_once(catalog):
    assert not catalog.namespace_exists("ns1")
    TableManager.open(catalog, "ns1")
    assert catalog.namespace_exists("ns1")
    # a second manager binds to the existing namespace
    TableManager.open(catalog, "ns1")


def test_two_appends_and_pinned_reads(manager):
    manager.create_table("t")

    s0 = manager.write_rows("t", [{"id": 1, "value": "a"}, {"id": 2, "value": "b"}])
    assert manager.list_snapshots("t") == [s0.snapshot_id]
    assert manager.read_rows("t", s0.snapshot_id) == [
        {"id": 1, "value": "a"},
        {"id": 2, "value": "b"},
    ]

    s1 = manager.write_rows("t", [{"id": 3, "value": "c"}])
    assert manager.list_snapshots("t") == [s0.snapshot_id, s1.snapshot_id]
    assert manager.read_rows("t", s0.snapshot_id) == [
        {"id": 1, "value": "a"},
        {"id": 2, "value": "b"},
    ]
    assert manager.read_rows("t", s1.snapshot_id) == [
        {"id": 1, "value": "a"},
        {"id": 2, "value": "b"},
        {"id": 3, "value": "c"},
    ]


def test_round_trip_of_an_arrow_table(manager):
    table = manager.create_table("t")
    data = pa.table(
        {
            "id": pa.array([5, 6, 7], pa.int32()),
            "value": pa.array(["x", "y", "z"]),
        }
    )
    snap = manager.write_rows(table, data)
    result = table.to_arrow(snap.snapshot_id)
    assert result.to_pylist() == data.to_pylist()


def test_reads_are_repeatable(manager):
    manager.create_table("t")
    snap = manager.write_rows("t", [{"id": 1, "value": "a"}])
    first = manager.read_rows("t", snap.snapshot_id)
    manager.write_rows("t", [{"id": 2, "value": "b"}])
    assert manager.read_rows("t", snap.snapshot_id) == first


def test_list_snapshots_is_stable(manager):
    table = manager.create_table("t")
    for i in range(3):
        manager.write_rows(table, [{"id": i, "value": str(i)}])
    first = manager.list_snapshots("t")
    assert manager.list_snapshots("t") == first
    assert list_snapshots(table) == first
    assert manager.list_snapshots(table.metadata) == first
    assert [seq for _, seq in manager.snapshot_log("t")] == [1, 2, 3]


def test_unknown_snapshot_is_not_replaced_by_latest(manager):
    manager.create_table("t")
    snap = manager.write_rows("t", [{"id": 1, "value": "a"}])
    # raised on the call itself, before any iteration
    with pytest.raises(SnapshotNotFound) as info:
        manager.read_at_snapshot("t", snap.snapshot_id + 1)
    assert info.value.identifier == "ns1.t"


def test_not_found_and_already_exists(manager):
    with pytest.raises(NotFound):
        manager.load_table("never")
    with pytest.raises(TableNotFound):
        manager.write_rows("never", [{"id": 1, "value": "a"}])

    manager.create_table("t")
    with pytest.raises(AlreadyExists):
        manager.create_table("t")


def test_list_drop_and_exists(manager):
    manager.create_table("a")
    manager.create_table("b")
    assert sorted(manager.list_tables()) == [
        TableIdentifier("ns1", "a"),
        TableIdentifier("ns1", "b"),
    ]
    manager.drop_table("a")
    assert not manager.table_exists("a")
    assert manager.table_exists("b")
    with pytest.raises(TableNotFound):
        manager.load_table("a")


def test_mismatched_rows_touch_nothing(manager, firestore_client, warehouse):
    manager.create_table("t")
    commits = firestore_client.commits
    with pytest.raises(SchemaMismatch) as info:
        manager.write_rows("t", [{"id": 1, "value": "a"}, {"id": "two", "value": "b"}])
    assert info.value.identifier == "ns1.t"
    assert firestore_client.commits == commits
    assert not os.path.exists(_data_dir(warehouse))
    assert manager.list_snapshots("t") == []


def test_manager_schema_must_match_the_table(catalog):
    TableManager.open(catalog, "ns1").create_table("t")
    other = TableManager.open(
        catalog,
        "ns1",
        Schema.of(NestedField(0, "id", PrimitiveType.LONG, required=True)),
    )
    with pytest.raises(SchemaMismatch):
        other.write_rows("t", [{"id": 1}])


def test_corrupt_file_ends_the_stream(manager, catalog):
    table = manager.create_table("t")
    manager.write_rows(table, [{"id": 1, "value": "a"}])
    s1 = manager.write_rows(table, [{"id": 2, "value": "b"}])
    files = list(table.scan(s1.snapshot_id))
    with open(files[1].file_path, "wb") as f:
        f.write(b"garbage")

    stream = manager.read_at_snapshot("t", s1.snapshot_id)
    first = next(stream)
    assert first.to_pylist() == [{"id": 1, "value": "a"}]
    with pytest.raises(FileReadError) as info:
        next(stream)
    assert info.value.snapshot_id == s1.snapshot_id
    assert info.value.location == files[1].file_path
    with pytest.raises(StopIteration):
        next(stream)


def test_losing_writer_gets_conflict_and_orphans_its_file(manager, warehouse):
    manager.create_table("t")
    writer_a = manager.load_table("t")
    writer_b = manager.load_table("t")

    winner = manager.write_rows(writer_a, [{"id": 1, "value": "a"}])
    with pytest.raises(ConflictingCommit):
        manager.write_rows(writer_b, [{"id": 2, "value": "b"}])

    assert manager.list_snapshots("t") == [winner.snapshot_id]
    assert manager.read_rows("t", winner.snapshot_id) == [{"id": 1, "value": "a"}]
    # both data files were written; only the winner's is referenced
    assert len(os.listdir(_data_dir(warehouse))) == 2


def test_concurrent_writers_with_caller_retry(manager):
    manager.create_table("t")
    errors = []

    def writer(i):
        while True:
            try:
                manager.write_rows("t", [{"id": i, "value": str(i)}])
                return
            except ConflictingCommit:
                continue
            except Exception as err:  # surfaced to the test thread below
                errors.append(err)
                return

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    log = manager.snapshot_log("t")
    assert [seq for _, seq in log] == [1, 2, 3, 4]
    rows = manager.read_rows("t", log[-1][0])
    assert sorted(r["id"] for r in rows) == [0, 1, 2, 3]


def test_each_operation_logs_one_event(manager, caplog):
    caplog.set_level(logging.INFO, logger="icehouse.manager")
    manager.create_table("t")
    with pytest.raises(AlreadyExists):
        manager.create_table("t")

    events = [r for r in caplog.records if getattr(r, "operation", None) == "create_table"]
    assert [e.outcome for e in events] == ["ok", "TableAlreadyExists"]
    assert all(e.table == "ns1.t" for e in events)
    assert all(e.duration_ms >= 0 for e in events)


def test_from_config(firestore_client, tmp_path):
    config = CatalogConfig(workspace="cfg", namespace="ns2", warehouse=str(tmp_path))
    manager = TableManager.from_config(config, firestore_client=firestore_client)
    assert manager.namespace == "ns2"
    assert manager.catalog.namespace_exists("ns2")
    table = manager.create_table("t")
    assert table.metadata.location == f"{tmp_path}/cfg/ns2/t"


def test_malformed_writer_property_fails_the_write(manager, firestore_client):
    manager.create_table("t", properties={"write.parquet.row-group-limit": "lots"})
    commits = firestore_client.commits
    with pytest.raises(FileWriteError) as info:
        manager.write_rows("t", [{"id": 1, "value": "a"}])
    assert info.value.identifier == "ns1.t"
    assert "/ns1/t/data/" in info.value.location
    assert firestore_client.commits == commits
    assert manager.list_snapshots("t") == []


def test_write_of_something_other_than_rows_is_rejected(manager):
    manager.create_table("t")
    with pytest.raises(SchemaMismatch) as info:
        manager.write_rows("t", None)
    assert info.value.identifier == "ns1.t"


def test_storage_failure_commits_nothing(manager, firestore_client, warehouse):
    manager.create_table("t")
    # a plain file where the data directory should be
    os.makedirs(os.path.dirname(_data_dir(warehouse)))
    with open(_data_dir(warehouse), "w") as f:
        f.write("in the way")

    commits = firestore_client.commits
    with pytest.raises(FileWriteError) as info:
        manager.write_rows("t", [{"id": 1, "value": "a"}])
    assert info.value.identifier == "ns1.t"
    assert info.value.location.startswith(_data_dir(warehouse))
    assert firestore_client.commits == commits
    assert manager.list_snapshots("t") == []


def test_catalog_outage_at_commit_keeps_the_previous_snapshot(
    manager, firestore_client, warehouse
):
    manager.create_table("t")
    s0 = manager.write_rows("t", [{"id": 1, "value": "a"}])

    # the catalog goes away after the data file has been written
    firestore_client.before_commit.append(lambda: setattr(firestore_client, "unavailable", True))
    with pytest.raises(TransportError) as info:
        manager.write_rows("t", [{"id": 2, "value": "b"}])
    assert info.value.identifier == "ns1.t"

    firestore_client.unavailable = False
    assert manager.list_snapshots("t") == [s0.snapshot_id]
    assert manager.read_rows("t", s0.snapshot_id) == [{"id": 1, "value": "a"}]
    assert len(os.listdir(_data_dir(warehouse))) == 2


def _events(caplog, operation):
    return [r for r in caplog.records if getattr(r, "operation", None) == operation]


def test_read_is_logged_when_the_stream_ends(manager, caplog):
    caplog.set_level(logging.INFO, logger="icehouse.manager")
    table = manager.create_table("t")
    s0 = manager.write_rows(table, [{"id": 1, "value": "a"}])
    s1 = manager.write_rows(table, [{"id": 2, "value": "b"}])

    stream = manager.read_at_snapshot(table, s0.snapshot_id)
    assert _events(caplog, "read_at_snapshot") == []
    list(stream)
    assert [e.outcome for e in _events(caplog, "read_at_snapshot")] == ["ok"]

    files = list(table.scan(s1.snapshot_id))
    with open(files[1].file_path, "wb") as f:
        f.write(b"garbage")
    with pytest.raises(FileReadError):
        list(manager.read_at_snapshot(table, s1.snapshot_id))
    with pytest.raises(SnapshotNotFound):
        manager.read_at_snapshot(table, s1.snapshot_id + 1)
    assert [e.outcome for e in _events(caplog, "read_at_snapshot")] == [
        "ok",
        "FileReadError",
        "SnapshotNotFound",
    ]
    assert all(e.table == "ns1.t" for e in _events(caplog, "read_at_snapshot"))


def test_introspection_is_logged(manager, caplog):
    caplog.set_level(logging.INFO, logger="icehouse.manager")
    table = manager.create_table("t")
    manager.write_rows(table, [{"id": 1, "value": "a"}])
    snap_id = manager.list_snapshots(table)[0]
    manager.table_exists("t")
    manager.snapshot_log(table.metadata)
    manager.read_rows(table, snap_id)

    for operation in ("table_exists", "list_snapshots", "snapshot_log", "read_rows"):
        events = _events(caplog, operation)
        assert len(events) == 1, operation
        assert events[0].outcome == "ok"
        assert events[0].table == "ns1.t"
