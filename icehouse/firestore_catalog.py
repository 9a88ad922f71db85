from __future__ import annotations

import dataclasses
import functools
import logging
import os
import time
from typing import List
from typing import Optional
from typing import Sequence

from google.api_core import exceptions as gexc
from google.cloud import firestore

from .catalog.manifest import DataFile
from .catalog.manifest import ManifestEntry
from .catalog.manifest import read_manifest
from .catalog.manifest import write_manifest
from .catalog.metadata import Snapshot
from .catalog.metadata import TableIdentifier
from .catalog.metadata import TableMetadata
from .catalog.metadata import new_snapshot_id
from .catalog.metadata import summarise
from .catalog.metadata import to_identifier
from .catalog.metastore import Metastore
from .catalog.table import SimpleTable
from .exceptions import ConflictingCommit
from .exceptions import NamespaceAlreadyExists
from .exceptions import NamespaceNotFound
from .exceptions import TableAlreadyExists
from .exceptions import TableNotFound
from .exceptions import TransportError
from .iops.base import FileIO
from .schema import Schema

logger = logging.getLogger(__name__)


def _author() -> str:
    return os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _target(args) -> Optional[str]:
    """The namespace or table a catalog call was made for, as a string."""
    if not args:
        return None
    target = args[0]
    if isinstance(target, SimpleTable):
        return str(target.identifier)
    if isinstance(target, (tuple, list)):
        return str(to_identifier(target))
    return str(target)


def _transport(method):
    """Surface Firestore client failures as TransportError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except gexc.GoogleAPIError as err:
            raise TransportError(
                f"Catalog call {method.__name__} failed: {err}", identifier=_target(args)
            ) from err

    return wrapper


class FirestoreCatalog(Metastore):
    """Firestore-backed Metastore implementation.

    Stores table documents under: /<workspace>/<namespace>/tables/<table>
    Snapshots are stored in a `snapshots` subcollection and schemas in a
    `schemas` subcollection. Parquet manifests are written under the table
    location's `metadata/manifest-<snapshot_id>.parquet` path.

    The table document's `current-snapshot-id` is the commit point: a new
    snapshot document and the pointer move in one write batch guarded by the
    document's update time.
    """

    def __init__(
        self,
        workspace: str,
        firestore_project: Optional[str] = None,
        firestore_database: Optional[str] = None,
        gcs_bucket: Optional[str] = None,
        warehouse: Optional[str] = None,
        io: Optional[FileIO] = None,
        firestore_client=None,
    ):
        if not gcs_bucket and not warehouse:
            raise ValueError("FirestoreCatalog needs either a gcs_bucket or a warehouse path")
        self.workspace = workspace
        self.firestore_client = firestore_client or firestore.Client(
            project=firestore_project, database=firestore_database
        )
        self._catalog_ref = self.firestore_client.collection(workspace)
        self.gcs_bucket = gcs_bucket
        self.warehouse = warehouse.rstrip("/") if warehouse else None
        if io is not None:
            self.io = io
        elif gcs_bucket:
            from .iops.gcs import GcsFileIO

            self.io = GcsFileIO()
        else:
            self.io = FileIO()

    def _namespace_ref(self, namespace: str):
        return self._catalog_ref.document(namespace)

    def _tables_collection(self, namespace: str):
        return self._namespace_ref(namespace).collection("tables")

    def _table_doc_ref(self, namespace: str, table_name: str):
        return self._tables_collection(namespace).document(table_name)

    def _snapshots_collection(self, namespace: str, table_name: str):
        return self._table_doc_ref(namespace, table_name).collection("snapshots")

    def _schemas_collection(self, namespace: str, table_name: str):
        return self._table_doc_ref(namespace, table_name).collection("schemas")

    def _table_location(self, namespace: str, table_name: str) -> str:
        if self.gcs_bucket:
            return f"gs://{self.gcs_bucket}/{self.workspace}/{namespace}/{table_name}"
        return f"{self.warehouse}/{self.workspace}/{namespace}/{table_name}"

    @_transport
    def namespace_exists(self, namespace: str) -> bool:
        return self._namespace_ref(namespace).get().exists

    @_transport
    def create_namespace(
        self, namespace: str, properties: dict | None = None, exists_ok: bool = False
    ) -> None:
        """Create a namespace document under the catalog.

        Raises NamespaceAlreadyExists if it is already there, unless
        `exists_ok` is set.
        """
        doc_ref = self._namespace_ref(namespace)
        try:
            doc_ref.create(
                {
                    "name": namespace,
                    "properties": properties or {},
                    "timestamp-ms": _now_ms(),
                    "author": _author(),
                }
            )
        except gexc.Conflict as err:
            if exists_ok:
                return
            raise NamespaceAlreadyExists(
                f"Namespace already exists: {namespace}", identifier=namespace
            ) from err
        logger.info(f"created namespace {namespace}")

    @_transport
    def create_table(
        self, identifier, schema: Schema, properties: dict | None = None
    ) -> SimpleTable:
        ident = to_identifier(identifier)
        schema.validate()

        if not self._namespace_ref(ident.namespace).get().exists:
            raise NamespaceNotFound(
                f"Namespace not found: {ident.namespace}", identifier=str(ident)
            )

        location = self._table_location(ident.namespace, ident.name)
        now_ms = _now_ms()
        author = _author()
        metadata = TableMetadata(
            table_identifier=ident,
            location=location,
            schema=schema,
            properties=dict(properties or {}),
            current_schema_id=schema.schema_id,
            timestamp_ms=now_ms,
            author=author,
        )

        doc_ref = self._table_doc_ref(ident.namespace, ident.name)
        batch = self.firestore_client.batch()
        batch.create(
            doc_ref,
            {
                "name": ident.name,
                "collection": ident.namespace,
                "workspace": self.workspace,
                "location": location,
                "properties": metadata.properties,
                "format-version": metadata.format_version,
                "timestamp-ms": now_ms,
                "author": author,
                "current-schema-id": schema.schema_id,
                "current-snapshot-id": None,
                "last-sequence-number": 0,
            },
        )
        batch.set(
            self._schemas_collection(ident.namespace, ident.name).document(str(schema.schema_id)),
            {
                "columns": schema.to_columns(),
                "timestamp-ms": now_ms,
                "author": author,
            },
        )
        try:
            batch.commit()
        except gexc.Conflict as err:
            raise TableAlreadyExists(
                f"Table already exists: {ident}", identifier=str(ident)
            ) from err

        logger.info(f"created table {ident} at {location}")
        return SimpleTable(identifier=ident, _metadata=metadata, io=self.io, catalog=self)

    @_transport
    def load_table(self, identifier) -> SimpleTable:
        ident = to_identifier(identifier)
        doc_ref = self._table_doc_ref(ident.namespace, ident.name)
        doc = doc_ref.get()
        if not doc.exists:
            raise TableNotFound(f"Table not found: {ident}", identifier=str(ident))

        data = doc.to_dict() or {}
        schema_id = int(data.get("current-schema-id") or 0)
        sdoc = self._schemas_collection(ident.namespace, ident.name).document(str(schema_id)).get()
        if not sdoc.exists:
            raise TableNotFound(
                f"Schema {schema_id} of table {ident} is missing", identifier=str(ident)
            )
        schema = Schema.from_columns((sdoc.to_dict() or {}).get("columns", []), schema_id)

        # only snapshots reachable from the current one through their parents
        # are history; anything else landed after the table document was read
        # or was left behind by an earlier table of the same name
        query = self._snapshots_collection(ident.namespace, ident.name).order_by("sequence-number")
        by_id = {}
        for snap_doc in query.stream():
            snap = Snapshot.from_dict(snap_doc.to_dict() or {})
            by_id[snap.snapshot_id] = snap
        reachable = set()
        cursor = data.get("current-snapshot-id")
        while cursor is not None and cursor in by_id and cursor not in reachable:
            reachable.add(cursor)
            cursor = by_id[cursor].parent_snapshot_id
        snaps = [s for s in by_id.values() if s.snapshot_id in reachable]

        metadata = TableMetadata(
            table_identifier=ident,
            location=data.get("location") or self._table_location(ident.namespace, ident.name),
            schema=schema,
            properties=data.get("properties") or {},
            format_version=int(data.get("format-version") or 2),
            current_schema_id=schema_id,
            current_snapshot_id=data.get("current-snapshot-id"),
            snapshots=snaps,
            timestamp_ms=data.get("timestamp-ms"),
            author=data.get("author"),
        )
        return SimpleTable(identifier=ident, _metadata=metadata, io=self.io, catalog=self)

    @_transport
    def drop_table(self, identifier) -> None:
        """Remove the table record. Data and manifest files are left in storage."""
        ident = to_identifier(identifier)
        doc_ref = self._table_doc_ref(ident.namespace, ident.name)
        if not doc_ref.get().exists:
            raise TableNotFound(f"Table not found: {ident}", identifier=str(ident))

        # the table and its sub-collections go together or not at all
        batch = self.firestore_client.batch()
        for coll in (
            self._snapshots_collection(ident.namespace, ident.name),
            self._schemas_collection(ident.namespace, ident.name),
        ):
            for doc in coll.stream():
                batch.delete(coll.document(doc.id))
        batch.delete(doc_ref)
        batch.commit()
        logger.info(f"dropped table {ident}")

    @_transport
    def list_tables(self, namespace: str) -> List[TableIdentifier]:
        if not self._namespace_ref(namespace).get().exists:
            raise NamespaceNotFound(f"Namespace not found: {namespace}", identifier=namespace)
        coll = self._tables_collection(namespace)
        return [TableIdentifier(namespace, doc.id) for doc in coll.stream()]

    @_transport
    def table_exists(self, identifier) -> bool:
        ident = to_identifier(identifier)
        return self._table_doc_ref(ident.namespace, ident.name).get().exists

    @_transport
    def commit_snapshot(
        self,
        table: SimpleTable,
        data_files: Sequence[DataFile],
        author: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> TableMetadata:
        """Append a snapshot adding `data_files` on top of `table`'s metadata.

        The new manifest lists every file of the base snapshot plus the new
        ones. It is written before the commit, so a failed commit orphans it
        along with the data files.
        """
        ident = table.identifier
        base = table.metadata
        base_snapshot = base.current_snapshot()
        author = author or _author()

        entries: List[ManifestEntry] = []
        if base_snapshot is not None and base_snapshot.manifest_list:
            entries = read_manifest(table.io, base_snapshot.manifest_list)

        snapshot_id = new_snapshot_id()
        entries.extend(ManifestEntry(snapshot_id=snapshot_id, data_file=f) for f in data_files)
        manifest_path = write_manifest(
            table.io, f"{base.location}/metadata/manifest-{snapshot_id}.parquet", entries
        )

        now_ms = _now_ms()
        snap = Snapshot(
            snapshot_id=snapshot_id,
            sequence_number=base.next_sequence_number(),
            timestamp_ms=now_ms,
            manifest_list=manifest_path,
            parent_snapshot_id=base.current_snapshot_id,
            schema_id=base.current_schema_id,
            operation_type="append",
            author=author,
            commit_message=commit_message or f"commit by {author}",
            summary=summarise(base_snapshot, data_files),
        )

        doc_ref = self._table_doc_ref(ident.namespace, ident.name)
        current = doc_ref.get()
        if not current.exists:
            raise TableNotFound(f"Table not found: {ident}", identifier=str(ident))
        current_id = (current.to_dict() or {}).get("current-snapshot-id")
        if current_id != base.current_snapshot_id:
            raise ConflictingCommit(
                f"Commit to {ident} is based on snapshot {base.current_snapshot_id} "
                f"but the table is now at {current_id}",
                identifier=str(ident),
                snapshot_id=snapshot_id,
            )

        batch = self.firestore_client.batch()
        batch.update(
            doc_ref,
            {
                "current-snapshot-id": snapshot_id,
                "last-sequence-number": snap.sequence_number,
                "timestamp-ms": now_ms,
                "author": author,
            },
            option=self.firestore_client.write_option(last_update_time=current.update_time),
        )
        batch.create(
            self._snapshots_collection(ident.namespace, ident.name).document(str(snapshot_id)),
            snap.to_dict(),
        )
        try:
            batch.commit()
        except (gexc.FailedPrecondition, gexc.Aborted, gexc.Conflict) as err:
            raise ConflictingCommit(
                f"Concurrent commit to {ident} won the race",
                identifier=str(ident),
                snapshot_id=snapshot_id,
            ) from err

        logger.info(f"committed snapshot {snapshot_id} (sequence {snap.sequence_number}) to {ident}")
        return dataclasses.replace(
            base,
            current_snapshot_id=snapshot_id,
            snapshots=[*base.snapshots, snap],
            timestamp_ms=now_ms,
            author=author,
        )
