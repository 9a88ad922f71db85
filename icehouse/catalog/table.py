from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from typing import Iterator
from typing import List
from typing import Optional

import pyarrow as pa

from ..exceptions import IcehouseError
from ..exceptions import SchemaMismatch
from ..exceptions import SnapshotNotFound
from ..iops.parquet import ParquetFileWriter
from ..iops.parquet import WriterProperties
from ..iops.parquet import read_batches
from ..schema import Schema
from ..schema import to_record_batch
from .locations import new_data_file_location
from .manifest import DataFile
from .manifest import read_manifest
from .metadata import Snapshot
from .metadata import TableIdentifier
from .metadata import TableMetadata
from .metastore import Table

logger = logging.getLogger(__name__)


@dataclass
class SimpleTable(Table):
    identifier: TableIdentifier
    _metadata: TableMetadata
    io: Any = None
    catalog: Any = None

    @property
    def metadata(self) -> TableMetadata:
        return self._metadata

    @property
    def schema(self) -> Schema:
        return self._metadata.schema

    def current_snapshot(self) -> Optional[Snapshot]:
        return self.metadata.current_snapshot()

    def snapshots(self) -> List[Snapshot]:
        return list(self.metadata.snapshots)

    def snapshot(self, snapshot_id: int) -> Snapshot:
        """Return the snapshot with exactly this id; there is no fallback."""
        snap = self.metadata.snapshot_by_id(snapshot_id)
        if snap is None:
            raise SnapshotNotFound(
                f"Snapshot {snapshot_id} not found in {self.identifier}",
                identifier=str(self.identifier),
                snapshot_id=snapshot_id,
            )
        return snap

    def append(
        self,
        rows: Any,
        schema: Optional[Schema] = None,
        author: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> Snapshot:
        """Write `rows` as one new data file and commit it as a new snapshot.

        `rows` is a sequence of mappings, a pyarrow.Table or a RecordBatch.
        The whole batch is validated before anything is written. If the commit
        loses a race (ConflictingCommit) the data file already written is left
        orphaned; nothing is retried.
        """
        # every step below works from this one view of the table
        metadata = self.metadata
        schema = schema or metadata.schema

        try:
            if not schema.same_fields(metadata.schema):
                raise SchemaMismatch(
                    f"Schema {schema.names} does not match the schema of {self.identifier}"
                )
            batch = to_record_batch(schema, rows)

            location = new_data_file_location(metadata)
            properties = WriterProperties.from_table_properties(metadata.properties, location)
            with ParquetFileWriter(self.io, location, schema, properties) as writer:
                writer.write(batch)
            data_file = writer.data_file
            logger.info(
                f"wrote {data_file.record_count} rows ({data_file.file_size_in_bytes} bytes) "
                f"to {data_file.file_path}"
            )

            self._metadata = self.catalog.commit_snapshot(
                self, [data_file], author=author, commit_message=commit_message
            )
        except IcehouseError as err:
            if err.identifier is None:
                err.identifier = str(self.identifier)
            raise

        return self._metadata.current_snapshot()

    def data_files(self, snapshot: Snapshot) -> List[DataFile]:
        """Every data file visible as of `snapshot`, in manifest order."""
        if not snapshot.manifest_list:
            return []
        try:
            entries = read_manifest(self.io, snapshot.manifest_list)
        except IcehouseError as err:
            err.identifier = str(self.identifier)
            err.snapshot_id = snapshot.snapshot_id
            raise
        return [e.data_file for e in entries]

    def scan(self, snapshot_id: Optional[int] = None) -> Iterator[DataFile]:
        """Return the data files of a snapshot (the current one by default)."""
        if snapshot_id is None:
            snap = self.current_snapshot()
            if snap is None:
                return iter(())
        else:
            snap = self.snapshot(snapshot_id)
        return iter(self.data_files(snap))

    def read_at_snapshot(self, snapshot_id: int) -> Iterator[pa.RecordBatch]:
        """Lazily read every row visible at exactly `snapshot_id`.

        Snapshot resolution and the manifest read happen now; data files are
        only opened as the returned iterator is consumed. A file that cannot
        be decoded raises FileReadError and ends the stream.
        """
        snap = self.snapshot(snapshot_id)
        files = self.data_files(snap)
        return self._read_files(snap, files)

    def _read_files(self, snap: Snapshot, files: List[DataFile]) -> Iterator[pa.RecordBatch]:
        schema = self.metadata.schema
        for data_file in files:
            try:
                yield from read_batches(self.io, data_file, schema)
            except IcehouseError as err:
                err.identifier = str(self.identifier)
                err.snapshot_id = snap.snapshot_id
                raise

    def to_arrow(self, snapshot_id: int) -> pa.Table:
        batches = list(self.read_at_snapshot(snapshot_id))
        return pa.Table.from_batches(batches, schema=self.metadata.schema.as_arrow())
