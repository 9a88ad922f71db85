"""Table manager: the lifecycle surface over a catalog and its storage.

A TableManager is bound to one namespace and one row schema. It caches
nothing between calls; every operation starts from what the catalog says
now, and concurrent writers are arbitrated by the catalog's commit alone.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any
from typing import Dict
from typing import Iterator
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

import pyarrow as pa

from .catalog.metadata import Snapshot
from .catalog.metadata import TableIdentifier
from .catalog.metadata import TableMetadata
from .catalog.metastore import Metastore
from .catalog.table import SimpleTable
from .config import CatalogConfig
from .exceptions import IcehouseError
from .exceptions import TableNotFound
from .schema import DEFAULT_SCHEMA
from .schema import Schema

logger = logging.getLogger(__name__)

TableRef = Union[str, SimpleTable]


def list_snapshots(metadata: Union[TableMetadata, SimpleTable]) -> List[int]:
    """Snapshot ids in the order the catalog recorded the commits (oldest first)."""
    if isinstance(metadata, SimpleTable):
        metadata = metadata.metadata
    return [s.snapshot_id for s in metadata.snapshots]


def snapshot_log(metadata: Union[TableMetadata, SimpleTable]) -> List[Tuple[int, int]]:
    """(snapshot id, sequence number) pairs in commit order."""
    if isinstance(metadata, SimpleTable):
        metadata = metadata.metadata
    return [(s.snapshot_id, s.sequence_number) for s in metadata.snapshots]


def _outcome(err: BaseException) -> str:
    return type(err).__name__ if isinstance(err, IcehouseError) else "error"


def _log_operation(operation: str, table: Optional[str], start: float, outcome: str) -> None:
    duration_ms = (time.monotonic() - start) * 1000
    logger.info(
        f"{operation} {table or ''} -> {outcome} ({duration_ms:.1f}ms)",
        extra={
            "operation": operation,
            "table": table,
            "duration_ms": duration_ms,
            "outcome": outcome,
        },
    )


@contextmanager
def _operation(operation: str, table: Optional[str], start: Optional[float] = None):
    start = time.monotonic() if start is None else start
    outcome = "ok"
    try:
        yield
    except Exception as err:
        outcome = _outcome(err)
        raise
    finally:
        _log_operation(operation, table, start, outcome)


def _logged_stream(
    stream: Iterator[pa.RecordBatch], table: str, start: float
) -> Iterator[pa.RecordBatch]:
    # the read is reported when the stream ends, so decode failures count
    with _operation("read_at_snapshot", table, start):
        yield from stream


class TableManager:
    def __init__(self, catalog: Metastore, namespace: str, schema: Schema = DEFAULT_SCHEMA):
        self.catalog = catalog
        self.namespace = namespace
        self.schema = schema.validate()

    @classmethod
    def open(
        cls, catalog: Metastore, namespace: str, schema: Schema = DEFAULT_SCHEMA
    ) -> "TableManager":
        """Bind to `namespace`, creating it first if the catalog does not have it."""
        with _operation("open", namespace):
            if not catalog.namespace_exists(namespace):
                catalog.create_namespace(namespace)
        return cls(catalog, namespace, schema)

    @classmethod
    def from_config(
        cls,
        config: Optional[CatalogConfig] = None,
        schema: Schema = DEFAULT_SCHEMA,
        **catalog_kwargs: Any,
    ) -> "TableManager":
        from .firestore_catalog import FirestoreCatalog

        config = config or CatalogConfig.from_env()
        catalog = FirestoreCatalog(
            workspace=config.workspace,
            firestore_project=config.firestore_project,
            firestore_database=config.firestore_database,
            gcs_bucket=config.gcs_bucket,
            warehouse=config.warehouse,
            **catalog_kwargs,
        )
        return cls.open(catalog, config.namespace, schema)

    def identifier(self, name: str) -> TableIdentifier:
        return TableIdentifier(self.namespace, name)

    def create_table(self, name: str, properties: Optional[Dict[str, str]] = None) -> SimpleTable:
        ident = self.identifier(name)
        with _operation("create_table", str(ident)):
            return self.catalog.create_table(ident, self.schema, properties)

    def load_table(self, name: str) -> SimpleTable:
        """Load a table by name, located by filtering the namespace listing."""
        ident = self.identifier(name)
        with _operation("load_table", str(ident)):
            for candidate in self.catalog.list_tables(self.namespace):
                if candidate.name == name:
                    return self.catalog.load_table(candidate)
            raise TableNotFound(f"Table not found: {ident}", identifier=str(ident))

    def _name(self, table: Union[TableRef, TableMetadata]) -> TableIdentifier:
        if isinstance(table, SimpleTable):
            return table.identifier
        if isinstance(table, TableMetadata):
            return table.table_identifier
        return self.identifier(table)

    def _resolve(self, table: TableRef) -> SimpleTable:
        if isinstance(table, SimpleTable):
            return table
        return self.load_table(table)

    def write_rows(
        self,
        table: TableRef,
        rows: Any,
        author: Optional[str] = None,
        commit_message: Optional[str] = None,
    ) -> Snapshot:
        """Write `rows` as one data file and commit it; returns the new snapshot.

        A ConflictingCommit is raised as-is; retrying is up to the caller.
        """
        with _operation("write_rows", str(self._name(table))):
            tbl = self._resolve(table)
            return tbl.append(
                rows, schema=self.schema, author=author, commit_message=commit_message
            )

    def read_at_snapshot(self, table: TableRef, snapshot_id: int) -> Iterator[pa.RecordBatch]:
        """Resolve `snapshot_id` now and return a lazy stream of its rows.

        The operation is logged once the stream is exhausted or fails, or
        straight away if the snapshot cannot be resolved.
        """
        name = str(self._name(table))
        start = time.monotonic()
        try:
            stream = self._resolve(table).read_at_snapshot(snapshot_id)
        except Exception as err:
            _log_operation("read_at_snapshot", name, start, _outcome(err))
            raise
        return _logged_stream(stream, name, start)

    def read_rows(self, table: TableRef, snapshot_id: int) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        with _operation("read_rows", str(self._name(table))):
            for batch in self._resolve(table).read_at_snapshot(snapshot_id):
                rows.extend(batch.to_pylist())
        return rows

    def list_tables(self) -> List[TableIdentifier]:
        with _operation("list_tables", self.namespace):
            return self.catalog.list_tables(self.namespace)

    def table_exists(self, name: str) -> bool:
        ident = self.identifier(name)
        with _operation("table_exists", str(ident)):
            return self.catalog.table_exists(ident)

    def drop_table(self, name: str) -> None:
        ident = self.identifier(name)
        with _operation("drop_table", str(ident)):
            self.catalog.drop_table(ident)

    def list_snapshots(self, table: Union[TableRef, TableMetadata]) -> List[int]:
        with _operation("list_snapshots", str(self._name(table))):
            if isinstance(table, TableMetadata):
                return list_snapshots(table)
            return list_snapshots(self._resolve(table))

    def snapshot_log(self, table: Union[TableRef, TableMetadata]) -> List[Tuple[int, int]]:
        with _operation("snapshot_log", str(self._name(table))):
            if isinstance(table, TableMetadata):
                return snapshot_log(table)
            return snapshot_log(self._resolve(table))
